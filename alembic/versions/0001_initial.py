"""Initial schema: users, Gmail grants, candidate thread bindings.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Creates:
- users
- gmail_tokens (one encrypted grant per user)
- candidate_threads (unique per candidate + job)
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('token_version', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # ==========================================================================
    # gmail_tokens
    # ==========================================================================
    op.create_table(
        'gmail_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('token_type', sa.String(30), nullable=True),
        sa.Column('needs_reauth', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    # ==========================================================================
    # candidate_threads
    # ==========================================================================
    op.create_table(
        'candidate_threads',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('candidate_id', sa.String(64), nullable=False),
        sa.Column('job_id', sa.String(64), nullable=False),
        sa.Column('thread_id', sa.String(255), nullable=False),
        sa.Column('message_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('candidate_id', 'job_id', name='uq_candidate_threads_candidate_job'),
    )
    op.create_index(
        'ix_candidate_threads_candidate_id',
        'candidate_threads',
        ['candidate_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_candidate_threads_candidate_id', table_name='candidate_threads')
    op.drop_table('candidate_threads')
    op.drop_table('gmail_tokens')
    op.drop_table('users')
