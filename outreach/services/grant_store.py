"""Persistence for per-user Gmail OAuth grants."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from outreach.core.encryption import decrypt_token, encrypt_token
from outreach.db.models import GmailToken

logger = logging.getLogger(__name__)

# Google access tokens live for an hour; assume that when expires_in is missing
DEFAULT_EXPIRES_IN_SECONDS = 3600


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class OAuthGrant:
    """The stored Gmail credential set for one user."""

    user_id: uuid.UUID
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    scope: str | None = None
    token_type: str | None = None
    needs_reauth: bool = False

    def is_expired(self, now: datetime | None = None) -> bool:
        """A grant is usable only while now < expires_at."""
        return (now or _now_utc()) >= as_utc(self.expires_at)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def with_refreshed_token(self, payload: dict, now: datetime | None = None) -> "OAuthGrant":
        """Apply a refresh response. Google omits refresh_token unless it rotated."""
        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS
        return replace(
            self,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or self.refresh_token,
            expires_at=(now or _now_utc()) + timedelta(seconds=int(expires_in)),
            needs_reauth=False,
        )

    @classmethod
    def from_token_response(
        cls, user_id: uuid.UUID, payload: dict, now: datetime | None = None
    ) -> "OAuthGrant":
        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS
        return cls(
            user_id=user_id,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=(now or _now_utc()) + timedelta(seconds=int(expires_in)),
            scope=payload.get("scope"),
            token_type=payload.get("token_type"),
        )


class GrantStore(Protocol):
    def get(self, user_id: uuid.UUID) -> OAuthGrant | None: ...

    def upsert(self, grant: OAuthGrant) -> None: ...

    def update_tokens(self, grant: OAuthGrant) -> bool: ...

    def delete(self, user_id: uuid.UUID) -> bool: ...

    def mark_needs_reauth(self, user_id: uuid.UUID) -> None: ...


def _to_grant(row: GmailToken) -> OAuthGrant:
    return OAuthGrant(
        user_id=row.user_id,
        access_token=decrypt_token(row.access_token_encrypted),
        refresh_token=decrypt_token(row.refresh_token_encrypted)
        if row.refresh_token_encrypted
        else None,
        expires_at=as_utc(row.expires_at),
        scope=row.scope,
        token_type=row.token_type,
        needs_reauth=row.needs_reauth,
    )


def _apply(row: GmailToken, grant: OAuthGrant) -> None:
    row.access_token_encrypted = encrypt_token(grant.access_token)
    row.refresh_token_encrypted = (
        encrypt_token(grant.refresh_token) if grant.refresh_token else None
    )
    row.expires_at = grant.expires_at
    row.scope = grant.scope
    row.token_type = grant.token_type
    row.needs_reauth = grant.needs_reauth
    row.updated_at = _now_utc()


class SqlGrantStore:
    """GrantStore backed by the gmail_tokens table.

    Each call opens its own short-lived session so the store can be shared by
    the long-lived connection manager.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, user_id: uuid.UUID) -> OAuthGrant | None:
        with self._session_factory() as db:
            row = db.scalars(select(GmailToken).where(GmailToken.user_id == user_id)).first()
            return _to_grant(row) if row else None

    def upsert(self, grant: OAuthGrant) -> None:
        """Insert or overwrite the grant for grant.user_id."""
        with self._session_factory() as db:
            row = db.scalars(
                select(GmailToken).where(GmailToken.user_id == grant.user_id)
            ).first()
            if row is None:
                row = GmailToken(user_id=grant.user_id)
                db.add(row)
            _apply(row, grant)
            db.commit()

    def update_tokens(self, grant: OAuthGrant) -> bool:
        """Overwrite an existing grant. Returns False, writing nothing, if it is gone."""
        with self._session_factory() as db:
            row = db.scalars(
                select(GmailToken).where(GmailToken.user_id == grant.user_id)
            ).first()
            if row is None:
                return False
            _apply(row, grant)
            db.commit()
            return True

    def delete(self, user_id: uuid.UUID) -> bool:
        with self._session_factory() as db:
            result = db.execute(delete(GmailToken).where(GmailToken.user_id == user_id))
            db.commit()
            return bool(result.rowcount)

    def mark_needs_reauth(self, user_id: uuid.UUID) -> None:
        with self._session_factory() as db:
            row = db.scalars(select(GmailToken).where(GmailToken.user_id == user_id)).first()
            if row is None:
                return
            row.needs_reauth = True
            row.updated_at = _now_utc()
            db.commit()
