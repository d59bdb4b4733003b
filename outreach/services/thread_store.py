"""Persistence for (candidate, job) -> Gmail thread bindings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from outreach.db.models import CandidateThread

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadBinding:
    thread_id: str
    message_id: str


def normalize_thread_ref(value: Any) -> ThreadBinding | None:
    """
    Coerce any stored thread reference into a ThreadBinding.

    Accepts a bare thread id string (legacy rows, where the thread id doubles
    as the message to reply to) or a {"threadId", "messageId"} dict. Returns
    None for anything without a thread id.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return ThreadBinding(thread_id=value, message_id=value) if value else None
    if isinstance(value, dict):
        thread_id = value.get("threadId") or value.get("thread_id")
        if not thread_id or not isinstance(thread_id, str):
            return None
        message_id = value.get("messageId") or value.get("message_id") or thread_id
        return ThreadBinding(thread_id=thread_id, message_id=str(message_id))
    return None


class ThreadStore(Protocol):
    def get(self, candidate_id: str, job_id: str) -> ThreadBinding | None: ...

    def upsert(self, candidate_id: str, job_id: str, binding: ThreadBinding) -> None: ...


class SqlThreadStore:
    """ThreadStore backed by the candidate_threads table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @staticmethod
    def _find(db: Session, candidate_id: str, job_id: str) -> CandidateThread | None:
        return db.scalars(
            select(CandidateThread).where(
                CandidateThread.candidate_id == str(candidate_id),
                CandidateThread.job_id == str(job_id),
            )
        ).first()

    def get(self, candidate_id: str, job_id: str) -> ThreadBinding | None:
        with self._session_factory() as db:
            row = self._find(db, candidate_id, job_id)
            if row is None:
                return None
            if not row.message_id:
                # Legacy row: reply to the thread id until a real message id is stored
                row.message_id = row.thread_id
                row.updated_at = datetime.now(timezone.utc)
                db.commit()
                logger.info(
                    "Migrated legacy thread binding",
                    extra={"candidate_id": str(candidate_id), "job_id": str(job_id)},
                )
            return ThreadBinding(thread_id=row.thread_id, message_id=row.message_id)

    def upsert(self, candidate_id: str, job_id: str, binding: ThreadBinding) -> None:
        with self._session_factory() as db:
            row = self._find(db, candidate_id, job_id)
            if row is None:
                row = CandidateThread(candidate_id=str(candidate_id), job_id=str(job_id))
                db.add(row)
            row.thread_id = binding.thread_id
            row.message_id = binding.message_id
            row.updated_at = datetime.now(timezone.utc)
            db.commit()


def import_legacy_thread_ids(
    store: ThreadStore, candidate_id: str, thread_ids: dict[str, Any] | None
) -> int:
    """
    Import a candidate's legacy {job_id: thread_ref} JSON into bindings.

    Existing bindings win. Returns the number of bindings created.
    """
    imported = 0
    for job_id, value in (thread_ids or {}).items():
        binding = normalize_thread_ref(value)
        if binding is None:
            logger.warning(
                "Skipping unreadable legacy thread reference",
                extra={"candidate_id": str(candidate_id), "job_id": str(job_id)},
            )
            continue
        if store.get(candidate_id, job_id) is not None:
            continue
        store.upsert(candidate_id, job_id, binding)
        imported += 1
    return imported
