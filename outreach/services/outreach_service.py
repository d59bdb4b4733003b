"""Threaded candidate outreach.

send_threaded_message is the one entry point the routers use to email a
candidate about a job. The first send for a (candidate, job) pair starts a
Gmail thread; every later send replies inside it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from outreach.core.config import settings
from outreach.core.structured_logging import build_log_context
from outreach.services.gmail_connection import GmailConnectionManager
from outreach.services.gmail_errors import RefreshRejected, SendTimeout, TokenExpired
from outreach.services.gmail_service import OutboundMessage, SendResult, send_message
from outreach.services.send_guard import SendDeduplicator, SlidingWindowLimiter, dedup_key
from outreach.services.thread_store import ThreadBinding, ThreadStore

logger = logging.getLogger(__name__)

# One refresh-then-retry per send
MAX_SEND_ATTEMPTS = 2


@dataclass(frozen=True)
class OutreachResult:
    thread_id: str
    message_id: str
    binding_saved: bool


def default_subject(job_title: str | None = None, candidate_name: str | None = None) -> str:
    """Subject for a brand new thread: "<prefix> <job title> - <candidate name>"."""
    parts = [settings.OUTREACH_SUBJECT_PREFIX, job_title or settings.OUTREACH_DEFAULT_JOB_TITLE]
    head = " ".join(p.strip() for p in parts if p and p.strip())
    name = (candidate_name or "").strip()
    return f"{head} - {name}" if name else head


class OutreachService:
    def __init__(
        self,
        manager: GmailConnectionManager,
        thread_store: ThreadStore,
        dedup: SendDeduplicator | None = None,
        limiter: SlidingWindowLimiter | None = None,
        *,
        timeout_seconds: float | None = None,
        send_fn: Callable[[OutboundMessage, str], Awaitable[SendResult]] = send_message,
    ):
        self.manager = manager
        self.thread_store = thread_store
        self.dedup = dedup or SendDeduplicator()
        self.limiter = limiter or SlidingWindowLimiter()
        self.timeout_seconds = (
            settings.GMAIL_SEND_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self._send_fn = send_fn

    async def send_threaded_message(
        self,
        user_id: uuid.UUID | str,
        candidate_id: str,
        job_id: str,
        to: str,
        body: str,
        subject: str | None = None,
        cc: str | None = None,
        *,
        candidate_name: str | None = None,
        job_title: str | None = None,
    ) -> OutreachResult:
        """
        Send (or reply) to a candidate about a job and record the thread.

        Raises:
            ValueError: empty recipient or body
            GmailError subclasses: see gmail_errors (SendTimeout after the
                configured timeout)
        """
        if not to or not to.strip():
            raise ValueError("Recipient address is required")
        if not body or not body.strip():
            raise ValueError("Email body is required")

        log_ctx = build_log_context(
            user_id=str(user_id), candidate_id=candidate_id, job_id=job_id
        )
        binding = self.thread_store.get(candidate_id, job_id)
        if binding is not None:
            # Replies keep the thread's original subject
            message = OutboundMessage(
                to=to.strip(),
                body=body,
                cc=cc or settings.OUTREACH_DEFAULT_CC or None,
                reply_to_message_id=binding.message_id,
                thread_id=binding.thread_id,
            )
        else:
            message = OutboundMessage(
                to=to.strip(),
                body=body,
                cc=cc or settings.OUTREACH_DEFAULT_CC or None,
                subject=subject or default_subject(job_title, candidate_name),
            )

        # Keyed on what the caller asked for; the binding (and so the built
        # message) changes once the first copy has gone out
        key = dedup_key(
            user_id, candidate_id, job_id, message.to, message.cc, subject, body
        )

        async def _guarded_send() -> OutreachResult:
            self.limiter.acquire(str(user_id))
            result = await self._send_with_refresh(user_id, message)
            # Recorded here so a send that outlives its caller's timeout
            # still binds the thread
            return self._record_binding(candidate_id, job_id, result, log_ctx)

        try:
            return await asyncio.wait_for(
                self.dedup.run(key, _guarded_send), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error("Gmail send timed out", extra=log_ctx)
            raise SendTimeout() from e

    def _record_binding(
        self, candidate_id: str, job_id: str, result: SendResult, log_ctx: dict
    ) -> OutreachResult:
        log_ctx = {**log_ctx, "thread_id": result.thread_id}
        binding_saved = True
        try:
            self.thread_store.upsert(
                candidate_id,
                job_id,
                ThreadBinding(thread_id=result.thread_id, message_id=result.message_id),
            )
        except Exception as e:
            binding_saved = False
            logger.error(f"Failed to save thread binding after send: {e}", extra=log_ctx)

        logger.info("Outreach email sent", extra=log_ctx)
        return OutreachResult(
            thread_id=result.thread_id,
            message_id=result.message_id,
            binding_saved=binding_saved,
        )

    async def _send_with_refresh(
        self, user_id: uuid.UUID | str, message: OutboundMessage
    ) -> SendResult:
        """Send once; on TokenExpired refresh and send one more time."""
        access_token = await self.manager.get_access_token(user_id)
        for attempt in range(MAX_SEND_ATTEMPTS):
            try:
                return await self._send_fn(message, access_token)
            except TokenExpired:
                if attempt + 1 >= MAX_SEND_ATTEMPTS:
                    raise
                logger.info("Gmail rejected token on send, refreshing once")
                if not await self.manager.refresh(user_id):
                    raise RefreshRejected()
                access_token = await self.manager.get_access_token(user_id)
        raise TokenExpired()
