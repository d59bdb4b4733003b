"""Guards in front of the Gmail send API.

SendDeduplicator collapses identical sends (double clicks, client retries)
into one provider call. SlidingWindowLimiter caps sends per origin across
every worker sharing the rate-limit storage.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, TypeVar

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from outreach.core.config import settings
from outreach.core.redis_client import REDIS_DISABLED_URL, get_redis_url
from outreach.services.gmail_errors import RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


def dedup_key(*parts: Any) -> str:
    """SHA-256 over the JSON of the payload parts (None and "" differ)."""
    encoded = json.dumps([None if p is None else str(p) for p in parts], separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class SendDeduplicator:
    """Share one send between identical requests inside the dedup window.

    The window starts when the first request is made. Concurrent duplicates
    await the in-flight task; later duplicates get its result. Failures are
    never remembered, so a retry after an error sends again.
    """

    def __init__(
        self,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = (
            settings.GMAIL_SEND_DEDUP_SECONDS if window_seconds is None else window_seconds
        )
        self._clock = clock
        self._inflight: dict[str, asyncio.Task] = {}
        self._completed: dict[str, tuple[float, Any]] = {}
        self._started_at: dict[str, float] = {}

    def _prune(self, now: float) -> None:
        expired = [k for k, (started, _) in self._completed.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._completed[key]

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        self._inflight.pop(key, None)
        started = self._started_at.pop(key, self._clock())
        if task.cancelled() or task.exception() is not None:
            return
        self._completed[key] = (started, task.result())

    async def run(self, key: str, send: Callable[[], Awaitable[T]]) -> T:
        now = self._clock()
        self._prune(now)

        completed = self._completed.get(key)
        if completed is not None:
            logger.info("Duplicate send suppressed within dedup window")
            return completed[1]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(send())
            self._inflight[key] = task
            self._started_at[key] = now
            task.add_done_callback(partial(self._on_done, key))
        else:
            logger.info("Duplicate send joined in-flight request")

        # A caller timing out must not cancel the send other callers share
        return await asyncio.shield(task)


class SlidingWindowLimiter:
    """At most `limit` sends per origin in any rolling `window_seconds`.

    Counts live in Redis when it is configured, so all workers share one
    budget. If the storage errors the limiter fails open to an in-process
    window rather than blocking sends.
    """

    NAMESPACE = "gmail-send"

    def __init__(
        self,
        limit: int | None = None,
        window_seconds: int | None = None,
        storage_uri: str | None = None,
    ):
        self.limit = settings.GMAIL_SEND_RATE_LIMIT if limit is None else limit
        self.window_seconds = int(
            settings.GMAIL_SEND_RATE_WINDOW_SECONDS if window_seconds is None else window_seconds
        )
        self._item = RateLimitItemPerSecond(self.limit, self.window_seconds)

        uri = storage_uri or get_redis_url() or REDIS_DISABLED_URL
        self._strategy = MovingWindowRateLimiter(storage_from_string(uri))
        if uri == REDIS_DISABLED_URL:
            self._fallback = self._strategy
        else:
            self._fallback = MovingWindowRateLimiter(storage_from_string(REDIS_DISABLED_URL))

    def _hit(self, origin: str) -> tuple[bool, MovingWindowRateLimiter]:
        try:
            return self._strategy.hit(self._item, self.NAMESPACE, origin), self._strategy
        except Exception as e:
            logger.warning(f"Send rate limit storage unavailable, using in-memory window: {e}")
            return self._fallback.hit(self._item, self.NAMESPACE, origin), self._fallback

    def acquire(self, origin: str) -> None:
        """Record one call for origin or raise RateLimited."""
        allowed, strategy = self._hit(origin)
        if allowed:
            return
        stats = strategy.get_window_stats(self._item, self.NAMESPACE, origin)
        retry_after = max(0.0, stats.reset_time - time.time())
        logger.warning("Gmail send rate limit hit", extra={"origin": origin})
        raise RateLimited(details={"retry_after_seconds": round(retry_after, 1)})

    def reset(self, origin: str) -> None:
        """Forget origin's recorded sends."""
        self._strategy.clear(self._item, self.NAMESPACE, origin)
        if self._fallback is not self._strategy:
            self._fallback.clear(self._item, self.NAMESPACE, origin)
