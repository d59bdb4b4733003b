"""HTTP helpers with retry/backoff for Google endpoints."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
    label: str = "http",
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Retries on transport errors and on retry_statuses. The final response is
    returned as-is (even if it is an error status); the final transport error
    is re-raised.
    """
    statuses = DEFAULT_RETRY_STATUSES if retry_statuses is None else retry_statuses

    for attempt in range(max_attempts):
        is_last = attempt >= max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if is_last:
                raise
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "%s request failed (attempt %s/%s), retrying", label, attempt + 1, max_attempts,
                exc_info=exc,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and not is_last:
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "%s request returned %s (attempt %s/%s), retrying",
                label,
                response.status_code,
                attempt + 1,
                max_attempts,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


def response_payload(response: httpx.Response) -> dict | None:
    """Best-effort JSON body of a Google response (dict only)."""
    if not response.content:
        return None
    try:
        decoded = response.json()
    except ValueError:
        return None
    return decoded if isinstance(decoded, dict) else None
