"""Layered cache for "is this user's Gmail connected" answers.

Tiers are consulted cheapest first. Each tier has its own TTL; an entry older
than its tier's TTL counts as absent, never as "disconnected". Tier failures
are logged and treated as misses so a broken cache can only cost an extra
status lookup.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEntry:
    connected: bool
    checked_at: float

    def is_fresh(self, ttl_seconds: float, now: float) -> bool:
        return now - self.checked_at < ttl_seconds


class StatusTier(Protocol):
    name: str
    ttl_seconds: float

    async def get(self, key: str) -> StatusEntry | None: ...

    async def set(self, key: str, entry: StatusEntry) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStatusTier:
    """Process-local tier (one per worker)."""

    name = "memory"

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, StatusEntry] = {}

    async def get(self, key: str) -> StatusEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: StatusEntry) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisStatusTier:
    """Tier shared by every worker through Redis."""

    name = "redis"
    KEY_PREFIX = "gmail:connection-status:"

    def __init__(self, client, ttl_seconds: float):
        self._client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> StatusEntry | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return StatusEntry(connected=bool(data["connected"]), checked_at=float(data["checked_at"]))

    async def set(self, key: str, entry: StatusEntry) -> None:
        value = json.dumps({"connected": entry.connected, "checked_at": entry.checked_at})
        # Redis expiry is only housekeeping; freshness is judged on checked_at
        await self._client.set(self._key(key), value, ex=max(1, int(self.ttl_seconds)))

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))


class ConnectionStatusCache:
    """Ordered list of status tiers with read-through backfill."""

    def __init__(self, tiers: list[StatusTier], clock: Callable[[], float] = time.time):
        self.tiers = list(tiers)
        self._clock = clock

    async def get(self, key: str) -> StatusEntry | None:
        now = self._clock()
        for index, tier in enumerate(self.tiers):
            try:
                entry = await tier.get(key)
            except Exception as e:
                logger.warning("Status cache tier %s read failed: %s", tier.name, e)
                continue
            if entry is None or not entry.is_fresh(tier.ttl_seconds, now):
                continue
            await self._backfill(self.tiers[:index], key, entry, now)
            return entry
        return None

    async def _backfill(
        self, tiers: list[StatusTier], key: str, entry: StatusEntry, now: float
    ) -> None:
        for tier in tiers:
            if not entry.is_fresh(tier.ttl_seconds, now):
                continue
            try:
                await tier.set(key, entry)
            except Exception as e:
                logger.warning("Status cache tier %s backfill failed: %s", tier.name, e)

    async def set(self, key: str, connected: bool) -> StatusEntry:
        entry = StatusEntry(connected=connected, checked_at=self._clock())
        for tier in self.tiers:
            try:
                await tier.set(key, entry)
            except Exception as e:
                logger.warning("Status cache tier %s write failed: %s", tier.name, e)
        return entry

    async def invalidate(self, key: str) -> None:
        for tier in self.tiers:
            try:
                await tier.delete(key)
            except Exception as e:
                logger.warning("Status cache tier %s delete failed: %s", tier.name, e)
