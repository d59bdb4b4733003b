"""Gmail connection state manager.

Answers "can this user send through Gmail right now" with as few lookups as
possible, runs the OAuth connect/callback flow, and hands valid access
tokens to the send path.

Status answers are cached in ConnectionStatusCache tiers. Lookups of the
persisted grant are throttled per user: inside the throttle window callers
get the last known answer, and concurrent callers share one lookup.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from outreach.core.config import settings
from outreach.core.redis_client import get_async_redis_client
from outreach.core.security import (
    OAuthStateError,
    create_oauth_state,
    decode_oauth_state,
    is_oauth_state_expired,
)
from outreach.services.connection_cache import (
    ConnectionStatusCache,
    MemoryStatusTier,
    RedisStatusTier,
)
from outreach.services.gmail_errors import (
    AlreadyInProgress,
    ConfigurationMissing,
    ExchangeFailed,
    ExpiredState,
    InvalidState,
    NotAuthenticated,
    NotConnected,
    RefreshRejected,
    VerificationFailed,
)
from outreach.services.grant_store import GrantStore, OAuthGrant
from outreach.services.oauth_service import GoogleOAuthClient

logger = logging.getLogger(__name__)


def build_status_cache(clock: Callable[[], float] = time.time) -> ConnectionStatusCache:
    """Memory tier always; Redis tier when REDIS_URL is configured."""
    tiers: list = [MemoryStatusTier(settings.GMAIL_STATUS_MEMORY_TTL_SECONDS)]
    redis_client = get_async_redis_client()
    if redis_client is not None:
        tiers.append(RedisStatusTier(redis_client, settings.GMAIL_STATUS_REDIS_TTL_SECONDS))
    return ConnectionStatusCache(tiers, clock=clock)


def _as_user_id(user_id: uuid.UUID | str | None) -> uuid.UUID | None:
    if not user_id:
        return None
    if isinstance(user_id, uuid.UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        return None


class GmailConnectionManager:
    """Owns the Gmail grant lifecycle for every user in this process."""

    def __init__(
        self,
        store: GrantStore,
        provider: GoogleOAuthClient | None = None,
        cache: ConnectionStatusCache | None = None,
        *,
        throttle_seconds: float | None = None,
        connect_lock_seconds: float | None = None,
        state_max_age_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.provider = provider or GoogleOAuthClient()
        self.cache = cache or build_status_cache(clock)
        self.throttle_seconds = (
            settings.GMAIL_STATUS_THROTTLE_SECONDS if throttle_seconds is None else throttle_seconds
        )
        self.connect_lock_seconds = (
            settings.GMAIL_CONNECT_LOCK_SECONDS
            if connect_lock_seconds is None
            else connect_lock_seconds
        )
        self.state_max_age_seconds = (
            settings.OAUTH_STATE_MAX_AGE_SECONDS
            if state_max_age_seconds is None
            else state_max_age_seconds
        )
        self._clock = clock

        # Per-user state, keyed by str(user_id)
        self._last_lookup_at: dict[str, float] = {}
        self._last_known: dict[str, bool] = {}
        self._details: dict[str, tuple[float, dict[str, Any]]] = {}
        self._connect_started_at: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_dt(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _invalidate(self, key: str) -> None:
        """Drop cached answers and the throttle record so the next check is fresh."""
        self._last_lookup_at.pop(key, None)
        self._last_known.pop(key, None)
        self._details.pop(key, None)
        await self.cache.invalidate(key)

    def _describe(self, grant: OAuthGrant | None) -> dict[str, Any]:
        details = {
            "connected": False,
            "expired": False,
            "has_refresh_token": False,
            "needs_refresh": False,
            "needs_reauth": False,
            "expires_at": None,
        }
        if grant is None:
            return details
        expired = grant.is_expired(self._now_dt())
        details.update(
            connected=not expired and not grant.needs_reauth,
            expired=expired,
            has_refresh_token=grant.has_refresh_token,
            needs_refresh=expired and grant.has_refresh_token and not grant.needs_reauth,
            needs_reauth=grant.needs_reauth or (expired and not grant.has_refresh_token),
            expires_at=grant.expires_at.isoformat(),
        )
        return details

    def _remember_details(self, key: str, grant: OAuthGrant | None) -> dict[str, Any]:
        details = self._describe(grant)
        self._details[key] = (self._clock(), details)
        return details

    def _mark_needs_reauth(self, user_id: uuid.UUID) -> None:
        try:
            self.store.mark_needs_reauth(user_id)
        except Exception as e:
            logger.error(f"Failed to flag Gmail grant for re-authorization: {e}")

    async def _refresh_grant(self, grant: OAuthGrant) -> OAuthGrant | None:
        """Refresh and persist one grant. Returns None on any failure."""
        if not grant.refresh_token:
            return None
        try:
            payload = await self.provider.refresh_access_token(grant.refresh_token)
        except RefreshRejected:
            self._mark_needs_reauth(grant.user_id)
            return None
        if not payload:
            return None

        refreshed = grant.with_refreshed_token(payload, now=self._now_dt())
        try:
            # Update only: a grant deleted meanwhile stays deleted
            saved = self.store.update_tokens(refreshed)
        except Exception as e:
            logger.error(f"Failed to persist refreshed Gmail token: {e}")
            return None
        if not saved:
            logger.info(
                "Gmail grant removed during refresh", extra={"user_id": str(grant.user_id)}
            )
            return None
        logger.info("Gmail token refreshed", extra={"user_id": str(grant.user_id)})
        return refreshed

    async def _lookup_status(self, user_id: uuid.UUID) -> bool:
        """One status lookup against the persisted grant, refreshing once if expired."""
        key = str(user_id)
        grant = self.store.get(user_id)
        self._remember_details(key, grant)
        if grant is None:
            return False
        if grant.needs_reauth:
            return False
        if not grant.is_expired(self._now_dt()):
            return True
        if not grant.has_refresh_token:
            return False

        refreshed = await self._refresh_grant(grant)
        if refreshed is None:
            # The grant may now be flagged for re-auth; read it again next time
            self._details.pop(key, None)
            return False
        self._remember_details(key, refreshed)
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def check_connection(self, user_id: uuid.UUID | str | None) -> bool:
        """
        Return True if the user has a usable Gmail grant.

        Never raises: store/provider failures degrade to False. Unauthenticated
        callers get False without any lookup.
        """
        uid = _as_user_id(user_id)
        if uid is None:
            return False
        key = str(uid)

        entry = await self.cache.get(key)
        if entry is not None:
            return entry.connected

        async with self._lock_for(key):
            # A concurrent caller may have finished a lookup while we waited
            entry = await self.cache.get(key)
            if entry is not None:
                return entry.connected

            now = self._clock()
            last = self._last_lookup_at.get(key)
            if last is not None and now - last < self.throttle_seconds and key in self._last_known:
                return self._last_known[key]

            self._last_lookup_at[key] = now
            try:
                connected = await self._lookup_status(uid)
            except Exception as e:
                logger.error(f"Gmail connection check failed: {e}", extra={"user_id": key})
                self._last_known[key] = False
                return False

            self._last_known[key] = connected
            await self.cache.set(key, connected)
            return connected

    async def get_connection_details(self, user_id: uuid.UUID | str | None) -> dict[str, Any]:
        """
        Breakdown of the stored grant (for the settings screen).

        Shares the status throttle: the snapshot taken by the last lookup is
        served until the window passes, so the store is read at most once
        per window.
        """
        uid = _as_user_id(user_id)
        if uid is None:
            return self._describe(None)
        key = str(uid)

        async with self._lock_for(key):
            snapshot = self._details.get(key)
            if snapshot is not None and self._clock() - snapshot[0] < self.throttle_seconds:
                return dict(snapshot[1])
            try:
                grant = self.store.get(uid)
            except Exception as e:
                logger.error(f"Gmail connection details lookup failed: {e}")
                return self._describe(None)
            return dict(self._remember_details(key, grant))

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def connect(self, user_id: uuid.UUID | str | None) -> str:
        """
        Start the OAuth flow and return the Google authorization URL.

        Raises:
            NotAuthenticated: no user
            ConfigurationMissing: client id/secret not set
            AlreadyInProgress: a connect started < connect_lock_seconds ago
        """
        uid = _as_user_id(user_id)
        if uid is None:
            raise NotAuthenticated()
        self.provider.ensure_configured()

        key = str(uid)
        now = self._clock()
        started_at = self._connect_started_at.get(key)
        if started_at is not None and now - started_at < self.connect_lock_seconds:
            raise AlreadyInProgress()

        state = create_oauth_state(key, issued_at=now)
        auth_url = self.provider.get_auth_url(state)
        self._connect_started_at[key] = now
        logger.info("Generated Gmail auth URL", extra={"user_id": key})
        return auth_url

    async def complete_authorization(
        self, code: str, state: str, *, expected_user_id: uuid.UUID | str | None = None
    ) -> OAuthGrant:
        """
        Finish the OAuth flow: validate state, exchange the code, persist and
        verify the grant.

        expected_user_id, when given, must match the user the state was
        issued to (the logged-in user on the callback).

        Raises:
            InvalidState / ExpiredState: bad or stale state (no exchange made)
            ExchangeFailed: Google rejected the code
            VerificationFailed: grant saved but could not be read back
        """
        try:
            payload = decode_oauth_state(state)
        except OAuthStateError as e:
            raise InvalidState(details=str(e)) from e
        if is_oauth_state_expired(
            payload, max_age_seconds=self.state_max_age_seconds, now=self._clock()
        ):
            raise ExpiredState()

        uid = _as_user_id(payload["user_id"])
        if uid is None:
            raise InvalidState(details="user_id is not a valid id")
        if expected_user_id is not None and _as_user_id(expected_user_id) != uid:
            raise InvalidState(details="state was issued to a different user")
        key = str(uid)

        try:
            if not code:
                raise ExchangeFailed("Google did not return an authorization code.")

            tokens = await self.provider.exchange_code(code)
            grant = OAuthGrant.from_token_response(uid, tokens, now=self._now_dt())

            try:
                self.store.upsert(grant)
                stored = self.store.get(uid)
            except Exception as e:
                logger.error(f"Failed to store Gmail tokens: {e}", extra={"user_id": key})
                raise VerificationFailed(details=str(e)) from e
            if stored is None or stored.access_token != grant.access_token:
                logger.error("Gmail tokens missing after save", extra={"user_id": key})
                raise VerificationFailed()
        finally:
            self._connect_started_at.pop(key, None)

        self._last_lookup_at[key] = self._clock()
        self._last_known[key] = True
        self._remember_details(key, stored)
        await self.cache.set(key, True)
        logger.info("Gmail tokens stored and verified", extra={"user_id": key})
        return stored

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def refresh(self, user_id: uuid.UUID | str | None) -> bool:
        """
        Mint a new access token from the stored refresh token.

        Returns False (never raises, except for missing configuration) when
        there is no refresh token or Google rejects it.
        """
        uid = _as_user_id(user_id)
        if uid is None:
            return False
        key = str(uid)
        async with self._lock_for(key):
            try:
                grant = self.store.get(uid)
            except Exception as e:
                logger.error(f"Failed to load Gmail grant for refresh: {e}")
                return False
            if grant is None or not grant.has_refresh_token:
                return False

            try:
                refreshed = await self._refresh_grant(grant)
            except ConfigurationMissing:
                raise
            except Exception as e:
                logger.error(f"Gmail token refresh failed: {e}", extra={"user_id": key})
                refreshed = None
            await self._invalidate(key)
            return refreshed is not None

    async def get_access_token(self, user_id: uuid.UUID | str | None) -> str:
        """
        Return a usable access token, refreshing first if it has expired.

        Raises:
            NotAuthenticated: no user
            NotConnected: no grant stored
            RefreshRejected: expired and cannot be refreshed
        """
        uid = _as_user_id(user_id)
        if uid is None:
            raise NotAuthenticated()
        key = str(uid)
        async with self._lock_for(key):
            grant = self.store.get(uid)
            if grant is None:
                raise NotConnected()
            if grant.needs_reauth:
                raise RefreshRejected()
            if not grant.is_expired(self._now_dt()):
                return grant.access_token

            refreshed = await self._refresh_grant(grant)
            await self._invalidate(key)
            if refreshed is None:
                raise RefreshRejected()
            return refreshed.access_token

    async def disconnect(self, user_id: uuid.UUID | str | None) -> bool:
        """
        Revoke (best effort) and delete the grant, then clear every cache tier.

        Returns True if a stored grant was removed.
        """
        uid = _as_user_id(user_id)
        if uid is None:
            return False
        key = str(uid)
        deleted = False
        # Waits for an in-flight lookup or refresh so it cannot re-cache the grant
        async with self._lock_for(key):
            try:
                grant = self.store.get(uid)
                if grant is not None:
                    try:
                        revoked = await self.provider.revoke_token(grant.access_token)
                    except Exception as e:
                        logger.warning(f"Gmail token revocation raised: {e}")
                        revoked = False
                    if not revoked:
                        logger.warning("Gmail token revocation failed; deleting grant anyway")
                deleted = self.store.delete(uid)
            except Exception as e:
                logger.error(f"Failed to delete Gmail grant: {e}", extra={"user_id": key})
            finally:
                self._connect_started_at.pop(key, None)
                await self._invalidate(key)
        return deleted

    async def teardown(self, user_id: uuid.UUID | str | None) -> None:
        """Forget all per-user state (on logout). The stored grant is kept."""
        uid = _as_user_id(user_id)
        if uid is None:
            return
        key = str(uid)
        self._connect_started_at.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]
        await self._invalidate(key)
