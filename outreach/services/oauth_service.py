"""Google OAuth client for the per-user Gmail send grant.

Builds authorization URLs and talks to Google's token and revoke endpoints.
Persistence and caching live in gmail_connection; this module only speaks
HTTP.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from outreach.core.config import settings
from outreach.services.gmail_errors import ConfigurationMissing, ExchangeFailed, RefreshRejected
from outreach.services.http_service import DEFAULT_TIMEOUT, request_with_retries, response_payload

logger = logging.getLogger(__name__)

GMAIL_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GMAIL_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]

EXCHANGE_MAX_ATTEMPTS = 3

# Google answers a dead refresh token with 400 invalid_grant (sometimes 401)
REFRESH_REJECTED_STATUSES = {400, 401}


class GoogleOAuthClient:
    """Thin async client over Google's OAuth 2.0 endpoints."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        *,
        retry_base_delay: float = 0.5,
    ):
        self.client_id = client_id if client_id is not None else settings.GOOGLE_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.GOOGLE_CLIENT_SECRET
        )
        self.redirect_uri = redirect_uri or settings.GMAIL_REDIRECT_URI
        self.retry_base_delay = retry_base_delay

    def ensure_configured(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ConfigurationMissing()

    def get_auth_url(self, state: str) -> str:
        """Generate Gmail OAuth authorization URL."""
        self.ensure_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GMAIL_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GMAIL_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Transient failures (network, 429, 5xx) are retried with backoff.

        Raises:
            ExchangeFailed: Google returned an error, or retries ran out.
                details holds Google's error payload when there is one.
        """
        self.ensure_configured()
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            try:
                response = await request_with_retries(
                    lambda: client.post(GMAIL_TOKEN_URL, data=form),
                    max_attempts=EXCHANGE_MAX_ATTEMPTS,
                    base_delay=self.retry_base_delay,
                    label="gmail code exchange",
                )
            except httpx.RequestError as e:
                logger.error(f"Gmail code exchange failed after retries: {e}")
                raise ExchangeFailed(details={"error": "network_error", "message": str(e)}) from e

        payload = response_payload(response) or {}
        if response.status_code >= 400 or payload.get("error") or not payload.get("access_token"):
            logger.error(
                "Gmail code exchange rejected status=%s error=%s",
                response.status_code,
                payload.get("error"),
            )
            raise ExchangeFailed(details=payload or {"status": response.status_code, "body": response.text[:500]})
        return payload

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any] | None:
        """
        Mint a new access token from a refresh token.

        Returns the token payload, or None on a transient failure.

        Raises:
            RefreshRejected: Google rejected the refresh token (grant is dead).
        """
        self.ensure_configured()
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                response = await request_with_retries(
                    lambda: client.post(GMAIL_TOKEN_URL, data=form),
                    base_delay=self.retry_base_delay,
                    label="gmail token refresh",
                )
        except httpx.RequestError as e:
            logger.error(f"Gmail token refresh failed: {e}")
            return None

        payload = response_payload(response) or {}
        if response.status_code in REFRESH_REJECTED_STATUSES or payload.get("error") == "invalid_grant":
            logger.warning(
                "Gmail refresh token rejected status=%s error=%s",
                response.status_code,
                payload.get("error"),
            )
            raise RefreshRejected(details=payload)
        if response.status_code >= 400 or not payload.get("access_token"):
            logger.error(f"Gmail token refresh failed with status {response.status_code}")
            return None
        return payload

    async def revoke_token(self, token: str) -> bool:
        """Revoke a token with Google. Returns False on any failure."""
        try:
            async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                response = await client.post(
                    GMAIL_REVOKE_URL,
                    params={"token": token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.warning(f"Gmail token revocation request failed: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(
                "Gmail token revocation error status=%s body=%s",
                response.status_code,
                response.text[:300],
            )
            return False
        return True
