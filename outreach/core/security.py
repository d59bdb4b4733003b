"""Security utilities for JWT session tokens and OAuth state management."""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from outreach.core.config import settings


# =============================================================================
# Session Token (JWT in cookie)
# =============================================================================

def create_session_token(user_id: UUID, token_version: int) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    Token contains user identity and revocation version.
    """
    payload = {
        "sub": str(user_id),
        "token_version": token_version,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# OAuth State (stateless, HMAC-signed)
# =============================================================================

class OAuthStateError(ValueError):
    """State parameter could not be decoded or failed signature checks."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        settings.oauth_state_secret.encode(), payload_b64.encode(), hashlib.sha256
    ).digest()
    return _b64encode(digest)


def create_oauth_state(
    user_id: str,
    *,
    action: str = "gmail",
    issued_at: float | None = None,
) -> str:
    """
    Create an opaque OAuth state value.

    The payload carries the user id and issuance time so the callback can
    validate it without a server-side session. A random nonce keeps two
    states for the same user distinct.
    """
    payload = {
        "user_id": str(user_id),
        "timestamp": int(issued_at if issued_at is not None else time.time()),
        "action": action,
        "nonce": secrets.token_urlsafe(8),
    }
    payload_b64 = _b64encode(json.dumps(payload, separators=(",", ":")).encode())
    return f"{payload_b64}.{_sign(payload_b64)}"


def decode_oauth_state(state: str) -> dict:
    """
    Decode and verify an OAuth state value.

    Returns the payload dict. Expiry is checked by the caller so that an
    expired state can be reported distinctly from a forged one.

    Raises:
        OAuthStateError: malformed value or bad signature
    """
    if not state or "." not in state:
        raise OAuthStateError("Malformed state")

    payload_b64, signature = state.rsplit(".", 1)
    if not hmac.compare_digest(signature, _sign(payload_b64)):
        raise OAuthStateError("State signature mismatch")

    try:
        payload = json.loads(_b64decode(payload_b64))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise OAuthStateError("State payload is not valid JSON") from e

    if not isinstance(payload, dict) or not payload.get("user_id"):
        raise OAuthStateError("State payload missing user_id")
    if not isinstance(payload.get("timestamp"), (int, float)):
        raise OAuthStateError("State payload missing timestamp")
    return payload


def is_oauth_state_expired(
    payload: dict, *, max_age_seconds: int, now: float | None = None
) -> bool:
    """Return True if the state was issued more than max_age_seconds ago."""
    current = now if now is not None else time.time()
    return current - float(payload["timestamp"]) > max_age_seconds
