"""Translate GmailError failures into HTTP responses."""

from fastapi import HTTPException, status

from outreach.services.gmail_errors import (
    AlreadyInProgress,
    ConfigurationMissing,
    ExchangeFailed,
    GmailError,
    InvalidState,
    NotAuthenticated,
    NotConnected,
    RateLimited,
    RefreshRejected,
    SendFailed,
    SendTimeout,
    TokenExpired,
    VerificationFailed,
)

# Checked in order; subclasses before their bases
_STATUS_BY_ERROR: list[tuple[type[GmailError], int]] = [
    (ConfigurationMissing, status.HTTP_503_SERVICE_UNAVAILABLE),
    (NotAuthenticated, status.HTTP_401_UNAUTHORIZED),
    (AlreadyInProgress, status.HTTP_409_CONFLICT),
    (InvalidState, status.HTTP_400_BAD_REQUEST),
    (ExchangeFailed, status.HTTP_502_BAD_GATEWAY),
    (VerificationFailed, status.HTTP_502_BAD_GATEWAY),
    (NotConnected, status.HTTP_401_UNAUTHORIZED),
    (RefreshRejected, status.HTTP_401_UNAUTHORIZED),
    (TokenExpired, status.HTTP_401_UNAUTHORIZED),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (SendTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (SendFailed, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: GmailError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def gmail_http_exception(exc: GmailError) -> HTTPException:
    """HTTPException with a {code, message, recovery_action} detail."""
    return HTTPException(status_code=status_for(exc), detail=exc.to_dict())
