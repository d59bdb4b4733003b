"""Typed failures for the Gmail connection and send paths.

Every failure carries a stable code, a user-facing message and the recovery
the UI should offer (reconnect, retry, wait, or contact an admin). Routers
map these onto HTTP responses; services branch on the class.
"""

from typing import Any

RECOVERY_RECONNECT = "reconnect"
RECOVERY_RETRY = "retry"
RECOVERY_WAIT = "wait"
RECOVERY_CONTACT_ADMIN = "contact_admin"


class GmailError(Exception):
    """Base exception for Gmail integration errors."""

    code = "gmail_error"
    default_message = "An error occurred with Gmail. Please try again later."
    recovery_action: str | None = None

    def __init__(self, message: str | None = None, *, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "recovery_action": self.recovery_action,
        }


# Configuration -------------------------------------------------------------


class ConfigurationMissing(GmailError):
    code = "configuration_missing"
    default_message = (
        "Gmail integration is not configured. An administrator must set "
        "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
    )
    recovery_action = RECOVERY_CONTACT_ADMIN


# Authorization flow --------------------------------------------------------


class NotAuthenticated(GmailError):
    code = "not_authenticated"
    default_message = "Please log in to connect your Gmail account."
    recovery_action = RECOVERY_RECONNECT


class AlreadyInProgress(GmailError):
    code = "already_in_progress"
    default_message = "A Gmail connection attempt is already in progress."
    recovery_action = RECOVERY_WAIT


class InvalidState(GmailError):
    code = "invalid_state"
    default_message = "The Gmail authorization response could not be verified. Please connect again."
    recovery_action = RECOVERY_RECONNECT


class ExpiredState(InvalidState):
    code = "expired_state"
    default_message = "The Gmail authorization link expired. Please connect again."


class ExchangeFailed(GmailError):
    code = "exchange_failed"
    default_message = "Google rejected the authorization code. Please connect again."
    recovery_action = RECOVERY_RECONNECT


class VerificationFailed(GmailError):
    code = "verification_failed"
    default_message = (
        "Gmail authorized, but the connection could not be saved. Please try again."
    )
    recovery_action = RECOVERY_RETRY


# Tokens --------------------------------------------------------------------


class NotConnected(GmailError):
    code = "not_connected"
    default_message = "Gmail is not connected. Please connect your account."
    recovery_action = RECOVERY_RECONNECT


class TokenExpired(GmailError):
    code = "token_expired"
    default_message = "Your Gmail authorization has expired. Please reconnect."
    recovery_action = RECOVERY_RECONNECT


class RefreshRejected(GmailError):
    code = "refresh_rejected"
    default_message = "Your Gmail authorization is no longer valid. Please reconnect."
    recovery_action = RECOVERY_RECONNECT


# Sending -------------------------------------------------------------------


class RateLimited(GmailError):
    code = "rate_limited"
    default_message = "Too many emails sent in a short time. Please wait a minute and try again."
    recovery_action = RECOVERY_WAIT


class SendFailed(GmailError):
    code = "send_failed"
    default_message = "Gmail could not send the email."
    recovery_action = RECOVERY_RETRY


class MalformedResponse(SendFailed):
    code = "malformed_response"
    default_message = "Gmail accepted the request but returned no message id. Check Sent mail before retrying."


class SendTimeout(GmailError):
    code = "send_timeout"
    default_message = "Sending timed out. Check Sent mail before retrying."
    recovery_action = RECOVERY_RETRY
