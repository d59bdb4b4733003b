"""Gmail sending service.

Builds RFC-822 messages with threading headers and submits them through the
Gmail API using the user's connected account.
"""

import base64
import logging
from dataclasses import dataclass
from email.mime.text import MIMEText

import httpx

from outreach.services.gmail_errors import (
    MalformedResponse,
    RateLimited,
    SendFailed,
    TokenExpired,
)
from outreach.services.http_service import DEFAULT_TIMEOUT, response_payload

logger = logging.getLogger(__name__)

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


@dataclass
class OutboundMessage:
    """One email to submit. Subject is only sent for a new thread."""

    to: str
    body: str
    cc: str | None = None
    subject: str | None = None
    reply_to_message_id: str | None = None
    thread_id: str | None = None


@dataclass(frozen=True)
class SendResult:
    message_id: str
    thread_id: str


def _angle_wrap(message_id: str) -> str:
    message_id = message_id.strip()
    if message_id.startswith("<") and message_id.endswith(">"):
        return message_id
    return f"<{message_id}>"


def build_mime_message(message: OutboundMessage, sender: str | None = None) -> MIMEText:
    """Build the HTML message with To/Cc/Subject and threading headers."""
    msg = MIMEText(message.body, "html", "utf-8")
    msg["To"] = message.to
    if sender:
        msg["From"] = sender
    if message.cc:
        msg["Cc"] = message.cc
    if message.subject:
        msg["Subject"] = message.subject
    if message.reply_to_message_id:
        ref = _angle_wrap(message.reply_to_message_id)
        msg["In-Reply-To"] = ref
        msg["References"] = ref
    return msg


def encode_raw_message(raw: bytes) -> str:
    """URL-safe base64 without padding, as the Gmail API expects."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


async def send_message(message: OutboundMessage, access_token: str) -> SendResult:
    """Send a message via the Gmail API.

    Raises:
        TokenExpired: Gmail answered 401
        RateLimited: Gmail answered 429
        SendFailed: any other non-2xx (details holds the response body)
        MalformedResponse: 2xx without a message id
    """
    payload: dict[str, str] = {
        "raw": encode_raw_message(build_mime_message(message).as_bytes()),
    }
    if message.thread_id:
        payload["threadId"] = message.thread_id

    try:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            response = await client.post(
                GMAIL_SEND_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
    except httpx.RequestError as e:
        logger.error(f"Gmail send request failed: {e}")
        raise SendFailed(details={"error": "network_error", "message": str(e)}) from e

    if response.status_code == 401:
        raise TokenExpired()
    if response.status_code == 429:
        raise RateLimited("Gmail is rate limiting this account. Please wait and try again.")
    if response.status_code < 200 or response.status_code >= 300:
        logger.error(f"Gmail API error {response.status_code}: {response.text[:500]}")
        raise SendFailed(details={"status": response.status_code, "body": response.text})

    data = response_payload(response) or {}
    message_id = data.get("id")
    if not message_id:
        raise MalformedResponse(details=data or {"body": response.text[:500]})

    thread_id = data.get("threadId") or message.thread_id or message_id
    return SendResult(message_id=message_id, thread_id=thread_id)
