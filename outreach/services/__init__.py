"""Service layer modules."""

from outreach.services.gmail_connection import GmailConnectionManager
from outreach.services.gmail_errors import GmailError
from outreach.services.gmail_service import OutboundMessage, SendResult, send_message
from outreach.services.outreach_service import OutreachResult, OutreachService
from outreach.services.thread_store import ThreadBinding, normalize_thread_ref

__all__ = [
    "GmailConnectionManager",
    "GmailError",
    "OutboundMessage",
    "SendResult",
    "send_message",
    "OutreachResult",
    "OutreachService",
    "ThreadBinding",
    "normalize_thread_ref",
]
