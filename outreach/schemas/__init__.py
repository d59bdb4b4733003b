"""Pydantic schemas for API request/response models."""

from outreach.schemas.auth import TokenPayload, UserSession
from outreach.schemas.gmail import (
    ComposeUrlResponse,
    GmailConnectResponse,
    GmailDisconnectResponse,
    GmailRefreshResponse,
    GmailStatusResponse,
    OutreachEmailRequest,
    OutreachEmailResponse,
    ThreadBindingRead,
)
