"""Gmail integration and outreach schemas."""

from pydantic import BaseModel, Field


class GmailStatusResponse(BaseModel):
    """Connection status plus the stored grant breakdown."""
    connected: bool
    expired: bool = False
    has_refresh_token: bool = False
    needs_refresh: bool = False
    needs_reauth: bool = False
    expires_at: str | None = None


class GmailConnectResponse(BaseModel):
    auth_url: str


class GmailRefreshResponse(BaseModel):
    refreshed: bool


class GmailDisconnectResponse(BaseModel):
    success: bool


class OutreachEmailRequest(BaseModel):
    """Email to a candidate about a job. Subject is ignored for replies."""
    to: str = Field(..., min_length=1, max_length=320)
    body: str = Field(..., min_length=1)
    subject: str | None = Field(None, max_length=998)
    cc: str | None = Field(None, max_length=2000)
    candidate_name: str | None = Field(None, max_length=255)
    job_title: str | None = Field(None, max_length=255)


class OutreachEmailResponse(BaseModel):
    thread_id: str
    message_id: str
    binding_saved: bool


class ThreadBindingRead(BaseModel):
    candidate_id: str
    job_id: str
    thread_id: str
    message_id: str


class ComposeUrlResponse(BaseModel):
    url: str
