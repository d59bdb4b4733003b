"""Candidate outreach router.

Sends threaded Gmail messages to candidates about a job and exposes the
stored thread binding for the dashboard.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from outreach.core.deps import get_current_session, get_outreach_service, require_csrf_header
from outreach.routers.errors import gmail_http_exception
from outreach.schemas.auth import UserSession
from outreach.schemas.gmail import (
    ComposeUrlResponse,
    OutreachEmailRequest,
    OutreachEmailResponse,
    ThreadBindingRead,
)
from outreach.services.compose_service import build_compose_url
from outreach.services.gmail_errors import GmailError
from outreach.services.outreach_service import OutreachService

router = APIRouter(prefix="/outreach", tags=["Outreach"])
logger = logging.getLogger(__name__)


@router.post(
    "/candidates/{candidate_id}/jobs/{job_id}/email",
    response_model=OutreachEmailResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def send_candidate_email(
    candidate_id: str,
    job_id: str,
    data: OutreachEmailRequest,
    session: UserSession = Depends(get_current_session),
    service: OutreachService = Depends(get_outreach_service),
) -> OutreachEmailResponse:
    """Email a candidate about a job, replying in the existing thread if any."""
    try:
        result = await service.send_threaded_message(
            session.user_id,
            candidate_id,
            job_id,
            to=data.to,
            body=data.body,
            subject=data.subject,
            cc=data.cc,
            candidate_name=data.candidate_name,
            job_title=data.job_title,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GmailError as e:
        raise gmail_http_exception(e)

    return OutreachEmailResponse(
        thread_id=result.thread_id,
        message_id=result.message_id,
        binding_saved=result.binding_saved,
    )


@router.get(
    "/candidates/{candidate_id}/jobs/{job_id}/thread",
    response_model=ThreadBindingRead,
)
def get_candidate_thread(
    candidate_id: str,
    job_id: str,
    session: UserSession = Depends(get_current_session),
    service: OutreachService = Depends(get_outreach_service),
) -> ThreadBindingRead:
    """Return the Gmail thread bound to this candidate and job."""
    binding = service.thread_store.get(candidate_id, job_id)
    if binding is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No thread for this candidate and job")
    return ThreadBindingRead(
        candidate_id=candidate_id,
        job_id=job_id,
        thread_id=binding.thread_id,
        message_id=binding.message_id,
    )


@router.get("/compose-url", response_model=ComposeUrlResponse)
def get_compose_url(
    to: str = Query(..., min_length=1),
    subject: str = "",
    body: str = "",
    cc: str | None = None,
    session: UserSession = Depends(get_current_session),
) -> ComposeUrlResponse:
    """Gmail web compose link, for sending manually when the API is unavailable."""
    return ComposeUrlResponse(url=build_compose_url(to, subject=subject, body=body, cc=cc))
