"""Gmail integration router.

Handles the per-user Gmail OAuth flow. Each user connects their own account.
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from outreach.core.config import settings
from outreach.core.deps import get_current_session, get_gmail_manager, require_csrf_header
from outreach.core.rate_limit import limiter
from outreach.routers.errors import gmail_http_exception
from outreach.schemas.auth import UserSession
from outreach.schemas.gmail import (
    GmailConnectResponse,
    GmailDisconnectResponse,
    GmailRefreshResponse,
    GmailStatusResponse,
)
from outreach.services.gmail_connection import GmailConnectionManager
from outreach.services.gmail_errors import GmailError

router = APIRouter(prefix="/integrations", tags=["Integrations"])
logger = logging.getLogger(__name__)

INTEGRATIONS_PAGE = "/settings/integrations"


def _frontend_redirect(**params: str) -> RedirectResponse:
    query = urlencode(params)
    return RedirectResponse(f"{settings.FRONTEND_URL}{INTEGRATIONS_PAGE}?{query}", status_code=302)


@router.get("/gmail/status", response_model=GmailStatusResponse)
async def gmail_connection_status(
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
) -> GmailStatusResponse:
    """Check if current user has Gmail connected."""
    connected = await manager.check_connection(session.user_id)
    details = await manager.get_connection_details(session.user_id)
    details["connected"] = connected
    return GmailStatusResponse(**details)


@router.get("/gmail/connect", response_model=GmailConnectResponse)
@limiter.limit("5/minute")
def gmail_connect(
    request: Request,
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
) -> GmailConnectResponse:
    """Get Gmail OAuth authorization URL.

    Frontend should redirect user to this URL.
    """
    try:
        auth_url = manager.connect(session.user_id)
    except GmailError as e:
        raise gmail_http_exception(e)
    return GmailConnectResponse(auth_url=auth_url)


@router.get("/gmail/callback")
async def gmail_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
) -> RedirectResponse:
    """Handle Gmail OAuth callback."""
    if error:
        # User declined consent (or Google refused) before any code was issued
        logger.info("Gmail authorization declined: %s", error)
        return _frontend_redirect(error=error)
    if not state:
        return _frontend_redirect(error="invalid_state")

    try:
        await manager.complete_authorization(
            code or "", state, expected_user_id=session.user_id
        )
    except GmailError as e:
        logger.warning(f"Gmail callback failed: {e.code}")
        return _frontend_redirect(error=e.code)
    return _frontend_redirect(success="gmail")


@router.post(
    "/gmail/refresh",
    response_model=GmailRefreshResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def gmail_refresh(
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
) -> GmailRefreshResponse:
    """Refresh the stored Gmail access token."""
    try:
        refreshed = await manager.refresh(session.user_id)
    except GmailError as e:
        raise gmail_http_exception(e)
    return GmailRefreshResponse(refreshed=refreshed)


@router.delete(
    "/gmail",
    response_model=GmailDisconnectResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def gmail_disconnect(
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
) -> GmailDisconnectResponse:
    """Disconnect Gmail: revoke the grant and forget cached status."""
    deleted = await manager.disconnect(session.user_id)
    return GmailDisconnectResponse(success=deleted)
