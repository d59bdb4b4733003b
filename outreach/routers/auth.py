"""Session router (logout only; sign-in is handled by the hosted auth provider)."""
import logging

from fastapi import APIRouter, Depends, Response

from outreach.core.deps import (
    COOKIE_NAME,
    get_current_session,
    get_gmail_manager,
    require_csrf_header,
)
from outreach.schemas.auth import UserSession
from outreach.services.gmail_connection import GmailConnectionManager

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/me", response_model=UserSession)
def me(session: UserSession = Depends(get_current_session)) -> UserSession:
    """Return the current session context."""
    return session


@router.post("/logout", dependencies=[Depends(require_csrf_header)])
async def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
    manager: GmailConnectionManager = Depends(get_gmail_manager),
):
    """
    Clear session cookie and drop this user's cached Gmail state.

    Requires X-Requested-With header for CSRF protection.
    """
    await manager.teardown(session.user_id)
    response.delete_cookie(COOKIE_NAME, path="/")
    logger.info("User logged out", extra={"user_id": str(session.user_id)})
    return {"status": "logged_out"}
