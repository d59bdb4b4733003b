"""API routers."""

from outreach.routers.auth import router as auth_router
from outreach.routers.integrations import router as integrations_router
from outreach.routers.outreach import router as outreach_router

__all__ = [
    "auth_router",
    "integrations_router",
    "outreach_router",
]
