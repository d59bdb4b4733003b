"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from outreach.core.config import settings
from outreach.core.redis_client import close_async_redis_client
from outreach.db.session import SessionLocal, engine
from outreach.services.gmail_connection import GmailConnectionManager
from outreach.services.grant_store import SqlGrantStore
from outreach.services.outreach_service import OutreachService
from outreach.services.thread_store import SqlThreadStore

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from outreach.core.rate_limit import limiter


# ============================================================================
# Services
# ============================================================================

def build_services(app: FastAPI) -> None:
    """Create the process-wide Gmail manager and outreach service."""
    manager = GmailConnectionManager(SqlGrantStore(SessionLocal))
    app.state.gmail_manager = manager
    app.state.outreach_service = OutreachService(manager, SqlThreadStore(SessionLocal))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own services before the app starts
    if not hasattr(app.state, "gmail_manager"):
        build_services(app)
    yield
    await close_async_redis_client()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Outreach API",
    description="Recruiter Gmail connection and threaded candidate outreach",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    expose_headers=["X-Request-ID"],
)

# ============================================================================
# Routers
# ============================================================================

from outreach.routers import auth, integrations, outreach

app.include_router(auth.router, prefix="/auth", tags=["auth"])

# Gmail OAuth connection
app.include_router(integrations.router)

# Candidate outreach (threaded Gmail sends)
app.include_router(outreach.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
