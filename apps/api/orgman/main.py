"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from orgman.core.config import settings
from orgman.core.errors import ServiceError
from orgman.core.structured_logging import build_log_context
from orgman.db.session import engine
from orgman.services.membership_api import MembershipApiError

logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Organization Roster API",
    description="Organization roster management and bulk member uploads",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)


# ============================================================================
# Error Handling
# ============================================================================


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.info(
        "Request failed with %s",
        exc.code,
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.exception_handler(MembershipApiError)
async def membership_api_error_handler(request: Request, exc: MembershipApiError) -> JSONResponse:
    logger.warning(
        "Membership API error (status=%s)",
        exc.status_code,
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(
        status_code=502,
        content={"detail": {"code": "membership_api_error", "message": exc.message}},
    )


# ============================================================================
# Routers
# ============================================================================

from orgman.routers import bulk_uploads, internal, roster, seat_purchases  # noqa: E402

app.include_router(roster.router)
app.include_router(bulk_uploads.router)
app.include_router(seat_purchases.router)
app.include_router(internal.router)


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
