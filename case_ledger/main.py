"""Case Ledger: Main FastAPI Application.

Case-management backend for a law firm: leads and confirmed clients, their
cases, hourly follow-up escalation, archive-on-delete, and a hash-chained
audit trail.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import LoginThrottle, async_session_factory, close_db, get_settings, init_db
from .jobs import EscalationSupervisor
from .schemas import ErrorDetail, ErrorResponse
from .services import CaseLedgerError, VersionConflictError, get_mailer

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are migrated)
    if settings.environment != "production":
        await init_db()

    app.state.login_throttle = LoginThrottle(
        max_attempts=settings.login_max_attempts,
        window_seconds=settings.login_window_seconds,
    )
    app.state.escalation = EscalationSupervisor(
        async_session_factory,
        interval_seconds=settings.escalation_interval_seconds,
        mailer=get_mailer(),
    )
    if settings.escalation_sweep_enabled:
        app.state.escalation.start()

    yield

    # Shutdown
    await app.state.escalation.stop()
    await get_mailer().drain()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Case Ledger API

    Staff-facing backend for lead intake, confirmed clients and their cases.

    ### Key Features

    - **Scoped access**: every read and write is filtered by the caller's role and staff name.
    - **Optimistic concurrency**: updates name the version they read; stale writes get 409.
    - **Lifecycle migration**: a lead reaching CLIENT moves to the confirmed-client table.
    - **Escalation**: hourly follow-up notifications and auto-archive after three follow-ups.
    - **Archive**: deletes snapshot the account and its dependents for restore.

    ### Authentication

    All endpoints except login require a valid JWT in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# Domain errors
@app.exception_handler(CaseLedgerError)
async def case_ledger_exception_handler(request: Request, exc: CaseLedgerError):
    """Render a domain error as an ``ErrorResponse`` with its own status code."""
    latest = exc.current if isinstance(exc, VersionConflictError) else None
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.error_code,
            message=exc.message,
            details=[
                ErrorDetail(field=key, message=str(value), code=exc.error_code)
                for key, value in exc.details.items()
            ],
            latest=latest,
        ).model_dump(mode="json"),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_detail = str(exc)
    # In development/debug mode, include full traceback
    if settings.debug or settings.environment != "production":
        error_detail = f"{str(exc)}\n{traceback.format_exc()}"

    logger.error(f"Unhandled exception: {error_detail}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "case_ledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
