"""FastAPI application configuration and setup.

Main entry point for the HTTP API with CORS, middleware,
rate limiting, and lifecycle management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from twinsync.api.auth import verify_api_key
from twinsync.api.errors import http_status_for
from twinsync.api.rate_limit import MAX_REQUEST_BODY_BYTES, limiter
from twinsync.api.routes import api_router
from twinsync.exceptions import TwinSyncError
from twinsync.realtime import get_broadcaster
from twinsync.settings import Settings, get_settings
from twinsync.storage import close_db, init_db

# Context variable for correlation ID (async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_app: FastAPI | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    - Startup: database pool, commit hooks for realtime fan-out, scheduler
    - Shutdown: close SSE streams, stop scheduler, close database
    """
    settings = get_settings()

    broadcaster = get_broadcaster()
    await init_db(broadcaster, check_connection=settings.environment != "testing")

    scheduler = None
    should_start_scheduler = (
        settings.scheduler_enabled
        and settings.environment != "testing"
        and settings.twinsync_role in ("all", "scheduler")
    )
    if should_start_scheduler:
        from twinsync.scheduler import SchedulerService

        scheduler = SchedulerService()
        await scheduler.start()

    yield

    # Close SSE streams so uvicorn can finish a graceful shutdown/reload
    broadcaster.signal_shutdown()

    if scheduler:
        await scheduler.stop()
    await close_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="twinsync",
        description="openHAB item discovery, sensor mapping and live sync",
        version="0.1.0",
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    relaxed = settings.environment in ("development", "testing")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["*"] if relaxed else ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"]
        if relaxed
        else [
            "Content-Type",
            "Last-Event-ID",
            "X-API-Key",
            "X-Correlation-ID",
            "X-Owner-ID",
            "X-User-Role",
        ],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.middleware("http")(_body_size_limit_middleware)
    app.middleware("http")(_security_headers_middleware)
    app.middleware("http")(_correlation_middleware)

    app.include_router(api_router, prefix="/api/v1", dependencies=[Depends(verify_api_key)])

    _register_exception_handlers(app)

    return app


def _get_allowed_origins(settings: Settings) -> list[str]:
    """Explicit ALLOWED_ORIGINS, else permissive outside staging/production."""
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.environment in ("development", "testing"):
        return ["*"]
    if settings.environment == "staging":
        return ["http://localhost:3000", "http://localhost:8080"]
    return []


async def _body_size_limit_middleware(request: Request, call_next):
    """Reject requests whose declared body exceeds MAX_REQUEST_BODY_BYTES."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_BODY_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "error": {
                    "code": 413,
                    "message": f"Request body too large. Maximum size is {MAX_REQUEST_BODY_BYTES} bytes.",
                    "type": "request_too_large",
                }
            },
        )
    return await call_next(request)


async def _security_headers_middleware(request: Request, call_next):
    """Add security-related HTTP headers to every response."""
    settings = get_settings()
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.environment in ("production", "staging"):
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

    if request.url.path.startswith("/api/") and "Cache-Control" not in response.headers:
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

    return response


async def _correlation_middleware(request: Request, call_next):
    """Generate or propagate X-Correlation-ID for the request."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    _correlation_id.set(correlation_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def get_correlation_id() -> str | None:
    """Correlation ID of the current request, if any."""
    return _correlation_id.get()


def _register_exception_handlers(app: FastAPI) -> None:
    from fastapi import HTTPException

    @app.exception_handler(TwinSyncError)
    async def twinsync_error_handler(request: Request, exc: TwinSyncError) -> JSONResponse:
        """Map application errors to JSON envelopes with correlation ID."""
        correlation_id = get_correlation_id() or exc.correlation_id
        error_type = exc.__class__.__name__.replace("Error", "_error").lower()
        status_code = http_status_for(exc)

        import structlog

        logger = structlog.get_logger()
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "twinsync error",
            error_type=error_type,
            status_code=status_code,
            correlation_id=correlation_id,
            path=request.url.path,
            exc_info=exc if status_code >= 500 else None,
        )

        return JSONResponse(
            status_code=status_code,
            content={
                "error": {
                    "code": status_code,
                    "message": str(exc),
                    "type": error_type,
                    "correlation_id": correlation_id,
                }
            },
            headers={"X-Correlation-ID": correlation_id},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent format."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        headers = {"X-Correlation-ID": correlation_id, **(exc.headers or {})}
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.status_code,
                    "message": exc.detail,
                    "type": "http_error",
                    "correlation_id": correlation_id,
                }
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        settings = get_settings()
        correlation_id = get_correlation_id() or str(uuid.uuid4())

        import structlog

        logger = structlog.get_logger()
        logger.exception("Unhandled exception", correlation_id=correlation_id, exc_info=exc)

        detail = str(exc) if settings.debug else "Internal server error"
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": 500,
                    "message": detail,
                    "type": "internal_error",
                    "correlation_id": correlation_id,
                }
            },
            headers={"X-Correlation-ID": correlation_id},
        )


def get_app() -> FastAPI:
    """Get or create the singleton FastAPI application."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: "twinsync.api.main:get_app" with --factory, or
# "twinsync.api.main:app" which initializes lazily on first access.
def __getattr__(name: str) -> Any:
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
