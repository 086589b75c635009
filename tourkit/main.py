"""
Tourkit — FastAPI Application Factory
=======================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, route mounting, error mapping
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn tourkit.main:app).

Exception mapping:
    ValidationError          → 400
    TerminalAuthError        → 401
    QuotaExceededError       → 429 (+ Retry-After when known)
    TransientTransportError  → 502 (upload retries exhausted)
    PlannerUnavailableError  → 503
    TourkitError (base)      → 500
    Exception (fallback)     → 500

Lifecycle:
    Startup:  configure logging, validate settings (log, don't exit)
    Shutdown: close the outbound HTTP clients
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tourkit import __version__
from tourkit.config import settings
from tourkit.dependencies import close_components
from tourkit.exceptions import (
    PlannerUnavailableError,
    QuotaExceededError,
    TerminalAuthError,
    TourkitError,
    TransientTransportError,
    ValidationError,
)
from tourkit.middleware.logging import RequestLoggingMiddleware
from tourkit.middleware.rate_limit import RateLimitMiddleware
from tourkit.middleware.request_id import RequestIDMiddleware, request_id_var
from tourkit.routes import health, routing, uploads

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Service messages carry their own "[<id>]" correlation prefix.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # These log every connection at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Tourkit %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Uploads and geocoding still work without a planner key
        logger.error("Configuration error: %s", str(e))

    logger.info("Storage endpoint: %s", settings.storage_url)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Tourkit shutting down...")
    await close_components()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details=None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception taxonomy to HTTP responses.

    Server-side failures log their context but only return the message.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(TerminalAuthError)
    async def handle_auth_error(request: Request, exc: TerminalAuthError):
        logger.warning("[%s] Auth error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=401,
            content=_error_body("not_authenticated", exc.message),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(QuotaExceededError)
    async def handle_quota_error(request: Request, exc: QuotaExceededError):
        logger.warning("[%s] Planner quota: %s", request_id_var.get(""), exc.message)
        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=429,
            content=_error_body(exc.code, exc.message, {"retry_after": exc.retry_after}),
            headers=headers,
        )

    @app.exception_handler(PlannerUnavailableError)
    async def handle_planner_unavailable(request: Request, exc: PlannerUnavailableError):
        logger.error("[%s] Planner unavailable: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=503,
            content=_error_body(exc.code, exc.message),
        )

    @app.exception_handler(TransientTransportError)
    async def handle_transport_error(request: Request, exc: TransientTransportError):
        logger.error("[%s] Upload failed: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=502,
            content=_error_body("upload_failed", exc.message, exc.context),
        )

    @app.exception_handler(TourkitError)
    async def handle_tourkit_error(request: Request, exc: TourkitError):
        logger.error("[%s] %s: %s | Context: %s", request_id_var.get(""), type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", exc.message),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Tourkit API",
        description=(
            "Resilient asset uploads and validated route sequencing for property "
            "showing tours."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RateLimit → RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(uploads.router)
    app.include_router(routing.router)
    app.include_router(health.router)

    return app


app = create_app()
