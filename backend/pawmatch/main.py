"""
PawMatch Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() assembles middleware, exception handlers and routers;
       the lifespan configures logging, checks settings and disposes the
       engine on shutdown.
Who:   Run by uvicorn (uvicorn pawmatch.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                     FastAPI App                          │
    │                                                          │
    │  Middleware:  Rate Limit → Request ID → Logging → CORS   │
    │                                                          │
    │  Routes:                                                 │
    │    /api/conversations          adopters and devices      │
    │    /api/shelter/conversations  shelters                  │
    │    /health                                               │
    │                                                          │
    │  Exception Handlers:                                     │
    │    Validation→400  Unauthorized→401  NotFound→404        │
    │    Conflict→409    RateLimit→429     Database→500        │
    └──────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from pawmatch import __version__
from pawmatch.config import settings
from pawmatch.database import dispose_engine
from pawmatch.exceptions import (
    DatabaseError,
    NotFoundError,
    PawMatchError,
    RateLimitExceededError,
    StorageConflictError,
    UnauthorizedError,
    ValidationError,
)
from pawmatch.middleware.logging import RequestLoggingMiddleware
from pawmatch.middleware.rate_limit import RateLimitMiddleware
from pawmatch.middleware.request_id import RequestIDMiddleware, request_id_var
from pawmatch.routes import conversations, health, shelter_conversations

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the whole application.

    Called once from the lifespan, before anything else logs. Every module
    logs through logging.getLogger(__name__); the access log uses
    "pawmatch.access".
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("PawMatch Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Not fatal: development setups run with the defaults on purpose
        logger.warning("Configuration warning: %s", str(e))

    logger.info(
        "Opening message on start: %s (%d intro lines)",
        "on" if settings.auto_message_on_start else "off",
        len(settings.auto_message_intro_lines),
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("PawMatch Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """The {error, message, details?, request_id} body shared by every handler."""
    content: Dict[str, Any] = {"error": error, "message": message}
    if details:
        content["details"] = details
    content["request_id"] = request_id_var.get("")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to HTTP responses.

    Handler hierarchy:
        ValidationError         → 400 Bad Request
        RequestValidationError  → 400 Bad Request (malformed body or query)
        UnauthorizedError       → 401 Unauthorized
        NotFoundError           → 404 Not Found (animal, conversation, user)
        StorageConflictError    → 409 Conflict
        RateLimitExceededError  → 429 Too Many Requests
        DatabaseError           → 500 Internal Server Error
        PawMatchError (base)    → 500 Internal Server Error
        Exception (fallback)    → 500 Internal Server Error

    Bodies never contain stack traces or SQL; those are logged server-side.
    Only validation and rate limit errors expose their context as details.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return error_response(400, "validation_error", exc.message, details=exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        fields = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg", "")}
            for error in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), fields)
        return error_response(
            400, "validation_error", "Request is malformed", details={"fields": fields}
        )

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError):
        return error_response(
            401, "unauthorized", exc.message, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(404, "not_found", exc.message)

    @app.exception_handler(StorageConflictError)
    async def handle_conflict(request: Request, exc: StorageConflictError):
        logger.warning(
            "[%s] Storage conflict: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return error_response(409, "conflict", exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            details=exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(PawMatchError)
    async def handle_application_error(request: Request, exc: PawMatchError):
        logger.error(
            "[%s] Application error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Build a configured FastAPI instance.

    Tests call this for a fresh app (and fresh rate limit counters) per test.
    """
    app = FastAPI(
        title="PawMatch API",
        description=(
            "Match conversations between adopters and shelter animals: start a chat "
            "after a swipe, exchange messages, and manage the shelter inbox."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Added in reverse: RateLimit runs first, CORS last
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(conversations.router)
    app.include_router(shelter_conversations.router)
    app.include_router(health.router)

    return app


app = create_app()
