"""
CodeSafe Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes app configuration, middleware registration, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn codesafe.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────┐ ┌────────┐ ┌─────────┐ ┌──────────────┐  │
    │  │ Rate Limit │→│ Req ID │→│ Logging │→│ Session (PIN)│  │
    │  └────────────┘ └────────┘ └─────────┘ └──────────────┘  │
    │                                                          │
    │  Routes:                                                 │
    │  ┌────────────┐ ┌──────────────────┐ ┌──────────────┐    │
    │  │ /api/notes │ │ .../attachments  │ │ GET /health  │    │
    │  └────────────┘ └──────────────────┘ └──────────────┘    │
    │                                                          │
    │  Exception Handlers:                                     │
    │  ┌────────────────────────────────────────────────────┐  │
    │  │ Validation→400 │ PIN→401/403 │ Storage→502/504 │ 500│  │
    │  └────────────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration report, local storage directory
    Shutdown: dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from codesafe import __version__
from codesafe.config import settings
from codesafe.database import dispose_engine
from codesafe.exceptions import (
    AccessDeniedError,
    AttachmentPersistError,
    CodeSafeError,
    DatabaseError,
    NoteAlreadyExistsError,
    NotFoundError,
    PinVerificationRequiredError,
    RateLimitExceededError,
    StorageUploadError,
    ValidationError,
)
from codesafe.middleware.logging import RequestLoggingMiddleware
from codesafe.middleware.rate_limit import RateLimitMiddleware
from codesafe.middleware.request_id import RequestIDMiddleware, request_id_var
from codesafe.routes import attachments, health, notes

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Request ids are added to individual messages by the middleware and
    exception handlers.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("cloudinary").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("CodeSafe Backend starting up...")

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info("Storage backend: %s", settings.storage_backend)
    if settings.storage_backend == "local":
        storage = Path(settings.storage_root)
        storage.mkdir(parents=True, exist_ok=True)
        logger.info("Storage directory: %s", storage.resolve())

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("CodeSafe Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, exc: CodeSafeError, details=None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": exc.message,
            "details": details,
            "request_id": request_id_var.get(""),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        ValidationError              → 400 (user input; logged at INFO)
        PinVerificationRequiredError → 401 (client should ask for the PIN)
        AccessDeniedError            → 403 (wrong PIN and other refusals)
        NotFoundError                → 404
        NoteAlreadyExistsError       → 409
        RateLimitExceededError       → 429
        AttachmentPersistError       → 500 (orphan id logged, never returned)
        DatabaseError                → 500
        StorageUploadError           → 502 / 504
        CodeSafeError (base)         → 500
        Exception (fallback)         → 500

    Responses never carry stack traces, SQL or storage internals.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.info("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc, details=exc.context)

    @app.exception_handler(PinVerificationRequiredError)
    async def handle_pin_required(request: Request, exc: PinVerificationRequiredError):
        return _error_response(401, "pin_required", exc, details={"code": exc.code})

    @app.exception_handler(AccessDeniedError)
    async def handle_access_denied(request: Request, exc: AccessDeniedError):
        logger.warning("[%s] Access denied: %s", request_id_var.get(""), exc.message)
        return _error_response(403, "access_denied", exc)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc)

    @app.exception_handler(NoteAlreadyExistsError)
    async def handle_note_exists(request: Request, exc: NoteAlreadyExistsError):
        return _error_response(409, "note_exists", exc, details={"code": exc.code})

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc,
            details=exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(StorageUploadError)
    async def handle_storage_upload(request: Request, exc: StorageUploadError):
        logger.error(
            "[%s] Storage upload failed: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        error = "storage_timeout" if exc.timeout else "storage_unavailable"
        return _error_response(exc.status_code, error, exc)

    @app.exception_handler(AttachmentPersistError)
    async def handle_attachment_persist(request: Request, exc: AttachmentPersistError):
        rid = request_id_var.get("")
        if exc.compensated:
            logger.error("[%s] Attachment not recorded; upload rolled back", rid)
        else:
            logger.error(
                "[%s] Attachment not recorded; orphaned remote object %s",
                rid,
                exc.orphaned_object_id,
            )
        return _error_response(500, "attachment_not_saved", exc)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "details": None,
                "request_id": rid,
            },
        )

    @app.exception_handler(CodeSafeError)
    async def handle_codesafe_error(request: Request, exc: CodeSafeError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return _error_response(500, "server_error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "details": None,
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="CodeSafe API",
        description=(
            "Code-addressed notepad. Open a note by typing its code, optionally "
            "lock it with a PIN, and attach documents, images and videos."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RateLimit → RequestID → Logging → Session → GZip → CORS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Idle timeout: the cookie is re-issued on every response while the
    # session holds a flag, so max_age counts from the last request.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret_key,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_idle_timeout,
        same_site="lax",
        https_only=settings.session_https_only,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(notes.router)
    app.include_router(attachments.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
