"""
AuthGate — FastAPI Application Factory
========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
       The registry and password service are built here and stored on
       `app.state`, so tests can hand in their own.
Who:   Called by uvicorn to start the server (uvicorn authgate.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────┐ ┌─────────┐ ┌──────┐ ┌──────────┐ ┌───────┐  │
    │  │ Req ID │→│ Logging │→│ CORS │→│ Throttle │→│Session│  │
    │  └────────┘ └─────────┘ └──────┘ └──────────┘ └───────┘  │
    │                      → Access Filter → GZip              │
    │                                                          │
    │  Routes:                                                 │
    │  ┌──────────────┐ ┌─────────────┐ ┌──────────────────┐   │
    │  │ /api/register│ │ /api/login  │ │ /api/logout      │   │
    │  │ /api/me      │ │ /health     │ │ / (static pages) │   │
    │  └──────────────┘ └─────────────┘ └──────────────────┘   │
    │                                                          │
    │  app.state: settings, registry, passwords                │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging (with secret redaction)
    2. Check security-sensitive settings (logged, not fatal)
    3. Initialize the connection registry (never fatal; may end with
       zero clients, in which case database endpoints answer 503)

    Shutdown:
    1. Dispose every client pool
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from authgate import __version__
from authgate.config import Settings, settings as default_settings
from authgate.exceptions import AuthGateError
from authgate.middleware.access import AccessFilterMiddleware
from authgate.middleware.logging import RequestLoggingMiddleware
from authgate.middleware.rate_limit import CredentialThrottleMiddleware
from authgate.middleware.request_id import RequestIDMiddleware, request_id_var
from authgate.redaction import RedactingFilter, redact
from authgate.registry import ConnectionRegistry
from authgate.routes import auth, health
from authgate.services.password import PasswordService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the entire application.

    Every handler gets a RedactingFilter, so a password that slips into a
    log call (e.g. inside a driver error message) is masked before output.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RedactingFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    registry: ConnectionRegistry = app.state.registry

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("AuthGate %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration before exposing this server.")

    await registry.initialize(settings.db_config_path)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("AuthGate shutting down...")
    await registry.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    body = {"error": error, "message": message}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Every error body has the shape {"error": <code>, "message": <text>}
    plus "details" where the exception allows it. The request id travels
    in the X-Request-ID header only, so two identical failures produce
    byte-identical bodies.

    Handler hierarchy:
        AuthGateError (any subclass) → its own status_code / error_code
        RequestValidationError       → 400 validation_error
        HTTPException (404 etc.)     → its status, generic body
        Exception (fallback)         → 500 internal_server_error

    Security: 5xx responses never carry internal details. They are logged
    server-side after redaction.
    """

    @app.exception_handler(AuthGateError)
    async def handle_authgate_error(request: Request, exc: AuthGateError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error(
                "[%s] %s: %s | Context: %s",
                rid,
                type(exc).__name__,
                exc.message,
                redact(exc.context),
            )
        else:
            logger.info("[%s] %s: %s", rid, type(exc).__name__, exc.message)

        headers = {}
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                exc.error_code,
                exc.message,
                exc.context if exc.expose_context else None,
            ),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Malformed or absent JSON body."""
        fields = []
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            fields.append(".".join(loc) or "body")
        logger.info("[%s] Request validation failed: %s", request_id_var.get(""), fields)
        return JSONResponse(
            status_code=400,
            content=error_body("validation_error", "Invalid request body", {"fields": fields}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error = "not_found" if exc.status_code == 404 else "http_error"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(error, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: stack trace logged server-side only."""
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            redact(str(exc)),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again later.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ConnectionRegistry] = None,
    passwords: Optional[PasswordService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:  defaults to the module-level settings
        registry:  defaults to a fresh ConnectionRegistry; an already
                   initialized registry may be passed (tests)
        passwords: defaults to PasswordService.from_settings(settings)
    """
    settings = settings or default_settings

    app = FastAPI(
        title="AuthGate API",
        description="Session-based authentication backed by named PostgreSQL pools.",
        version=__version__,
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry or ConnectionRegistry(settings=settings)
    app.state.passwords = passwords or PasswordService.from_settings(settings)

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition (last added = outermost).

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_middleware(AccessFilterMiddleware, settings=settings)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site=settings.session_same_site,
        https_only=settings.session_https_only,
    )

    app.add_middleware(CredentialThrottleMiddleware, settings=settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(health.router)

    # Static pages last: the "/" mount catches every path no route claimed
    public_dir = Path(settings.public_dir)
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir, html=True), name="public")
    else:
        logger.warning("Static directory %s does not exist; pages will not be served", public_dir)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
