"""
FastAPI application entry point.

This module initializes the FastAPI application with:
- Lifespan management (startup/shutdown)
- Middleware configuration (CORS, rate limiting)
- Exception handlers
- Route registration

Usage:
    Run with uvicorn:
        uvicorn notebridge.main:app --host 127.0.0.1 --port 8080

    Or with the server.py entry point:
        python server.py
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from notebridge import __version__
from notebridge.config import get_logger, settings
from notebridge.dependencies import limiter
from notebridge.exceptions import NotebridgeException
from notebridge.models import ErrorResponse
from notebridge.routes import chat, health, index, models
from notebridge.state import AppState

logger = get_logger("main")


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the application state unless one was installed beforehand
    (tests), and closes it on shutdown.
    """
    logger.info("=" * 60)
    logger.info("notebridge %s starting...", __version__)
    logger.info("=" * 60)
    logger.info(
        "Configuration | Local=%s (%s) | Chat model=%s | Transport=%s",
        settings.LOCAL_BASE_URL or "disabled",
        settings.LOCAL_WIRE_FORMAT,
        settings.CHAT_MODEL,
        settings.TRANSPORT_MODE,
    )

    if not hasattr(app.state, "app_state"):
        try:
            app.state.app_state = await AppState.create()
        except Exception as exc:
            logger.critical("Startup failed: %s", exc, exc_info=True)
            raise

    logger.info("Server ready to accept requests")

    yield

    logger.info("Shutting down...")
    await app.state.app_state.aclose()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(app_state: AppState | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_state: Pre-built state to serve instead of creating one at startup

    Returns:
        Configured FastAPI application instance
    """
    application = FastAPI(
        title="notebridge API",
        description=(
            "Local gateway between a notes workspace and language models: "
            "provider-agnostic chat, embeddings and semantic search over notes."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    if app_state is not None:
        application.state.app_state = app_state

    configure_rate_limiting(application)
    configure_cors(application)
    configure_exception_handlers(application)
    configure_routes(application)

    return application


# =============================================================================
# Rate Limiting
# =============================================================================

def configure_rate_limiting(application: FastAPI) -> None:
    """Configure rate limiting on the chat endpoints."""
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.debug("Rate limiting configured: %s", settings.RATE_LIMIT)


# =============================================================================
# CORS Configuration
# =============================================================================

def configure_cors(application: FastAPI) -> None:
    """Configure CORS middleware."""
    cors_origins = settings.CORS_ORIGINS_LIST
    allow_credentials = cors_origins != ["*"]

    if not allow_credentials:
        logger.warning("CORS: Wildcard origin '*' configured, credentials disabled")
    else:
        logger.info("CORS: Configured for origins: %s", cors_origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


# =============================================================================
# Exception Handlers
# =============================================================================

def configure_exception_handlers(application: FastAPI) -> None:
    """Configure exception handlers."""

    @application.exception_handler(NotebridgeException)
    async def notebridge_exception_handler(
        request: Request,
        exc: NotebridgeException,
    ) -> JSONResponse:
        """Map notebridge exceptions to their status code and JSON body."""
        logger.warning(
            "NotebridgeException | path=%s | type=%s | message=%s",
            request.url.path,
            exc.__class__.__name__,
            exc.message,
        )
        error_response = ErrorResponse(**exc.to_dict())
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response.model_dump(mode="json", exclude_none=True),
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unhandled exceptions."""
        logger.error(
            "Unhandled exception | path=%s | type=%s | error=%s",
            request.url.path,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        )


# =============================================================================
# Route Configuration
# =============================================================================

def configure_routes(application: FastAPI) -> None:
    """Configure application routes."""
    application.include_router(health.router)
    application.include_router(chat.router)
    application.include_router(models.router)
    application.include_router(index.router)


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()
