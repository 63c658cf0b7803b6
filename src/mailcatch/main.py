"""mailcatch - Main FastAPI Application

Development mail capture service: accepts messages over SMTP, stores them
verbatim and serves them through a JSON / download API.

This module creates and configures the FastAPI application, including:
- The message repository (blob store, MIME projector, index)
- Middleware (request ID correlation, CORS)
- Exception handlers
- Health endpoints and the optional SMTP listener
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, get_settings
from .domain.messages.errors import StorageError
from .infrastructure.ingest.smtp_handler import MailCatchSMTPHandler, create_smtp_controller
from .infrastructure.storage.storage_config import build_blob_store
from .messages.repository import MessageRepository
from .messages.router import router as messages_router
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> MessageRepository:
    return MessageRepository(
        blob_store=build_blob_store(settings),
        default_page_size=settings.DEFAULT_PAGE_SIZE,
        max_page_size=settings.MAX_PAGE_SIZE,
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[MessageRepository] = None,
) -> FastAPI:
    """Application factory.

    Args:
        settings: Application settings (default: get_settings())
        repository: Message repository (default: built from settings)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    repository = repository or build_repository(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load the message index and start the SMTP listener if enabled."""
        logger.info("mailcatch starting up...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        await repository.refresh_index()

        controller = None
        if settings.SMTP_ENABLED:
            handler = MailCatchSMTPHandler(repository, loop=asyncio.get_running_loop())
            controller = create_smtp_controller(
                handler,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                max_message_size=settings.SMTP_MAX_SIZE,
            )
            controller.start()
            logger.info(f"SMTP server started on {settings.SMTP_HOST}:{settings.SMTP_PORT}")

        try:
            yield
        finally:
            if controller is not None:
                controller.stop()
                logger.info("SMTP server stopped")
            logger.info("mailcatch shutting down...")

    docs_enabled = settings.ENVIRONMENT != "production"
    app = FastAPI(
        title="mailcatch API",
        description="Development mail capture: browse, inspect and download captured messages",
        version=__version__,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.message_repository = repository

    # =========================================================================
    # MIDDLEWARE CONFIGURATION
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Content-Disposition"],
    )

    # Added last so it runs first
    app.add_middleware(RequestIDMiddleware)

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(f"Validation error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            },
        )

    @app.exception_handler(StorageError)
    async def storage_exception_handler(
        request: Request,
        exc: StorageError,
    ) -> JSONResponse:
        """Handle storage failures.

        Logs the full error but returns a generic message to prevent
        information leakage.
        """
        logger.error(
            f"Storage error on {request.method} {request.url.path}",
            exc_info=exc,
            extra={"message_id": exc.message_id} if exc.message_id else None,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "storage_error",
                "message": "A storage error occurred. Please try again later.",
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    # =========================================================================
    # ROUTER REGISTRATION
    # =========================================================================

    app.include_router(observability_router)
    app.include_router(messages_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        """Root endpoint - API information."""
        return {
            "name": "mailcatch API",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if docs_enabled else None,
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    # Error contexts may hold exception instances that json cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "mailcatch.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=get_settings().ENVIRONMENT == "development",
        log_level=get_settings().LOG_LEVEL.lower(),
    )
