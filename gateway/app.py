"""
Cora Assistant Gateway

Main FastAPI application for the assistant and its messaging channels.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cora import (
    CoraError,
    EmptyMessage,
    InvalidCategory,
    UnknownChannel,
    UnknownConversation,
    configure_logging,
)

from .config import Settings, get_settings
from .dependencies import Services, build_services

logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings

    # Startup
    configure_logging(settings.log_level, settings.log_file or None, settings.log_format)

    owns_services = app.state.services is None
    if owns_services:
        app.state.services = build_services(settings)

    logger.info("Starting Cora Assistant Gateway v%s", settings.api_version)

    yield

    # Shutdown
    if owns_services:
        await app.state.services.aclose()
        app.state.services = None
    logger.info("Shutting down Cora Assistant Gateway")


# =============================================================================
# APP FACTORY
# =============================================================================

ERROR_STATUS = {
    EmptyMessage: 422,
    InvalidCategory: 400,
    UnknownConversation: 404,
    UnknownChannel: 404,
}


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        services: Pre-built services; built from settings at startup if omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Cora virtual assistant: in-app chat, knowledge base and WhatsApp channel",
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    from .routes import health, assistant, webhook

    app.include_router(health.router, prefix=settings.api_prefix, tags=["Health"])
    app.include_router(assistant.router, prefix=settings.api_prefix, tags=["Assistant"])
    app.include_router(webhook.router, prefix=settings.api_prefix, tags=["Channels"])

    # Exception handlers
    @app.exception_handler(CoraError)
    async def cora_exception_handler(request: Request, exc: CoraError):
        return JSONResponse(
            status_code=ERROR_STATUS.get(type(exc), 400),
            content=exc.to_dict(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An error occurred",
            },
        )

    return app


# Create default app instance
app = create_app()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "gateway.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
