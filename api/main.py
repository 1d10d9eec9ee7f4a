"""
API Application Entry Point

Defines the FastAPI application over an email onebox container, with CORS,
exception handlers, route registration and lifecycle management.

Design Considerations:
- The container is passed in explicitly and exposed on ``app.state``
- The application only starts and stops a container it built itself
- Error payloads share the success envelope's top-level keys
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import accounts, ai, chat, contexts, emails, health, notifications, stats
from api.utils.error_handlers import JSONResponse, add_exception_handlers
from onebox.application import OneboxApplication
from onebox.config import EnvironmentType, OneboxSettings, get_settings

logger = logging.getLogger(__name__)


def create_application(
    onebox: Optional[OneboxApplication] = None,
    settings: Optional[OneboxSettings] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        onebox: Ready-made container; when omitted one is built from settings
            and initialized/shut down with the application lifespan
        settings: Settings to use; defaults to the container's or ``get_settings()``

    Returns:
        Configured FastAPI application
    """
    owns_container = onebox is None
    settings = settings or (onebox.settings if onebox is not None else get_settings())
    if onebox is None:
        onebox = OneboxApplication(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_container:
            report = await onebox.initialize()
            logger.info(f"Provisioning report: {report.to_dict()}")
        logger.info("API service starting up")
        try:
            yield
        finally:
            logger.info("API service shutting down")
            if owns_container:
                await onebox.shutdown()

    production = settings.ENVIRONMENT == EnvironmentType.PRODUCTION
    app = FastAPI(
        title=settings.API_TITLE,
        description="Multi-account email ingestion, categorization and search",
        version=settings.API_VERSION,
        docs_url=None if production else "/docs",
        redoc_url=None if production else "/redoc",
        debug=settings.DEBUG,
        default_response_class=JSONResponse,
        lifespan=lifespan,
    )
    app.state.onebox = onebox

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(stats.router)
    app.include_router(emails.router)
    app.include_router(accounts.router)
    app.include_router(notifications.router)
    app.include_router(contexts.router)
    app.include_router(ai.router)
    app.include_router(chat.router)

    logger.info(f"Application created in {settings.ENVIRONMENT.value} environment")
    return app
