"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan events for database
initialization and FileMaker bridge wiring, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.portal.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.portal.api.v1.router import router as v1_router
from src.portal.config import get_settings
from src.portal.core.database import close_db, get_session, init_db
from src.portal.core.redis import close_redis, get_state_store
from src.portal.filemaker.client import FileMakerClient
from src.portal.filemaker.schemas import Layouts
from src.portal.records.repository import PortalRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and the FileMaker bridge, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    app.state.portal_repository = PortalRepository(session_factory=get_session)
    app.state.filemaker_client = FileMakerClient.from_settings(settings, get_state_store())
    app.state.filemaker_layouts = Layouts.from_settings(settings)

    if settings.filemaker_configured():
        log.info(
            "filemaker.bridge_initialized",
            server=settings.FM_SERVER_URL,
            database=settings.FM_DATABASE,
        )
    else:
        log.warning("filemaker.bridge_not_configured")

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Compliance Portal API",
        version="0.1.0",
        description="Buyer compliance portal with a FileMaker system-of-record bridge",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
