"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from visionrelay.config import Settings

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visionrelay.api.middleware import RequestIdMiddleware
from visionrelay.api.routes import router
from visionrelay.config import get_settings
from visionrelay.log import configure_logging
from visionrelay.relay.storage import FileSystemStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    logger.info(
        "Starting VisionRelay (upload_dir=%s, classifier=%s, max_concurrent=%s)",
        settings.upload_dir,
        settings.classifier_endpoint or "<not configured>",
        settings.max_concurrent,
    )
    if not settings.classifier_endpoint:
        logger.warning("VISIONRELAY_CLASSIFIER_ENDPOINT is not set; every prediction will fail")

    app.state.storage = FileSystemStorage(settings.upload_dir)
    app.state.http_client = httpx.AsyncClient(timeout=settings.classifier_timeout)

    logger.info("VisionRelay ready")
    yield

    logger.info("Shutting down VisionRelay")
    await app.state.http_client.aclose()
    logger.info("VisionRelay shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings if settings is not None else get_settings()

    application = FastAPI(
        title="VisionRelay",
        description="Stores uploaded images and relays them to an external image classifier",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestIdMiddleware)

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
