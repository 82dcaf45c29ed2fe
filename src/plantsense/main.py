"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from plantsense import __version__
from plantsense.analysis.classifier import GeminiClassifier
from plantsense.analysis.image_source import DeviceImageSource
from plantsense.api.routes import router
from plantsense.config import Settings, get_settings
from plantsense.services.auth import AuthService
from plantsense.services.history import HistoryStore
from plantsense.services.registry import SessionRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared services on startup; stop sessions and flush history on shutdown."""
    settings: Settings = app.state.settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PlantSense (model=%s, live_interval=%ss, connect_delay=%ss, history=%s)",
        settings.gemini_model,
        settings.live_interval,
        settings.connect_delay,
        settings.history_path or "memory",
    )

    source = DeviceImageSource(settings)
    classifier = GeminiClassifier(settings)
    app.state.auth = AuthService()
    app.state.history = HistoryStore(settings.history_path)
    app.state.sessions = SessionRegistry(settings, source, classifier, app.state.history, app.state.auth)

    logger.info("PlantSense ready")
    yield

    logger.info("Shutting down PlantSense")
    await app.state.sessions.shutdown()
    await source.aclose()
    await classifier.aclose()
    app.state.history.shutdown()
    logger.info("PlantSense shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the PlantSense API app.

    Services are built in the lifespan from ``settings`` (environment
    settings when omitted). Browsers authenticate with a bearer header, so
    CORS never allows credentials.
    """
    settings = settings or get_settings()
    application = FastAPI(
        title="PlantSense",
        description="Plant health diagnosis from uploaded photos or a live device feed",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.settings = settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("plantsense.main:app", host=settings.host, port=settings.port)
