"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from emojiface.api.routes import router
from emojiface.config import get_settings
from emojiface.ml.face_detector import RetinaFaceDetector
from emojiface.ml.inference import InferencePool
from emojiface.ml.model_manager import OnnxModelManager
from emojiface.pipeline import PhotoPipeline, SessionRegistry
from emojiface.render.glyphs import build_glyph_provider

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


async def _evict_idle_models(model_manager: OnnxModelManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting EmojiFace (device=%s, max_concurrent=%s, detection=%s)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    pipeline = PhotoPipeline(
        detector=RetinaFaceDetector(settings, model_manager),
        glyph_provider=build_glyph_provider(settings),
        pool=inference_pool,
        padding=settings.overlay_padding,
    )
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.pipeline = pipeline
    app.state.sessions = SessionRegistry(pipeline, settings.max_sessions)

    eviction = asyncio.create_task(_evict_idle_models(model_manager))

    logger.info("EmojiFace ready")
    yield

    logger.info("Shutting down EmojiFace")
    eviction.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("EmojiFace shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="EmojiFace",
        description="Detects faces in photos and covers each one with an emoji",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Face-Count", "X-Face-Label"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("emojiface.main:app", host=settings.host, port=settings.port)
