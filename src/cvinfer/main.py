"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cvinfer.api.routes import router
from cvinfer.config import get_settings
from cvinfer.ml.inference import InferencePool
from cvinfer.ml.model_manager import OnnxModelManager
from cvinfer.ml.pipeline import PipelineFactory

logger = logging.getLogger(__name__)


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
        "Starting cvinfer (device=%s, max_concurrent=%s, digit=%s, emotion=%s, detection=%s)",
        settings.device,
        settings.max_concurrent,
        settings.digit_model,
        settings.emotion_model,
        settings.face_detection_model,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    if settings.preload_models:
        await asyncio.to_thread(
            model_manager.preload,
            [settings.digit_model, settings.emotion_model, settings.face_detection_model],
        )
    pipelines = PipelineFactory(settings, model_manager)
    app.state.inference_pool = inference_pool
    app.state.pipelines = pipelines

    logger.info("cvinfer ready")
    yield

    logger.info("Shutting down cvinfer")
    inference_pool.shutdown()
    pipelines.shutdown()
    logger.info("cvinfer shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="cvinfer",
        description="ONNX + OpenCV inference API: digit and emotion classification, letterboxed face detection",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("cvinfer.main:app", host=settings.host, port=settings.port)
