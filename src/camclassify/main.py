"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from camclassify.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from camclassify.api.routes import router
from camclassify.config import get_settings
from camclassify.ml.inference import InferencePool
from camclassify.ml.model_manager import OnnxModelManager
from camclassify.ml.preprocessing import FrameDecoder
from camclassify.pipeline.frame_source import ReplayFrameSource
from camclassify.pipeline.runtime import PipelineRuntime
from camclassify.pipeline.services import FileImageFetcher, SettingsPermissionService
from camclassify.pipeline.state import PipelineState

logger = logging.getLogger(__name__)


def build_runtime(settings: Settings, pool: InferencePool) -> PipelineRuntime:
    """Assemble the pipeline from settings. Nothing is loaded until ``start()``."""
    decoder = FrameDecoder.from_settings(settings)
    frame_source = (
        ReplayFrameSource(settings.frame_source_dir, decoder) if settings.frame_source_dir is not None else None
    )
    return PipelineRuntime(
        settings,
        PipelineState(),
        decoder,
        OnnxModelManager(settings),
        pool,
        SettingsPermissionService(settings),
        frame_source=frame_source,
        fetcher=FileImageFetcher(settings.max_file_size),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model and start the camera loop, stop it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting CamClassify (device=%s, model=%s, platform=%s, frame=%dx%d, replay=%s)",
        settings.device,
        settings.classification_model,
        settings.platform,
        settings.resize_width,
        settings.resize_height,
        settings.frame_source_dir,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool
    runtime = build_runtime(settings, inference_pool)
    app.state.runtime = runtime

    await runtime.start()
    logger.info("CamClassify ready (loop=%s)", runtime.controller.loop_state)
    yield

    logger.info("Shutting down CamClassify")
    await runtime.shutdown()
    logger.info("CamClassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="CamClassify",
        description="Live camera and gallery image classification",
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
