"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from cardinfer.api.routes import ResultRecorder, router
from cardinfer.config import get_settings
from cardinfer.service import CardInference

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: set up card inference on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting cardinfer (device=%s, camera=%s, suit=%s@%.2f, rank=%s@%.2f, frame_policy=%s)",
        settings.device,
        settings.camera_index,
        settings.suit_model,
        settings.suit_threshold,
        settings.rank_model,
        settings.rank_threshold,
        settings.frame_policy,
    )

    service = CardInference(settings)
    recorder = ResultRecorder()
    service.inference_callback = recorder
    app.state.card_inference = service
    app.state.result_recorder = recorder

    await run_in_threadpool(service.setup)
    if settings.autostart:
        service.start()

    logger.info("cardinfer ready")
    yield

    logger.info("Shutting down cardinfer")
    await run_in_threadpool(service.shutdown)
    logger.info("cardinfer shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="cardinfer",
        description="Live playing-card recognition with staged suit and rank classifiers",
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
