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

from photolabel import __version__
from photolabel.api.routes import router
from photolabel.config import get_settings
from photolabel.ml.inference import InferencePool
from photolabel.ml.model_manager import OnnxModelManager, get_model_spec

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    # Fail at startup rather than on the first request
    spec = get_model_spec(settings.classification_model)
    logger.info(
        "Starting PhotoLabel (device=%s, model=%s, input=%sx%s, top_k=%s)",
        settings.device,
        spec.name,
        *spec.input_size,
        settings.top_k,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool
    app.state.model_manager = OnnxModelManager(settings)

    logger.info("PhotoLabel ready")
    yield

    logger.info("Shutting down PhotoLabel")
    inference_pool.shutdown()
    logger.info("PhotoLabel shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PhotoLabel",
        description="Classify a photo with a pre-trained model and report the top predictions",
        version=__version__,
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
    uvicorn.run("photolabel.main:app", host=settings.host, port=settings.port)
