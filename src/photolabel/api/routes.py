"""API route definitions."""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from photolabel.api.middleware import verify_api_key
from photolabel.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
)
from photolabel.errors import ImageDecodeError
from photolabel.ml.analysis import analyze_image
from photolabel.ml.model_manager import MODEL_REGISTRY, get_model_spec
from photolabel.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from PIL import Image

    from photolabel.config import Settings
    from photolabel.ml.inference import InferencePool
    from photolabel.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image and return the top predictions",
)
async def classify_image(request: Request, file: UploadFile | None = None) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked tags.

    Every analysis outcome, including a missing image and a failed
    inference, is reported with status 200 and a display message.
    """
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)

    image: Image.Image | None = None
    if file is not None:
        image_bytes = await file.read()
        if len(image_bytes) > settings.max_file_size:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds {settings.max_file_size} bytes",
            )
        try:
            image = decode_image(image_bytes, settings.max_image_pixels)
        except ImageDecodeError as exc:
            logger.info("Rejected upload %s: %s", file.filename, exc)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    model_name = settings.classification_model
    analysis = partial(
        analyze_image,
        image,
        partial(manager.create_classifier, model_name),
        size=get_model_spec(model_name).input_size,
        top_k=settings.top_k,
    )
    try:
        report = await pool.run(analysis)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis already in progress, try again later",
        ) from exc

    return ClassifyImageResponse(
        status=report.status.value,
        message=report.message,
        primary_label=report.primary_label,
        tags=[ImageTag(label=result.label, confidence=result.confidence) for result in report.predictions],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model=settings.classification_model,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and which one is configured."""
    settings = _get_settings(request)

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        width, height = spec.input_size
        models.append(
            ModelInfo(
                name=spec.name,
                task=spec.task.value,
                status="active" if spec.name == settings.classification_model else "available",
                license=spec.license,
                input_width=width,
                input_height=height,
            )
        )

    return ModelsResponse(models=models)
