"""Pydantic request/response schemas for the PhotoLabel API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    status: str = Field(description="'ok', 'no_image', 'conversion_failed', or 'inference_failed'")
    message: str = Field(description="Human-readable report, or the failure message")
    primary_label: str | None = Field(default=None, description="The classifier's own top label")
    tags: list[ImageTag]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model: str
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    input_width: int
    input_height: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
