"""Pydantic request/response schemas for the CamClassify API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from camclassify.ml.image_classifier import Prediction


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


def tags_from_prediction(prediction: Prediction) -> list[ImageTag]:
    return [ImageTag(label=r.label, confidence=r.confidence) for r in prediction.results]


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag]


class LoopStatsResponse(BaseModel):
    """Counters of the live camera loop."""

    frames_pulled: int
    predictions_published: int
    decode_errors: int
    inference_errors: int
    discarded_results: int


class PipelineStateResponse(BaseModel):
    """Snapshot of what the presentation layer displays."""

    runtime_ready: bool
    model_ready: bool
    permission_granted: bool | None
    loop_state: str
    latest_image: str | None
    predictions: list[ImageTag] | None = Field(description="Latest ranked tags, None until the first prediction")
    notice: str | None
    version: int
    stats: LoopStatsResponse


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="'ok', 'loading', or 'degraded'")
    gpu: bool
    model_ready: bool
    loop_state: str
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
