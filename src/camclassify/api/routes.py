"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from camclassify.api.middleware import (
    get_runtime,
    get_settings_from_request,
    require_gallery,
    verify_api_key,
)
from camclassify.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    LoopStatsResponse,
    ModelInfo,
    ModelsResponse,
    PipelineStateResponse,
    tags_from_prediction,
)
from camclassify.errors import DecodeError, InferenceError
from camclassify.ml.model_manager import MODEL_REGISTRY
from camclassify.pipeline.controller import LoopState
from camclassify.pipeline.gallery import GalleryClassifier  # noqa: TC001

if TYPE_CHECKING:
    from camclassify.ml.inference import InferencePool

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    gallery: Annotated[GalleryClassifier, Depends(require_gallery)],
) -> ClassifyImageResponse:
    """Classify an uploaded image, publish it as the latest prediction and return ranked tags."""
    max_file_size = get_settings_from_request(request).max_file_size
    data = await file.read(max_file_size + 1)
    if len(data) > max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {max_file_size} bytes",
        )

    try:
        prediction = await gallery.classify_bytes(data, image_ref=file.filename)
    except DecodeError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except InferenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return ClassifyImageResponse(tags=tags_from_prediction(prediction))


@router.get(
    "/state",
    response_model=PipelineStateResponse,
    summary="Current pipeline state",
)
async def pipeline_state(request: Request) -> PipelineStateResponse:
    """Return readiness flags, the latest prediction and loop counters."""
    runtime = get_runtime(request)
    snapshot = runtime.state.snapshot()
    controller = runtime.controller
    stats = controller.stats
    return PipelineStateResponse(
        runtime_ready=snapshot.runtime_ready,
        model_ready=snapshot.model_ready,
        permission_granted=snapshot.permission_granted,
        loop_state=controller.loop_state.value,
        latest_image=snapshot.latest_image,
        predictions=(
            tags_from_prediction(snapshot.latest_prediction) if snapshot.latest_prediction is not None else None
        ),
        notice=snapshot.notice,
        version=snapshot.version,
        stats=LoopStatsResponse(
            frames_pulled=stats.frames_pulled,
            predictions_published=stats.predictions_published,
            decode_errors=stats.decode_errors,
            inference_errors=stats.inference_errors,
            discarded_results=stats.discarded_results,
        ),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    runtime = get_runtime(request)
    pool = _get_inference_pool(request)
    state = runtime.state

    if state.notice is not None and not state.model_ready:
        health_status = "degraded"
    elif not state.model_ready:
        health_status = "loading"
    elif runtime.controller.loop_state is LoopState.STOPPED and state.notice is not None:
        health_status = "degraded"
    else:
        health_status = "ok"

    return HealthResponse(
        status=health_status,
        gpu=settings.device == "cuda",
        model_ready=state.model_ready,
        loop_state=runtime.controller.loop_state.value,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and which one is active."""
    settings = get_settings_from_request(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task,
                status="active" if spec.name == settings.classification_model else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
