"""API route definitions."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from cardinfer.api.middleware import require_api_key
from cardinfer.api.schemas import (
    Card,
    CaptureStatus,
    ErrorResponse,
    HealthResponse,
    InferenceResponse,
    LatestResultResponse,
    ModelInfo,
    ModelsResponse,
    Thresholds,
    ThresholdsUpdate,
)
from cardinfer.ml.model_manager import MODEL_REGISTRY
from cardinfer.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from cardinfer.cards import CardResult
    from cardinfer.config import Settings
    from cardinfer.service import CardInference

router = APIRouter(prefix="/api/v1")


class ResultRecorder:
    """Result sink that keeps the latest outcome for polling clients."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: CardResult | None = None
        self._count = 0

    def __call__(self, result: CardResult | None) -> None:
        with self._lock:
            self._latest = result
            self._count += 1

    @property
    def latest(self) -> tuple[CardResult | None, int]:
        with self._lock:
            return self._latest, self._count


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_service(request: Request) -> CardInference:
    service: CardInference = request.app.state.card_inference
    return service


def _get_recorder(request: Request) -> ResultRecorder:
    recorder: ResultRecorder = request.app.state.result_recorder
    return recorder


def _to_card(result: CardResult | None) -> Card | None:
    if result is None:
        return None
    return Card(suit=result.suit, rank=result.rank, card_string=result.card_string)


@router.post(
    "/classify-image",
    response_model=InferenceResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Recognize the card in an uploaded image",
)
async def classify_image(request: Request, file: UploadFile) -> InferenceResponse:
    """Run the suit/rank pipeline on an uploaded image."""
    settings = _get_settings(request)
    service = _get_service(request)

    payload = await file.read()
    try:
        image = decode_image(payload, max_pixels=settings.max_image_pixels)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        future = service.classify_image(image)
        result = await asyncio.wait_for(asyncio.wrap_future(future), timeout=settings.classify_timeout)
    except (TimeoutError, RuntimeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Card inference unavailable",
        ) from exc

    return InferenceResponse(card=_to_card(result))


@router.get(
    "/results/latest",
    response_model=LatestResultResponse,
    summary="Latest live-capture outcome",
)
async def latest_result(request: Request) -> LatestResultResponse:
    """Return the most recent outcome delivered by the live pipeline."""
    result, count = _get_recorder(request).latest
    return LatestResultResponse(card=_to_card(result), frames_processed=count)


@router.get(
    "/thresholds",
    response_model=Thresholds,
    summary="Current confidence thresholds",
)
async def get_thresholds(request: Request) -> Thresholds:
    service = _get_service(request)
    return Thresholds(suit=service.suit_confidence_threshold, rank=service.rank_confidence_threshold)


@router.put(
    "/thresholds",
    response_model=Thresholds,
    dependencies=[Depends(require_api_key)],
    summary="Update confidence thresholds",
)
async def update_thresholds(request: Request, update: ThresholdsUpdate) -> Thresholds:
    """Set either or both thresholds; the next stage check uses the new value."""
    service = _get_service(request)
    if update.suit is not None:
        service.suit_confidence_threshold = update.suit
    if update.rank is not None:
        service.rank_confidence_threshold = update.rank
    return Thresholds(suit=service.suit_confidence_threshold, rank=service.rank_confidence_threshold)


@router.post(
    "/capture/start",
    response_model=CaptureStatus,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_api_key)],
    summary="Start live capture",
)
async def start_capture(request: Request) -> CaptureStatus:
    service = _get_service(request)
    service.start()
    return CaptureStatus(running=service.is_running, camera_opened=service.camera_opened)


@router.post(
    "/capture/stop",
    response_model=CaptureStatus,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_api_key)],
    summary="Stop live capture",
)
async def stop_capture(request: Request) -> CaptureStatus:
    service = _get_service(request)
    service.stop()
    return CaptureStatus(running=service.is_running, camera_opened=service.camera_opened)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    service = _get_service(request)
    stats = service.stats
    return HealthResponse(
        status="ok" if service.models_ready else "degraded",
        gpu=settings.device == "cuda",
        models_loaded=service.get_loaded_models(),
        models_ready=service.models_ready,
        running=service.is_running,
        camera_opened=service.camera_opened,
        inflight_classifications=service.worker.active_count,
        queue_depth=service.worker.queue_depth,
        frames_received=stats.received,
        frames_processed=stats.processed,
        frames_dropped=stats.dropped,
        cards_recognized=stats.recognized,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifiers and whether they are the configured ones."""
    settings = _get_settings(request)
    active_models = {settings.suit_model, settings.rank_model}

    models = [
        ModelInfo(
            name=spec.name,
            task=spec.task.value,
            status="active" if spec.name in active_models else "available",
            labels=list(spec.labels),
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
