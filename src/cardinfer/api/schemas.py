"""Pydantic request/response schemas for the cardinfer API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from cardinfer.cards import Rank, Suit


class Card(BaseModel):
    """A recognized card."""

    suit: Suit
    rank: Rank
    card_string: str = Field(description="Rank label followed by suit label, e.g. 'acespade'")


class InferenceResponse(BaseModel):
    """Outcome of one pipeline run; ``card`` is null when nothing was recognized."""

    card: Card | None = None


class LatestResultResponse(InferenceResponse):
    """Most recent outcome delivered to the result sink."""

    frames_processed: int


class Thresholds(BaseModel):
    """Current per-stage confidence thresholds."""

    suit: float = Field(ge=0.0, le=1.0)
    rank: float = Field(ge=0.0, le=1.0)


class ThresholdsUpdate(BaseModel):
    """Partial threshold update."""

    suit: float | None = Field(default=None, ge=0.0, le=1.0)
    rank: float | None = Field(default=None, ge=0.0, le=1.0)


class CaptureStatus(BaseModel):
    """Capture state after a start/stop command was queued."""

    running: bool
    camera_opened: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    models_ready: bool
    running: bool
    camera_opened: bool
    inflight_classifications: int
    queue_depth: int
    frames_received: int
    frames_processed: int
    frames_dropped: int
    cards_recognized: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'suit_classification' or 'rank_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    labels: list[str]


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
