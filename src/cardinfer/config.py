"""Environment-based configuration for cardinfer."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CARDINFER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CARDINFER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    models_dir: str = "models"
    model_repo_id: str | None = None
    suit_model: str = "suit_classifier"
    rank_model: str = "rank_classifier"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Classifier worker threads behind the serial inference context
    classifier_threads: int = Field(default=1, ge=1)

    # Confidence gates
    suit_threshold: float = Field(default=0.99, ge=0.0, le=1.0)
    rank_threshold: float = Field(default=0.95, ge=0.0, le=1.0)

    # Camera
    camera_index: int = Field(default=0, ge=0)
    camera_width: int = Field(default=640, ge=1)
    camera_height: int = Field(default=480, ge=1)
    camera_orientation: Literal["up", "down", "left", "right"] = "up"

    # "drop" skips frames while one is in flight, "queue" schedules every frame
    frame_policy: Literal["drop", "queue"] = "drop"
    autostart: bool = False

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    classify_timeout: float = Field(default=5.0, gt=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
