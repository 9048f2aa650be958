"""Model manager: download, load and cache the suit and rank ONNX classifiers.

Model files are looked up under ``models_dir`` first and downloaded from
HuggingFace otherwise. Sessions are created once and shared.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from cardinfer.cards import Rank, Suit
from cardinfer.ml.image_classifier import OnnxImageClassifier

if TYPE_CHECKING:
    from cardinfer.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_classifier(self, model_name: str) -> OnnxImageClassifier:
        """Return a classifier wrapping the model's session."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    SUIT_CLASSIFICATION = "suit_classification"
    RANK_CLASSIFICATION = "rank_classification"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier.

    ``labels`` is the model's output vocabulary in output-index order.
    """

    name: str
    repo_id: str
    filename: str
    task: ModelTask
    labels: tuple[str, ...]
    input_size: tuple[int, int] = (224, 224)


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "suit_classifier": ModelSpec(
        name="suit_classifier",
        repo_id="cardinfer/card-classifiers",
        filename="suit_image_classifier.onnx",
        task=ModelTask.SUIT_CLASSIFICATION,
        labels=tuple(suit.value for suit in Suit),
    ),
    "rank_classifier": ModelSpec(
        name="rank_classifier",
        repo_id="cardinfer/card-classifiers",
        filename="rank_classifier.onnx",
        task=ModelTask.RANK_CLASSIFICATION,
        labels=tuple(rank.value for rank in Rank),
    ),
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves, loads and caches ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local model path, downloading from HuggingFace if needed."""
        spec = self._get_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        local = self._models_dir / spec.filename
        if local.is_file():
            self._model_paths[model_name] = local
            return local

        downloaded = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo_id or spec.repo_id,
                filename=spec.filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def get_classifier(self, model_name: str) -> OnnxImageClassifier:
        """Return an OnnxImageClassifier over the model's session."""
        spec = self._get_spec(model_name)
        return OnnxImageClassifier(
            self.get_session(model_name),
            labels=spec.labels,
            model_name=spec.name,
            input_size=spec.input_size,
        )

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
