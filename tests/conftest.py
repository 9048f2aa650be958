"""Shared fakes for the card inference tests."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import numpy as np
import pytest

from cardinfer.capture import Frame
from cardinfer.config import Settings
from cardinfer.ml.image_classifier import ClassificationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray


class FakeClassifier:
    """Classifier returning canned results and recording every call."""

    def __init__(
        self,
        results: list[tuple[str, float]] | None = None,
        *,
        error: Exception | None = None,
        model_name: str = "fake",
    ) -> None:
        self.results = [ClassificationResult(label, conf) for label, conf in (results or [])]
        self.error = error
        self._model_name = model_name
        self.calls: list[NDArray[np.uint8]] = []
        self.threads: list[str] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        self.calls.append(image)
        self.threads.append(threading.current_thread().name)
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeFrameSource:
    """In-memory frame source; tests push frames with :meth:`emit`."""

    def __init__(self, *, opens: bool = True) -> None:
        self.opens = opens
        self.opened = False
        self.open_calls = 0
        self.open_thread: str | None = None
        self.start_calls = 0
        self.stop_calls = 0
        self.released = False
        self._callback: Callable[[Frame], None] | None = None
        self._running = False
        self.started = threading.Event()
        self.stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def open(self) -> bool:
        self.open_calls += 1
        self.open_thread = threading.current_thread().name
        self.opened = self.opens
        return self.opens

    def is_opened(self) -> bool:
        return self.opened

    def start(self, callback: Callable[[Frame], None]) -> None:
        self.start_calls += 1
        self._callback = callback
        if self.opened:
            self._running = True
        self.started.set()

    def stop(self) -> None:
        self.stop_calls += 1
        self._running = False
        self.stopped.set()

    def release(self) -> None:
        self.stop()
        self.released = True
        self.opened = False

    def emit(self, frame: Frame) -> object:
        assert self._callback is not None
        return self._callback(frame)


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/cardinfer_test_models",
        "suit_threshold": 0.99,
        "rank_threshold": 0.95,
        "frame_policy": "queue",
        "classifier_threads": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def make_frame(value: int = 0) -> Frame:
    return Frame(image=np.full((8, 8, 3), value, dtype=np.uint8))


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def frame() -> Frame:
    return make_frame()
