"""Card inference service: camera lifecycle, frame dispatch and the result sink."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cardinfer.capture import CameraFrameSource, Orientation
from cardinfer.config import get_settings
from cardinfer.ml.inference import InferenceWorker
from cardinfer.ml.model_manager import OnnxModelManager
from cardinfer.pipeline import CardInferencePipeline
from cardinfer.thresholds import ConfidenceThresholds

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    import numpy as np
    from numpy.typing import NDArray

    from cardinfer.capture import Frame, FrameSource
    from cardinfer.cards import CardResult
    from cardinfer.config import Settings
    from cardinfer.ml.image_classifier import ImageClassifier
    from cardinfer.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


@dataclass
class FrameStats:
    """Counters for frames seen by the service."""

    received: int = 0
    processed: int = 0
    dropped: int = 0
    recognized: int = 0


class CardInference:
    """Recognizes playing cards in live camera frames.

    Usage::

        inference = CardInference()
        inference.inference_callback = on_card
        inference.setup()
        inference.start()

    ``on_card`` receives a :class:`CardResult` or ``None`` once per processed
    frame, always on the serial inference thread.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        frame_source: FrameSource | None = None,
        suit_classifier: ImageClassifier | None = None,
        rank_classifier: ImageClassifier | None = None,
        model_manager: ModelManager | None = None,
        worker: InferenceWorker | None = None,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._thresholds = ConfidenceThresholds(
            suit=self._settings.suit_threshold,
            rank=self._settings.rank_threshold,
        )
        self._worker = worker if worker is not None else InferenceWorker(self._settings)
        self._frame_source = frame_source
        self._suit_classifier = suit_classifier
        self._rank_classifier = rank_classifier
        self._model_manager = model_manager

        self._pipeline = CardInferencePipeline(None, None, self._thresholds, self._worker)

        self._callback: Callable[[CardResult | None], None] | None = None
        self._callback_lock = threading.Lock()

        self._setup_lock = threading.Lock()
        self._setup_done = False

        self._stats = FrameStats()
        self._in_flight = 0
        self._stats_lock = threading.Lock()

    # -- Configuration ------------------------------------------------------

    @property
    def inference_callback(self) -> Callable[[CardResult | None], None] | None:
        with self._callback_lock:
            return self._callback

    @inference_callback.setter
    def inference_callback(self, callback: Callable[[CardResult | None], None] | None) -> None:
        with self._callback_lock:
            self._callback = callback

    @property
    def suit_confidence_threshold(self) -> float:
        return self._thresholds.suit

    @suit_confidence_threshold.setter
    def suit_confidence_threshold(self, value: float) -> None:
        self._thresholds.suit = value

    @property
    def rank_confidence_threshold(self) -> float:
        return self._thresholds.rank

    @rank_confidence_threshold.setter
    def rank_confidence_threshold(self, value: float) -> None:
        self._thresholds.rank = value

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def worker(self) -> InferenceWorker:
        return self._worker

    # -- Lifecycle ----------------------------------------------------------

    def setup(self) -> None:
        """Open the camera and load both classifiers, blocking until done.

        Failures are logged and leave the service yielding ``None`` for every
        frame. Only the first call does any work.
        """
        with self._setup_lock:
            if self._setup_done:
                return
            self._worker.call(self._setup)
            self._setup_done = True

    def start(self) -> None:
        """Begin feeding camera frames into the pipeline. Idempotent."""
        self._worker.post(self._start_capture)

    def stop(self) -> None:
        """Stop feeding new frames. In-flight frames still reach the sink."""
        self._worker.post(self._stop_capture)

    def shutdown(self) -> None:
        """Release the camera, the serial context and the loaded models."""
        if self._frame_source is not None:
            self._frame_source.release()
        self._worker.shutdown()
        if self._model_manager is not None:
            self._model_manager.shutdown()
        logger.info("Card inference shut down")

    @property
    def is_running(self) -> bool:
        return self._frame_source is not None and self._frame_source.is_running

    @property
    def camera_opened(self) -> bool:
        return self._frame_source is not None and self._frame_source.is_opened()

    @property
    def models_ready(self) -> bool:
        return self._pipeline.ready

    def get_loaded_models(self) -> list[str]:
        if self._model_manager is not None:
            return self._model_manager.get_loaded_models()
        return [c.model_name for c in (self._suit_classifier, self._rank_classifier) if c is not None]

    @property
    def stats(self) -> FrameStats:
        with self._stats_lock:
            return dataclasses.replace(self._stats)

    # -- Frames -------------------------------------------------------------

    def submit_frame(self, frame: Frame) -> Future[CardResult | None] | None:
        """Accept a frame from the source and schedule it on the serial context.

        The frame's pixels are copied before returning, so the source may
        reuse its buffer. Returns None when the frame is dropped.
        """
        with self._stats_lock:
            self._stats.received += 1
            if self._settings.frame_policy == "drop" and self._in_flight:
                self._stats.dropped += 1
                return None
            self._in_flight += 1

        image = frame.snapshot()
        try:
            return self._worker.submit(self._process(image))
        except RuntimeError:
            logger.debug("Frame discarded: inference worker is shut down")
            with self._stats_lock:
                self._in_flight -= 1
                self._stats.dropped += 1
            return None

    def classify_image(self, image: NDArray[np.uint8]) -> Future[CardResult | None]:
        """Run the pipeline on a single image without notifying the sink."""
        return self._worker.submit(self._classify(image))

    # -- Serial context -----------------------------------------------------

    def _setup(self) -> None:
        self._setup_camera()
        self._setup_models()
        self._pipeline = CardInferencePipeline(
            self._suit_classifier,
            self._rank_classifier,
            self._thresholds,
            self._worker,
        )
        if not self._pipeline.ready:
            logger.error("Card inference set up without models; every frame will yield no result")

    def _setup_camera(self) -> None:
        if self._frame_source is None:
            self._frame_source = CameraFrameSource(
                index=self._settings.camera_index,
                width=self._settings.camera_width,
                height=self._settings.camera_height,
                orientation=Orientation(self._settings.camera_orientation),
            )
        try:
            opened = self._frame_source.open()
        except Exception:  # noqa: BLE001
            logger.exception("Camera setup failed")
            return
        if not opened:
            logger.error("Camera setup failed: device %d unavailable", self._settings.camera_index)

    def _setup_models(self) -> None:
        if self._suit_classifier is not None and self._rank_classifier is not None:
            return
        try:
            if self._model_manager is None:
                self._model_manager = OnnxModelManager(self._settings)
            suit = self._suit_classifier or self._model_manager.get_classifier(self._settings.suit_model)
            rank = self._rank_classifier or self._model_manager.get_classifier(self._settings.rank_model)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to load classification models")
            return
        self._suit_classifier = suit
        self._rank_classifier = rank

    def _start_capture(self) -> None:
        if self._frame_source is None:
            logger.warning("start() called before setup(); ignoring")
            return
        self._frame_source.start(self.submit_frame)

    def _stop_capture(self) -> None:
        if self._frame_source is not None:
            self._frame_source.stop()

    async def _process(self, image: NDArray[np.uint8]) -> CardResult | None:
        try:
            result = await self._pipeline.infer(image)
        finally:
            with self._stats_lock:
                self._in_flight -= 1

        with self._stats_lock:
            self._stats.processed += 1
            if result is not None:
                self._stats.recognized += 1
        self._deliver(result)
        return result

    async def _classify(self, image: NDArray[np.uint8]) -> CardResult | None:
        return await self._pipeline.infer(image)

    def _deliver(self, result: CardResult | None) -> None:
        callback = self.inference_callback
        if callback is None:
            return
        try:
            callback(result)
        except Exception:  # noqa: BLE001
            logger.exception("Inference callback raised")
