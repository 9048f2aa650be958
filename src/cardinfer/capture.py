"""Frame sources: push-based delivery of camera frames to a callback."""

from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class Orientation(StrEnum):
    """Direction the top of the scene faces in the raw sensor frame."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


_ROTATIONS: dict[Orientation, int] = {
    Orientation.DOWN: cv2.ROTATE_180,
    Orientation.LEFT: cv2.ROTATE_90_CLOCKWISE,
    Orientation.RIGHT: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


@dataclass(frozen=True, eq=False)
class Frame:
    """A frame handle as delivered by a source.

    ``image`` may be a buffer the source reuses; it is only valid during the
    callback that delivers the frame. Call :meth:`snapshot` to keep pixels.
    """

    image: NDArray[np.uint8]
    orientation: Orientation = Orientation.UP
    timestamp_s: float = field(default_factory=time.perf_counter)

    def snapshot(self) -> NDArray[np.uint8]:
        """Return an owned, upright copy of the pixels."""
        rotation = _ROTATIONS.get(self.orientation)
        if rotation is None:
            return np.array(self.image, copy=True)
        return cv2.rotate(self.image, rotation)


class FrameSource(Protocol):
    """Protocol for push-based frame sources."""

    @property
    def is_running(self) -> bool:
        """Return True while frames are being delivered."""
        ...

    def open(self) -> bool:
        """Acquire the device. Returns True on success."""
        ...

    def is_opened(self) -> bool:
        """Return True if the device is acquired."""
        ...

    def start(self, callback: Callable[[Frame], None]) -> None:
        """Begin delivering frames to ``callback``. Idempotent."""
        ...

    def stop(self) -> None:
        """Stop delivering frames. Idempotent."""
        ...

    def release(self) -> None:
        """Stop and release the device."""
        ...


class CameraFrameSource:
    """Webcam source: a reader thread pushes every captured frame to a callback."""

    def __init__(
        self,
        index: int = 0,
        width: int = 640,
        height: int = 480,
        orientation: Orientation = Orientation.UP,
    ) -> None:
        self._index = index
        self._width = width
        self._height = height
        self._orientation = Orientation(orientation)
        self._cap: cv2.VideoCapture | None = None
        self._callback: Callable[[Frame], None] | None = None
        self._thread: threading.Thread | None = None
        self._running = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def open(self) -> bool:
        """Open the configured webcam and apply the capture size."""
        self.release()
        # On Windows, use DirectShow so indices match the system camera order
        if sys.platform == "win32":
            cap = cv2.VideoCapture(self._index, cv2.CAP_DSHOW)
        else:
            cap = cv2.VideoCapture(self._index)
        if not cap.isOpened():
            cap.release()
            logger.error("Camera %d could not be opened", self._index)
            return False

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self._cap = cap
        logger.info(
            "Camera %d opened at %dx%d",
            self._index,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        return True

    def is_opened(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def start(self, callback: Callable[[Frame], None]) -> None:
        with self._lock:
            self._callback = callback
            if self._running.is_set():
                return
            if not self.is_opened():
                logger.warning("Camera %d is not open; no frames will be delivered", self._index)
                return
            self._running.set()
            self._thread = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
            self._thread.start()
        logger.info("Capture started")

    def stop(self) -> None:
        with self._lock:
            if not self._running.is_set():
                return
            self._running.clear()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        logger.info("Capture stopped")

    def release(self) -> None:
        self.stop()
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def _read_loop(self) -> None:
        try:
            while self._running.is_set():
                cap = self._cap
                if cap is None:
                    break
                ok, image = cap.read()
                if not ok or image is None:
                    logger.warning("Camera %d stopped returning frames", self._index)
                    break
                callback = self._callback
                if callback is not None:
                    callback(Frame(image=image, orientation=self._orientation))
        except Exception:  # noqa: BLE001
            logger.exception("Camera %d reader failed; capture stopped", self._index)
        finally:
            self._running.clear()
