"""Image decoding and model-input preparation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into a BGR uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format OpenCV can read).
        max_pixels: Optional upper bound on width * height.

    Returns:
        HxWx3 BGR uint8 numpy array.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ValueError("Empty image payload")
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image")
    height, width = image.shape[:2]
    if max_pixels is not None and height * width > max_pixels:
        raise ValueError(f"Image too large: {width}x{height} exceeds {max_pixels} pixels")
    return image


def prepare_input(image: NDArray[np.uint8], size: tuple[int, int]) -> NDArray[np.float32]:
    """Prepare a BGR frame for a classification model.

    Args:
        image: HxWx3 BGR uint8 array.
        size: Model input ``(width, height)``.

    Returns:
        1x3xHxW float32 RGB tensor scaled to [0, 1].

    Raises:
        ValueError: If the frame is not a non-empty HxWx3 uint8 array.
    """
    if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[2] != 3:
        shape = getattr(image, "shape", None)
        raise ValueError(f"Expected an HxWx3 frame, got shape {shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 pixels, got {image.dtype}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError("Empty frame")

    resized = cv2.resize(image, size, interpolation=cv2.INTER_AREA)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
    tensor = rgb.astype(np.float32) / 255.0
    return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...])
