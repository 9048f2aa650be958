"""Image classifiers: the protocol the pipeline consumes and the ONNX backend."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from cardinfer.ml.preprocessing import prepare_input

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession


class ClassificationError(RuntimeError):
    """A single classification call failed (bad frame, backend unavailable)."""


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 BGR uint8 array.

        Returns:
            List of classification results, normally sorted by confidence (descending).

        Raises:
            ClassificationError: If the frame is malformed or the backend fails.
        """
        ...


def top_result(results: Iterable[ClassificationResult]) -> ClassificationResult | None:
    """Return the highest-confidence result, or None when there are none.

    Input ordering is not trusted. On ties the first result seen wins.
    Results with a non-finite confidence are skipped.
    """
    best: ClassificationResult | None = None
    for result in results:
        if not math.isfinite(result.confidence):
            continue
        if best is None or result.confidence > best.confidence:
            best = result
    return best


def _to_probabilities(scores: NDArray[np.float32]) -> NDArray[np.float32]:
    scores = scores.astype(np.float32).reshape(-1)
    if scores.size == 0:
        return scores
    if np.all(scores >= 0.0) and abs(float(scores.sum()) - 1.0) < 1e-3:
        return scores
    shifted = np.exp(scores - scores.max())
    return shifted / shifted.sum()


class OnnxImageClassifier:
    """Classifier backed by an ONNX Runtime session with a fixed label vocabulary."""

    def __init__(
        self,
        session: InferenceSession,
        labels: Sequence[str],
        model_name: str,
        input_size: tuple[int, int] = (224, 224),
    ) -> None:
        self._session = session
        self._labels = tuple(labels)
        self._model_name = model_name
        self._input_size = input_size
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        try:
            tensor = prepare_input(image, self._input_size)
        except ValueError as exc:
            raise ClassificationError(f"{self._model_name}: {exc}") from exc

        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:  # noqa: BLE001
            raise ClassificationError(f"{self._model_name}: inference failed: {exc}") from exc

        probabilities = _to_probabilities(np.asarray(outputs[0]))
        if probabilities.size != len(self._labels):
            raise ClassificationError(
                f"{self._model_name}: model returned {probabilities.size} scores for {len(self._labels)} labels"
            )
        if not np.all(np.isfinite(probabilities)):
            raise ClassificationError(f"{self._model_name}: model returned non-finite scores")

        order = np.argsort(-probabilities, kind="stable")
        return [ClassificationResult(label=self._labels[i], confidence=float(probabilities[i])) for i in order]
