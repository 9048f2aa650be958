"""Two-stage card inference: suit first, rank only when the suit gate passes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cardinfer.cards import CardResult, InvalidLabelError, LabelT, Rank, Suit, validate_label
from cardinfer.ml.image_classifier import ClassificationError, top_result

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from cardinfer.ml.image_classifier import ImageClassifier
    from cardinfer.ml.inference import InferenceWorker
    from cardinfer.thresholds import ConfidenceThresholds

logger = logging.getLogger(__name__)


class CardInferencePipeline:
    """Runs the suit and rank classifiers against one frame.

    Every failure (backend error, empty result, unknown label, low
    confidence) reduces to ``None``; :meth:`infer` never raises.
    A missing classifier means setup failed and every frame yields ``None``.
    """

    def __init__(
        self,
        suit_classifier: ImageClassifier | None,
        rank_classifier: ImageClassifier | None,
        thresholds: ConfidenceThresholds,
        worker: InferenceWorker,
    ) -> None:
        self._suit_classifier = suit_classifier
        self._rank_classifier = rank_classifier
        self._thresholds = thresholds
        self._worker = worker

    @property
    def ready(self) -> bool:
        return self._suit_classifier is not None and self._rank_classifier is not None

    async def infer(self, image: NDArray[np.uint8]) -> CardResult | None:
        """Classify ``image`` and return a card only if both stages pass."""
        suit = await self.classify_suit(image)
        if suit is None:
            return None
        rank = await self.classify_rank(image)
        if rank is None:
            return None
        return CardResult(suit=suit, rank=rank)

    async def classify_suit(self, image: NDArray[np.uint8]) -> Suit | None:
        return await self._run_stage(self._suit_classifier, image, Suit, "suit")

    async def classify_rank(self, image: NDArray[np.uint8]) -> Rank | None:
        return await self._run_stage(self._rank_classifier, image, Rank, "rank")

    async def _run_stage(
        self,
        classifier: ImageClassifier | None,
        image: NDArray[np.uint8],
        kind: type[LabelT],
        stage: str,
    ) -> LabelT | None:
        if classifier is None:
            logger.debug("%s classifier not set up", stage)
            return None

        try:
            results = await self._worker.run(classifier.classify, image)
        except ClassificationError as exc:
            logger.debug("%s inference error: %s", stage, exc)
            return None
        except Exception:  # noqa: BLE001
            logger.warning("%s classifier raised unexpectedly", stage, exc_info=True)
            return None

        top = top_result(results)
        if top is None:
            return None

        try:
            value = validate_label(top.label, kind)
        except InvalidLabelError as exc:
            logger.debug("%s gate: %s", stage, exc)
            return None

        # Read the threshold at the gate so updates apply to the next check.
        threshold = self._thresholds.suit if kind is Suit else self._thresholds.rank
        if not top.confidence >= threshold:
            return None
        return value
