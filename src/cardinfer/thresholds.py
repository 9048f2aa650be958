"""Confidence thresholds shared between the caller and the inference thread."""

from __future__ import annotations

import threading

DEFAULT_SUIT_THRESHOLD: float = 0.99
DEFAULT_RANK_THRESHOLD: float = 0.95


def _check(name: str, value: float) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} threshold must be within [0, 1], got {value}")
    return value


class ConfidenceThresholds:
    """Lock-guarded pair of per-stage confidence thresholds.

    Writers may live on any thread; the pipeline reads the current value at
    every gate, so a change takes effect on the next stage check.
    """

    def __init__(
        self,
        suit: float = DEFAULT_SUIT_THRESHOLD,
        rank: float = DEFAULT_RANK_THRESHOLD,
    ) -> None:
        self._lock = threading.Lock()
        self._suit = _check("suit", suit)
        self._rank = _check("rank", rank)

    @property
    def suit(self) -> float:
        with self._lock:
            return self._suit

    @suit.setter
    def suit(self, value: float) -> None:
        value = _check("suit", value)
        with self._lock:
            self._suit = value

    @property
    def rank(self) -> float:
        with self._lock:
            return self._rank

    @rank.setter
    def rank(self, value: float) -> None:
        value = _check("rank", value)
        with self._lock:
            self._rank = value

    def snapshot(self) -> tuple[float, float]:
        """Return ``(suit, rank)`` read under one lock acquisition."""
        with self._lock:
            return self._suit, self._rank
