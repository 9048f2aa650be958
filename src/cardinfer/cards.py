"""Card vocabulary and the recognized-card value type."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar


class Suit(StrEnum):
    HEART = "heart"
    DIAMOND = "diamond"
    CLUB = "club"
    SPADE = "spade"


class Rank(StrEnum):
    ACE = "ace"
    TWO = "two"
    THREE = "three"
    FOUR = "four"
    FIVE = "five"
    SIX = "six"
    SEVEN = "seven"
    EIGHT = "eight"
    NINE = "nine"
    TEN = "ten"
    JACK = "jack"
    QUEEN = "queen"
    KING = "king"


LabelT = TypeVar("LabelT", Suit, Rank)


class InvalidLabelError(ValueError):
    """Raised when a classifier label is not part of the card vocabulary."""

    def __init__(self, label: str, kind: type[Suit] | type[Rank]) -> None:
        super().__init__(f"Unknown {kind.__name__.lower()} label: {label!r}")
        self.label = label
        self.kind = kind


@dataclass(frozen=True)
class CardResult:
    """A card whose suit and rank both cleared their confidence thresholds."""

    suit: Suit
    rank: Rank

    @property
    def suit_string(self) -> str:
        return self.suit.value

    @property
    def rank_string(self) -> str:
        return self.rank.value

    @property
    def card_string(self) -> str:
        """Canonical form: rank label followed by suit label, e.g. ``acespade``."""
        return f"{self.rank_string}{self.suit_string}"


def validate_label(raw_label: str, kind: type[LabelT]) -> LabelT:
    """Map a raw classifier label onto ``kind``.

    Matching is exact; the classifier vocabulary must use the enum values.

    Raises:
        InvalidLabelError: If ``raw_label`` is not a member of ``kind``.
    """
    try:
        return kind(raw_label)
    except ValueError:
        raise InvalidLabelError(raw_label, kind) from None


def parse_card_string(card_string: str) -> CardResult:
    """Inverse of :attr:`CardResult.card_string`.

    Raises:
        InvalidLabelError: If no rank/suit split of the string is valid.
    """
    for rank in Rank:
        if card_string.startswith(rank.value):
            suit = validate_label(card_string[len(rank.value) :], Suit)
            return CardResult(suit=suit, rank=rank)
    raise InvalidLabelError(card_string, Rank)
