"""Similarity scoring between message texts (core domain).

Scores are the Sorensen-Dice coefficient over character bigrams of the
normalized text, which tolerates truncation, punctuation drift, and small
edits far better than exact comparison.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional

from deliveryscope.core.normalize import normalize


def _bigrams(text: str) -> Counter:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


def dice_coefficient(first: str, second: str) -> float:
    """Return the bigram Dice coefficient of two already-normalized strings."""

    first = first.replace(" ", "")
    second = second.replace(" ", "")
    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = _bigrams(first)
    second_bigrams = _bigrams(second)
    overlap = sum((first_bigrams & second_bigrams).values())
    return 2.0 * overlap / (len(first) + len(second) - 2)


def score(first: Optional[str], second: Optional[str]) -> float:
    """Return a similarity in [0, 1] between two raw message texts."""

    if not first or not second:
        return 0.0
    return dice_coefficient(normalize(first), normalize(second))
