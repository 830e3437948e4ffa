"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

CONSUMPTION_MODES = ("per_batch", "global")
DEFAULT_THRESHOLD = 0.9
DEFAULT_BATCH_SIZE = 100


class ConfigurationError(ValueError):
    """Raised for caller configuration mistakes before any matching starts."""


def validate_threshold(threshold: float) -> None:
    if not 0 < threshold <= 1:
        raise ConfigurationError(f"Similarity threshold must be in (0, 1], got {threshold}")


def validate_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ConfigurationError(f"Batch size must be >= 1, got {batch_size}")


def validate_consumption_mode(mode: str) -> None:
    if mode not in CONSUMPTION_MODES:
        raise ConfigurationError(f"Unsupported consumption mode: {mode}")


@dataclass(frozen=True)
class MatchingConfig:
    """Matching settings for the reconciliation engine."""

    threshold: float = DEFAULT_THRESHOLD
    batch_size: int = DEFAULT_BATCH_SIZE
    consumption_mode: str = "per_batch"
    workers: int = 1

    def validate(self) -> None:
        validate_threshold(self.threshold)
        validate_batch_size(self.batch_size)
        validate_consumption_mode(self.consumption_mode)
        if self.workers < 1:
            raise ConfigurationError(f"Worker count must be >= 1, got {self.workers}")
