"""Ports (interfaces) used by the verification service.

Ports define the minimal contracts for record sources and caches so that the
core can be reused with different storage backends and messaging providers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from deliveryscope.core.models import ExternalFetchResult, FetchError, InternalMessageRecord


class InternalRecordSource(Protocol):
    """Read access to our own message log."""

    def fetch_messages(
        self,
        window_start: datetime,
        window_end: datetime,
        phone_numbers: Optional[Sequence[str]] = None,
        roles: Optional[Sequence[str]] = None,
        classification: Optional[str] = None,
    ) -> List[InternalMessageRecord]:
        """Return matching records ordered by ``sent_at`` ascending."""
        ...

    def list_phone_numbers(self, window_start: datetime, window_end: datetime) -> List[str]:
        ...


class ExternalRecordSource(Protocol):
    """Message history as reported by the external provider."""

    async def fetch(
        self,
        phone_numbers: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> Tuple[List[ExternalFetchResult], List[FetchError]]:
        ...


class CachePort(Protocol):
    """Key/value cache with per-entry expiry checked at read time."""

    def fetch(self, key: str) -> Optional[Any]:
        ...

    def store(self, key: str, value: Any, ttl: float) -> None:
        ...
