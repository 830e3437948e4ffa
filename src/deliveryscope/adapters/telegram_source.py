"""Telegram external record source.

Implements the core ExternalRecordSource by reading each phone number's chat
history through Telethon. A failure for one phone number is reported as a
non-fatal error and never aborts the others.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from deliveryscope.adapters.telegram_mapper import build_external_record
from deliveryscope.core.models import (
    ExternalFetchResult,
    ExternalMessageRecord,
    FetchError,
    ensure_utc,
)
from deliveryscope.core.ports import CachePort

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300


def _cache_key(phone_number: str, window_start: datetime, window_end: datetime) -> str:
    return f"{phone_number}_{window_start.timestamp():.0f}_{window_end.timestamp():.0f}"


class TelegramExternalSource:
    """Fetch per-phone-number message history from Telegram."""

    def __init__(
        self,
        client,
        cache: Optional[CachePort] = None,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._client = client
        self._cache = cache
        self._cache_ttl = cache_ttl

    async def _fetch_history(
        self, phone_number: str, window_start: datetime, window_end: datetime
    ) -> List[ExternalMessageRecord]:
        entity = await self._client.get_entity(phone_number)
        records: List[ExternalMessageRecord] = []
        # reverse=True walks forward in time starting at offset_date.
        async for message in self._client.iter_messages(
            entity, offset_date=window_start, reverse=True
        ):
            if ensure_utc(message.date) > window_end:
                break
            records.append(build_external_record(message, phone_number))
        return records

    async def fetch_one(
        self, phone_number: str, window_start: datetime, window_end: datetime
    ) -> List[ExternalMessageRecord]:
        """Return one phone number's records, using the cache when possible."""

        key = _cache_key(phone_number, window_start, window_end)
        if self._cache is not None:
            cached = self._cache.fetch(key)
            # Empty histories are never served from the cache.
            if cached:
                LOGGER.info("Returning cached messages for %s", phone_number)
                return cached

        records = await self._fetch_history(phone_number, window_start, window_end)
        if self._cache is not None:
            self._cache.store(key, records, self._cache_ttl)
        LOGGER.info("Fetched %s messages for %s", len(records), phone_number)
        return records

    async def fetch(
        self,
        phone_numbers: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> Tuple[List[ExternalFetchResult], List[FetchError]]:
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        results: List[ExternalFetchResult] = []
        errors: List[FetchError] = []

        for phone_number in phone_numbers:
            try:
                records = await self.fetch_one(phone_number, window_start, window_end)
            except Exception as exc:
                # Telethon raises a wide range of RPC and lookup errors; any of
                # them only invalidates this phone number.
                LOGGER.exception("Failed to fetch Telegram history for %s", phone_number)
                errors.append(FetchError(identifier=phone_number, error=str(exc)))
                results.append(ExternalFetchResult(phone_number, [], success=False))
                continue
            results.append(ExternalFetchResult(phone_number, records, success=True))

        return results, errors
