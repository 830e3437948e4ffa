"""JSON export external record source.

Reads provider exports for offline verification. Two layouts are accepted:

- ``{"<phone>": [payload, ...], ...}``
- ``[{"phoneNumber": "<phone>", "messages": [payload, ...], "success": true}, ...]``

Payloads go through ExternalMessageRecord.from_payload, so both ``message``
and ``body`` text fields are understood.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from deliveryscope.core.models import (
    ExternalFetchResult,
    ExternalMessageRecord,
    FetchError,
    ensure_utc,
)

LOGGER = logging.getLogger(__name__)


def _index_export(raw: Any) -> Dict[str, Tuple[List[dict], bool]]:
    if isinstance(raw, dict):
        return {str(phone): (list(messages or []), True) for phone, messages in raw.items()}
    if isinstance(raw, list):
        index: Dict[str, Tuple[List[dict], bool]] = {}
        for entry in raw:
            phone = str(entry.get("phoneNumber") or entry.get("phone_number") or "")
            if not phone:
                continue
            messages, success = index.get(phone, ([], True))
            messages.extend(entry.get("messages") or [])
            index[phone] = (messages, success and bool(entry.get("success", True)))
        return index
    raise ValueError("External export must be a JSON object or array")


class JsonExportSource:
    """ExternalRecordSource backed by a JSON export file."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._index: Optional[Dict[str, Tuple[List[dict], bool]]] = None

    def _load(self) -> Dict[str, Tuple[List[dict], bool]]:
        if self._index is None:
            with open(self._path, "r", encoding="utf-8") as handle:
                self._index = _index_export(json.load(handle))
            LOGGER.info("Loaded external export for %s phone numbers", len(self._index))
        return self._index

    async def fetch(
        self,
        phone_numbers: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> Tuple[List[ExternalFetchResult], List[FetchError]]:
        index = self._load()
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        wanted = list(phone_numbers) or list(index)

        results: List[ExternalFetchResult] = []
        errors: List[FetchError] = []
        for phone_number in wanted:
            payloads, success = index.get(phone_number, ([], True))
            if not success:
                errors.append(FetchError(identifier=phone_number, error="Export marked this phone number as failed"))
                results.append(ExternalFetchResult(phone_number, [], success=False))
                continue
            try:
                records = [ExternalMessageRecord.from_payload(p, phone_number) for p in payloads]
            except (TypeError, ValueError) as exc:
                errors.append(FetchError(identifier=phone_number, error=str(exc)))
                results.append(ExternalFetchResult(phone_number, [], success=False))
                continue
            in_window = [r for r in records if window_start <= r.timestamp <= window_end]
            results.append(ExternalFetchResult(phone_number, in_window, success=True))
        return results, errors
