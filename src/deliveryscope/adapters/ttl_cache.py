"""In-memory cache adapter with time-based expiry.

Implements the core CachePort. Expiry is checked when an entry is read, so
stale entries linger until someone asks for them.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional


class TTLCache:
    """Dictionary-backed cache that satisfies the CachePort contract."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def fetch(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def store(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
