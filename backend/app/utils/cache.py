"""Process-local TTL cache for short-lived reads (preflight reports)."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TTLCache:
    """Dict-backed cache whose entries expire ``ttl_seconds`` after being set.

    Entries are per process and are lost on restart.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] | None = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, tuple[Any, datetime]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + timedelta(seconds=ttl))

    def delete(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("Cache entry %s invalidated", key)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
