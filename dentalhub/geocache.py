"""Local key/value cache with a time-to-live, used for geocoding results."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from . import database

logger = logging.getLogger(__name__)

LOCAL_CACHE_PREFIX = "geocode:"
DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def cache_key(address: str) -> str:
    """Cache key for an address; the literal string is used as-is."""
    return f"{LOCAL_CACHE_PREFIX}{address}"


class SQLiteKeyValueStore:
    """Key/value store backed by the kv_cache table."""

    def get(self, key: str) -> Optional[str]:
        return database.cache_get(key)

    def set(self, key: str, value: str) -> None:
        database.cache_set(key, value)


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class TTLCache:
    """
    Wrap a string key/value store with timestamped entries.

    Entries are stored as JSON ``{"timestamp": <ms>, "value": ...}``. Reads treat
    expired, missing, or corrupt entries as misses and never raise; expired
    entries are left in place. Writes swallow storage failures so callers keep
    their in-memory result.
    """

    def __init__(
        self,
        store: Any,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_ms = ttl_seconds * 1000
        self._clock = clock

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def get(self, key: str) -> Any:
        try:
            raw = self.store.get(key)
            if not raw:
                return None
            parsed = json.loads(raw)
            if self._now_ms() - float(parsed["timestamp"]) > self.ttl_ms:
                return None
            return parsed["value"]
        except Exception as exc:
            logger.debug("Ignoring unreadable cache entry %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            self.store.set(key, json.dumps({"timestamp": self._now_ms(), "value": value}))
        except Exception as exc:
            logger.warning("Unable to persist cache entry %s: %s", key, exc)
