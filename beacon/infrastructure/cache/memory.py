# ==============================================================================
# In-Memory Cache Implementation
# ==============================================================================
"""
Process-local implementation of the Cache interface.

Used when no Valkey server is configured and in unit tests. Values are
deep-copied on the way in and out so callers never share mutable state with
the store. TTLs are honored lazily on read.
"""

import copy
import fnmatch
import threading
import time

from beacon.base import Cache


class MemoryCache(Cache):
    """Dict-backed cache with lazy TTL expiry."""

    def __init__(self):
        self._data: dict[str, tuple[dict, float | None]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> dict | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> dict | None:
        with self._lock:
            value = self._live(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._data[key] = (copy.deepcopy(value), expires_at)

    def set_if_absent(self, key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (copy.deepcopy(value), expires_at)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def get_many(self, keys: list[str]) -> dict[str, dict]:
        with self._lock:
            result = {}
            for key in keys:
                value = self._live(key)
                if value is not None:
                    result[key] = copy.deepcopy(value)
            return result

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matches = [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
            for key in matches:
                del self._data[key]
            return len(matches)
