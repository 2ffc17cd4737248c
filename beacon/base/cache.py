# ==============================================================================
# Cache Abstract Base Class
# ==============================================================================
"""
Abstract interface for key-value storage with TTL support.

Beacon uses the cache as a blob store for two things only: the consent flag
and cached experiment assignments. It is not a repository for events.

Implementations: Valkey/Redis, in-memory.
"""

from abc import ABC, abstractmethod


class Cache(ABC):
    """
    Generic cache interface for key-value storage with TTL support.

    All values are stored as dicts (JSON-serializable). Implementations
    handle serialization/deserialization internally.
    """

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found
        """
        ...

    @abstractmethod
    def set(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        """
        Set a cached value with optional TTL.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable dict)
            ttl_seconds: Optional time-to-live in seconds
        """
        ...

    @abstractmethod
    def set_if_absent(self, key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        """
        Set a value only if the key does not exist yet.

        The check and the write are atomic with respect to every other
        client of the same store.

        Returns:
            True if the value was written, False if the key already existed
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if key was deleted, False if not found
        """
        ...

    @abstractmethod
    def get_many(self, keys: list[str]) -> dict[str, dict]:
        """
        Batch get multiple keys.

        Returns:
            Dict mapping key to value (missing keys are omitted)
        """
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob-style pattern (e.g., "beacon:assignment:*").

        Returns:
            Count of keys deleted
        """
        ...
