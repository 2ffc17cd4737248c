# ==============================================================================
# Assignment Store
# ==============================================================================
"""
Durable persistence for experiment assignments.

Assignments are cached under the key format:
beacon:assignment:{test_id}:{identity}

A returning visitor with the same identity therefore gets the same variant
across application lifetimes. Exclusions (traffic targeting) are stored with
``excluded=True`` so that they are sticky too.

The first write for a key wins across every process sharing the cache: the
record is written with set_if_absent, and a losing writer adopts the stored
record instead of its own draw.

The store keeps a local copy of every record it has read or written, and
remembers keys the cache did not have, so repeated lookups cost no I/O. If the
backing cache is unreachable the local copy still guarantees idempotent
assignment for the lifetime of the process. Cache errors are logged, never
raised.
"""

import logging
import threading

from beacon.base import Cache
from beacon.core.models import Assignment

logger = logging.getLogger(__name__)


# Key prefix for assignment records
ASSIGNMENT_PREFIX = "beacon:assignment:"


class AssignmentStore:
    """
    Cache-backed store for Assignment records.

    Each value is the assignment's wire form (camelCase dict).
    """

    def __init__(self, cache: Cache | None = None, ttl_seconds: int | None = None):
        """
        Initialize the assignment store.

        Args:
            cache: Backing cache. If None, only the local copy is used.
            ttl_seconds: Optional TTL applied to cached assignments
        """
        self._cache = cache
        self._ttl = ttl_seconds
        self._local: dict[str, Assignment] = {}
        # Keys the cache reported missing; cleared when this store writes them
        self._misses: set[str] = set()
        self._lock = threading.Lock()

    def _key(self, test_id: str, identity: str) -> str:
        """Generate the cache key for a test/identity pair."""
        return f"{ASSIGNMENT_PREFIX}{test_id}:{identity}"

    def _adopt(self, key: str, assignment: Assignment) -> Assignment:
        with self._lock:
            self._misses.discard(key)
            return self._local.setdefault(key, assignment)

    def get(self, test_id: str, identity: str) -> Assignment | None:
        """
        Look up an assignment (or exclusion) for an identity.

        The cache is consulted at most once per key: hits are kept locally
        and misses are remembered. A miss that another process fills later
        is reconciled by save(), which never overwrites a stored record.

        Returns:
            The stored Assignment, or None if the identity was never assigned
        """
        key = self._key(test_id, identity)
        with self._lock:
            local = self._local.get(key)
            if local is not None or self._cache is None or key in self._misses:
                return local

        try:
            data = self._cache.get(key)
        except Exception as e:
            logger.warning("Assignment lookup failed for %s: %s", key, e)
            return None
        if data is None:
            with self._lock:
                self._misses.add(key)
            return None
        return self._adopt(key, Assignment.model_validate(data))

    def get_for_identity(self, test_ids: list[str], identity: str) -> dict[str, Assignment]:
        """
        Assignments of an identity known to this process, without cache I/O.

        Returns:
            Dict mapping test_id to Assignment (unknown tests are omitted)
        """
        with self._lock:
            found = ((test_id, self._local.get(self._key(test_id, identity))) for test_id in test_ids)
            return {test_id: a for test_id, a in found if a is not None}

    def save(self, assignment: Assignment) -> Assignment:
        """
        Persist an assignment unless one already exists.

        Returns:
            The stored assignment; an earlier record, written by this or any
            other process, wins over ``assignment``
        """
        key = self._key(assignment.test_id, assignment.identity)
        with self._lock:
            existing = self._local.get(key)
        if existing is not None:
            return existing
        if self._cache is None:
            return self._adopt(key, assignment)

        try:
            if self._cache.set_if_absent(key, assignment.to_message(), self._ttl):
                return self._adopt(key, assignment)
            stored = self._cache.get(key)
        except Exception as e:
            logger.warning("Failed to persist assignment %s: %s", key, e)
            return self._adopt(key, assignment)

        if stored is None:
            # Expired between the two calls; nothing left to honor
            logger.warning("Assignment %s vanished after a lost write, keeping local draw", key)
            return self._adopt(key, assignment)
        logger.debug("Assignment %s already stored by another writer", key)
        return self._adopt(key, Assignment.model_validate(stored))

    def clear_all(self) -> int:
        """
        Remove every stored assignment.

        Returns:
            Count of assignments deleted from the backing cache (or locally)
        """
        with self._lock:
            local_count = len(self._local)
            self._local.clear()
            self._misses.clear()
        if self._cache is None:
            return local_count
        return self._cache.delete_pattern(f"{ASSIGNMENT_PREFIX}*")
