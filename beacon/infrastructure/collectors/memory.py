# ==============================================================================
# In-Memory Collector
# ==============================================================================
"""
Collector that keeps delivered batches in memory.

Useful for embedding Beacon in tests or in hosts that forward batches on
their own. Delivered events can be inspected via ``events``.
"""

import threading

from beacon.base import Collector
from beacon.core.models import Event, Session


class MemoryCollector(Collector):
    """Record delivered batches in process memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.batches: list[list[Event]] = []
        self.sessions: list[Session] = []

    def deliver(self, batch: list[Event], session: Session, timeout: float | None = None) -> bool:
        with self._lock:
            self.batches.append(list(batch))
            self.sessions.append(session)
        return True

    @property
    def events(self) -> list[Event]:
        """All delivered events, in delivery order."""
        with self._lock:
            return [event for batch in self.batches for event in batch]
