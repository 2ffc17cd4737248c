# ==============================================================================
# Collector Abstract Base Class
# ==============================================================================
"""
Base class for delivery sinks.

A collector receives one batch of events plus the current session snapshot
per call. The call must be safe to retry: the EventQueue re-sends the same
batch after a failure, so delivery is at-least-once.
"""

from abc import ABC, abstractmethod

from beacon.core.models import Event, Session


class Collector(ABC):
    """Base class for event batch collectors."""

    @property
    def name(self) -> str:
        """Human-readable collector name used in log lines."""
        return type(self).__name__

    @abstractmethod
    def deliver(self, batch: list[Event], session: Session, timeout: float | None = None) -> bool:
        """
        Deliver a batch of events.

        Args:
            batch: Events in enqueue order
            session: Snapshot of the current session
            timeout: Send timeout in seconds, if the transport supports one

        Returns:
            True if the batch was accepted, False otherwise. Implementations
            may also raise; the queue treats an exception as a failure.
        """
        ...

    def close(self) -> None:
        """Release collector resources. Called once at shutdown."""
