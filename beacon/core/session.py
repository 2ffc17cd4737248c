# ==============================================================================
# Session Tracker - Pure Domain Logic
# ==============================================================================
"""
Per-lifetime session bookkeeping with no external dependencies.

One Session exists per application lifetime. It is created when the tracker
starts, mutated in place on every tracked event and page view, and never
persisted: a fresh load creates a fresh session.

Attribution (referrer and utm_* parameters) is parsed once from the landing
URL at creation time.
"""

import threading
import uuid
from collections.abc import Callable
from urllib.parse import parse_qs, urlparse

from beacon.core.models import Session
from beacon.utils.clock import now_ms


def generate_session_id() -> str:
    """Opaque random session identifier."""
    return uuid.uuid4().hex


def parse_attribution(landing_url: str | None) -> dict[str, str | None]:
    """
    Extract utm_source/utm_medium/utm_campaign from a landing URL.

    Args:
        landing_url: URL of the initial navigation, or None

    Returns:
        Dict with utm_source, utm_medium and utm_campaign (None when absent)
    """
    params = parse_qs(urlparse(landing_url).query) if landing_url else {}

    def first(name: str) -> str | None:
        values = params.get(name)
        return values[0] if values and values[0] else None

    return {
        "utm_source": first("utm_source"),
        "utm_medium": first("utm_medium"),
        "utm_campaign": first("utm_campaign"),
    }


class SessionTracker:
    """
    Owns the Session record for one application lifetime.

    Invariants:
        - last_activity >= start_time
        - events equals the number of touch() calls
    """

    def __init__(
        self,
        landing_url: str | None = None,
        referrer: str | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize and create the session.

        Args:
            landing_url: URL of the initial navigation (for UTM attribution)
            referrer: Referrer of the initial navigation
            clock: Millisecond clock, injectable for tests
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._session = self.create(landing_url, referrer)

    def create(self, landing_url: str | None = None, referrer: str | None = None) -> Session:
        """Build a fresh session with zero counters."""
        now = self._clock()
        return Session(
            session_id=generate_session_id(),
            start_time=now,
            last_activity=now,
            referrer=referrer or None,
            **parse_attribution(landing_url),
        )

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def user_id(self) -> str | None:
        return self._session.user_id

    def set_user_id(self, user_id: str | None) -> None:
        """Attach (or clear) the authenticated identity."""
        with self._lock:
            self._session.user_id = user_id

    def touch(self) -> int:
        """
        Record activity for a tracked event.

        Returns:
            The activity timestamp (ms since epoch)
        """
        with self._lock:
            now = max(self._clock(), self._session.start_time)
            self._session.last_activity = max(self._session.last_activity, now)
            self._session.events += 1
            return now

    def record_page_view(self) -> None:
        with self._lock:
            self._session.page_views += 1

    def snapshot(self) -> Session:
        """Return an independent copy of the current session."""
        with self._lock:
            return self._session.model_copy()
