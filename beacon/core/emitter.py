# ==============================================================================
# Event Emitter (Tracker Facade)
# ==============================================================================
"""
Single entry point for tracking: ``track(name, properties)``.

Every event is enriched with:
- session id and user id from the SessionTracker
- environment context supplied by the host (route, device class, locale,
  connection type, viewport, user agent)
- active experiment assignments from registered context providers

and then handed to the EventQueue. Tracking never raises: with consent
denied, or when the session was sampled out, every call is a no-op.
"""

import logging
import random
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from beacon.core.models import Event, EventContext, Session
from beacon.core.session import SessionTracker
from beacon.utils.clock import now_ms

if TYPE_CHECKING:
    from beacon.delivery.queue import EventQueue
    from beacon.infrastructure.consent import ConsentStore

logger = logging.getLogger(__name__)

ContextProvider = Callable[[str], dict[str, str]]


class EventEmitter:
    """
    Tracker facade composing a SessionTracker and an EventQueue.

    Engines (experiments, funnels, cohorts) emit their observability events
    through this class, so they never depend on delivery succeeding.
    """

    def __init__(
        self,
        session_tracker: SessionTracker,
        queue: "EventQueue",
        consent: "ConsentStore | None" = None,
        sample_rate: float = 1.0,
        debug: bool = False,
        environment: EventContext | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the emitter.

        Args:
            session_tracker: Owner of the current session
            queue: Destination for enriched events
            consent: Consent flag; tracking is allowed when None
            sample_rate: Fraction of sessions tracked (decided once, here)
            debug: Log every tracked event at INFO
            environment: Initial environment context
            rng: Random source for the sampling decision
            clock: Millisecond clock, injectable for tests
        """
        self._sessions = session_tracker
        self._queue = queue
        self._consent = consent
        self._debug = debug
        self._clock = clock
        self._environment = environment or EventContext()
        self._context_providers: list[ContextProvider] = []

        draw = (rng or random.Random()).random()
        self._sampled = draw < sample_rate if sample_rate < 1.0 else True
        if not self._sampled:
            logger.info("Session %s sampled out of tracking", session_tracker.session_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        """True when this session is sampled in and consent is granted."""
        if not self._sampled:
            return False
        if self._consent is None:
            return True
        return self._consent.is_granted()

    @property
    def session_id(self) -> str:
        return self._sessions.session_id

    @property
    def user_id(self) -> str | None:
        return self._sessions.user_id

    @property
    def identity(self) -> str:
        """User id when authenticated, otherwise the session id."""
        return self._sessions.user_id or self._sessions.session_id

    def get_session(self) -> Session:
        return self._sessions.snapshot()

    def set_user_id(self, user_id: str | None) -> None:
        self._sessions.set_user_id(user_id)

    def update_environment(self, **fields: Any) -> None:
        """Update environment context (e.g. ``route="/discover"``)."""
        self._environment = self._environment.model_copy(update=fields)

    def add_context_provider(self, provider: ContextProvider) -> None:
        """
        Register a provider of active-experiment flags.

        Args:
            provider: Called with the current identity; returns test id -> variant id
        """
        self._context_providers.append(provider)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track(self, name: str, properties: dict[str, Any] | None = None) -> Event | None:
        """
        Track an event.

        Returns:
            The enqueued Event, or None when tracking is disabled or failed
        """
        try:
            if not self.enabled:
                return None

            timestamp = self._sessions.touch()
            session_id = self._sessions.session_id
            user_id = self._sessions.user_id
            event = Event(
                name=name,
                properties={
                    **(properties or {}),
                    "sessionId": session_id,
                    "userId": user_id,
                },
                session_id=session_id,
                user_id=user_id,
                timestamp=timestamp,
                context=self._build_context(user_id or session_id),
            )
            self._queue.enqueue(event)
        except Exception as e:
            logger.error("Failed to track event %r: %s", name, e)
            return None

        if self._debug:
            logger.info("Analytics event: %s %s", name, event.properties)
        return event

    def track_page_view(self, page: str | None = None, title: str | None = None) -> Event | None:
        """Track a page view and bump the session's page-view counter."""
        if page is not None:
            self.update_environment(route=page)
        session = self._sessions.snapshot()
        event = self.track(
            "page_view",
            {
                "page": page or self._environment.route,
                "title": title,
                "referrer": session.referrer,
            },
        )
        if event is not None:
            self._sessions.record_page_view()
        return event

    def identify(self, user_id: str, traits: dict[str, Any] | None = None) -> Event | None:
        """Attach an authenticated identity and record it."""
        self.set_user_id(user_id)
        return self.track("identify", {"userId": user_id, **(traits or {})})

    def track_user_action(
        self, action: str, target: str | None = None, properties: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track("user_action", {"action": action, "target": target, **(properties or {})})

    def track_feature_usage(
        self, feature: str, properties: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track("feature_usage", {"feature": feature, **(properties or {})})

    def track_search(
        self, query: str, results: int, filters: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track(
            "search",
            {
                "query": query.lower().strip(),
                "results": results,
                "filters": filters,
                "queryLength": len(query),
            },
        )

    def track_content_interaction(
        self, content_id: str, action: str, properties: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track(
            "content_interaction",
            {"contentId": content_id, "action": action, **(properties or {})},
        )

    def track_list_interaction(
        self, list_id: str, action: str, properties: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track(
            "list_interaction", {"listId": list_id, "action": action, **(properties or {})}
        )

    def track_social_interaction(
        self,
        interaction_type: str,
        target_id: str,
        action: str,
        properties: dict[str, Any] | None = None,
    ) -> Event | None:
        return self.track(
            "social_interaction",
            {
                "type": interaction_type,
                "targetId": target_id,
                "action": action,
                **(properties or {}),
            },
        )

    def track_error(self, error: str, properties: dict[str, Any] | None = None) -> Event | None:
        return self.track("error", {"error": error, **(properties or {})})

    def track_performance(
        self, metric: str, value: float, properties: dict[str, Any] | None = None
    ) -> Event | None:
        return self.track("performance", {"metric": metric, "value": value, **(properties or {})})

    def track_visibility(self, visible: bool) -> Event | None:
        return self.track("page_visible" if visible else "page_hidden")

    def track_session_end(self) -> Event | None:
        """Record the end of the session with its totals."""
        session = self._sessions.snapshot()
        return self.track(
            "session_end",
            {
                "duration": self._clock() - session.start_time,
                "pageViews": session.page_views,
                "events": session.events,
            },
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _build_context(self, identity: str) -> EventContext:
        experiments: dict[str, str] = {}
        for provider in self._context_providers:
            try:
                experiments.update(provider(identity))
            except Exception as e:
                logger.warning("Context provider failed: %s", e)
        return self._environment.model_copy(
            update={
                "referrer": self._environment.referrer or self._sessions.snapshot().referrer,
                "experiments": experiments,
            }
        )
