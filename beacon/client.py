# ==============================================================================
# Beacon Client
# ==============================================================================
"""
Composition root: one tracker and one of each engine per process.

    beacon = Beacon.from_settings(landing_url=url, referrer=ref)
    beacon.tracker.track_page_view("/discover")
    assignment = beacon.experiments.assign("homepage-layout", user_id)
    beacon.funnels.record_step("signup", "Form Started", user_id)
    beacon.cohorts.record_activity(user_id, events=12, sessions=1)
    beacon.shutdown()

``shutdown()`` is registered with atexit so pending events are flushed when
the interpreter exits.
"""

import atexit
import logging
import random
from collections.abc import Callable
from typing import Any

from beacon.base import Cache, Collector
from beacon.core.cohorts import CohortEngine
from beacon.core.emitter import EventEmitter
from beacon.core.experiments import ExperimentRegistry
from beacon.core.funnels import FunnelEngine
from beacon.core.models import Event, EventContext
from beacon.core.session import SessionTracker
from beacon.delivery import DeliveryMetrics, EventQueue
from beacon.infrastructure.assignment_store import AssignmentStore
from beacon.infrastructure.cache import MemoryCache, ValkeyCache, check_valkey_connection
from beacon.infrastructure.collectors import HttpCollector
from beacon.infrastructure.consent import ConsentStore
from beacon.utils.clock import DAY_MS, now_ms
from beacon.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Beacon:
    """
    Wires SessionTracker, EventQueue, EventEmitter and the three engines.

    Attributes:
        tracker: EventEmitter facade
        experiments: ExperimentRegistry
        funnels: FunnelEngine
        cohorts: CohortEngine
        consent: ConsentStore
        queue: EventQueue
    """

    def __init__(
        self,
        collector: Collector | None = None,
        cache: Cache | None = None,
        settings: Settings | None = None,
        landing_url: str | None = None,
        referrer: str | None = None,
        environment: EventContext | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
        start_worker: bool = True,
        register_defaults: bool = False,
    ):
        """
        Build the tracker and engines.

        Args:
            collector: Delivery sink. HttpCollector if None.
            cache: Key-value store for consent and assignments. Local-only if None.
            settings: Application settings. Loaded from the environment if None.
            landing_url: Initial navigation URL (UTM attribution)
            referrer: Initial navigation referrer
            environment: Device/locale/route context attached to every event
            rng: Random source shared by sampling and assignment
            clock: Millisecond clock
            start_worker: Start the background flush worker
            register_defaults: Register the built-in experiments and funnels
        """
        settings = settings or get_settings()
        tracker_settings = settings.tracker
        self._collector = collector or HttpCollector(settings=tracker_settings)
        self._closed = False

        self.sessions = SessionTracker(landing_url=landing_url, referrer=referrer, clock=clock)
        self.consent = ConsentStore(cache, settings=settings.consent)
        self.queue = EventQueue(
            self._collector,
            self.sessions.snapshot,
            batch_size=tracker_settings.batch_size,
            flush_interval=tracker_settings.flush_interval_seconds,
            send_timeout=tracker_settings.send_timeout_seconds,
            max_queue_size=tracker_settings.max_queue_size,
            metrics=DeliveryMetrics(),
        )
        self.tracker = EventEmitter(
            self.sessions,
            self.queue,
            consent=self.consent,
            sample_rate=tracker_settings.sample_rate,
            debug=tracker_settings.debug,
            environment=environment,
            rng=rng,
            clock=clock,
        )

        ttl_seconds = settings.valkey.assignment_ttl_days * DAY_MS // 1000
        self.experiments = ExperimentRegistry(
            self.tracker,
            store=AssignmentStore(cache, ttl_seconds=ttl_seconds),
            rng=rng,
            settings=settings.experiment,
            clock=clock,
        )
        self.funnels = FunnelEngine(self.tracker, clock=clock)
        self.cohorts = CohortEngine(self.tracker, clock=clock)
        self.tracker.add_context_provider(self.experiments.active_flags)

        if register_defaults:
            self.experiments.register_defaults()
            self.funnels.register_defaults()

        if start_worker:
            self.queue.start()
        atexit.register(self.shutdown)

        logger.info(
            "Beacon started (session=%s, collector=%s)",
            self.sessions.session_id,
            self._collector.name,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "Beacon":
        """
        Build a client with Valkey-backed persistence when Valkey is reachable.

        Falls back to a process-local cache otherwise.
        """
        settings = settings or get_settings()
        if "cache" not in kwargs:
            if check_valkey_connection(settings.valkey.url):
                kwargs["cache"] = ValkeyCache(settings.valkey.url)
            else:
                logger.warning("Valkey unreachable, assignments and consent are process-local")
                kwargs["cache"] = MemoryCache()
        return cls(settings=settings, **kwargs)

    def track(self, name: str, properties: dict[str, Any] | None = None) -> Event | None:
        return self.tracker.track(name, properties)

    def flush(self) -> bool:
        return self.queue.flush(force=True)

    def shutdown(self) -> None:
        """Record session end, flush pending events and close the collector."""
        if self._closed:
            return
        self._closed = True
        atexit.unregister(self.shutdown)

        self.tracker.track_session_end()
        self.queue.shutdown()
        self._collector.close()
        logger.info("Beacon shutdown complete")

    def __enter__(self) -> "Beacon":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
