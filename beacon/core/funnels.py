# ==============================================================================
# Funnel Engine
# ==============================================================================
"""
Ordered-step conversion funnels.

Step completions are recorded per identity (user id, else session id) and
analysed within a time range:

- total users: identities with at least one in-range step of the funnel
- step users: identities that reached the step
- conversion rate: step users / previous step users * 100 (the first step is
  measured against total users), capped at 100
- overall conversion: final-step users / total users * 100
- average time to complete: first final-step timestamp minus the identity's
  first in-range timestamp, averaged over identities that completed

By default a step counts as reached when it is present at all, regardless of
order. Funnels defined with ``strict_order`` only count a step reached at or
after the previous step's counted timestamp.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from beacon.core.defaults import DEFAULT_FUNNELS
from beacon.core.exceptions import FunnelConfigError
from beacon.core.models import (
    Event,
    FunnelDefinition,
    FunnelResult,
    FunnelStepRecord,
    StepConversion,
    TimeRange,
)
from beacon.core.session import generate_session_id
from beacon.utils.clock import now_ms

if TYPE_CHECKING:
    from beacon.core.emitter import EventEmitter

logger = logging.getLogger(__name__)


class FunnelEngine:
    """Funnel definitions, step records and conversion analysis."""

    def __init__(
        self,
        emitter: "EventEmitter | None" = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._emitter = emitter
        self._clock = clock
        self._lock = threading.RLock()
        self._funnels: dict[str, FunnelDefinition] = {}
        # identity -> step records, in recording order
        self._records: dict[str, list[FunnelStepRecord]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def add_funnel(self, key: str, definition: FunnelDefinition | dict[str, Any]) -> FunnelDefinition:
        """
        Register (or replace) a funnel under ``key``.

        Raises:
            FunnelConfigError: No steps, duplicate step names or a
                non-positive time window
        """
        if not key:
            raise FunnelConfigError("Funnel key must not be empty")
        try:
            if isinstance(definition, FunnelDefinition):
                definition = FunnelDefinition.model_validate(definition.model_dump())
            else:
                definition = FunnelDefinition.model_validate(definition)
        except ValidationError as e:
            raise FunnelConfigError(f"Invalid funnel {key!r}: {e}") from e

        with self._lock:
            replaced = key in self._funnels
            self._funnels[key] = definition
        logger.info(
            "%s funnel %s (%d steps)",
            "Replaced" if replaced else "Registered",
            key,
            len(definition.steps),
        )
        return definition

    def register_defaults(self) -> list[str]:
        """Register the built-in funnels that are not registered yet."""
        added = []
        for key, definition in DEFAULT_FUNNELS.items():
            if self.get_funnel(key) is None:
                self.add_funnel(key, definition)
                added.append(key)
        return added

    def get_funnel(self, key: str) -> FunnelDefinition | None:
        with self._lock:
            return self._funnels.get(key)

    def all_funnels(self) -> list[str]:
        with self._lock:
            return list(self._funnels)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_step(
        self,
        funnel: str,
        step: str,
        user_id: str | None = None,
        session_id: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> FunnelStepRecord | None:
        """
        Record that an identity reached a funnel step.

        Returns:
            The appended record, or None for an unknown funnel or step
        """
        definition = self.get_funnel(funnel)
        funnel_step = definition.get_step(step) if definition else None
        if funnel_step is None:
            logger.debug("Ignoring step %r of unknown funnel/step %r", step, funnel)
            return None

        record = FunnelStepRecord(
            funnel=funnel,
            step_name=step,
            event=funnel_step.event,
            properties={**funnel_step.properties, **(properties or {})},
            timestamp=self._clock(),
            user_id=user_id,
            session_id=session_id or generate_session_id(),
        )
        self._append(record)

        if self._emitter is not None:
            self._emitter.track(
                funnel_step.event,
                {"funnel": funnel, "step": step, "identity": record.identity, **record.properties},
            )
        return record

    def ingest(self, events: Iterable[Event]) -> int:
        """
        Rebuild step records from delivered events carrying funnel/step properties.

        Returns:
            Number of records appended
        """
        applied = 0
        for event in events:
            funnel = event.properties.get("funnel")
            step = event.properties.get("step")
            if not funnel or not step:
                continue
            definition = self.get_funnel(funnel)
            if definition is None or definition.get_step(step) is None:
                continue
            properties = {
                k: v
                for k, v in event.properties.items()
                if k not in ("funnel", "step", "identity", "sessionId", "userId")
            }
            self._append(
                FunnelStepRecord(
                    funnel=funnel,
                    step_name=step,
                    event=event.name,
                    properties=properties,
                    timestamp=event.timestamp,
                    user_id=event.properties.get("identity") or event.user_id,
                    session_id=event.session_id,
                )
            )
            applied += 1

        logger.debug("Ingested %d funnel step events", applied)
        return applied

    def _append(self, record: FunnelStepRecord) -> None:
        with self._lock:
            self._records[record.identity].append(record)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self, funnel: str, start: int | None = None, end: int | None = None
    ) -> FunnelResult | None:
        """
        Conversion statistics for a funnel within ``start..end`` (inclusive, ms).

        Defaults to the funnel's window ending now.

        Returns:
            FunnelResult, or None for an unknown funnel
        """
        with self._lock:
            definition = self._funnels.get(funnel)
            if definition is None:
                return None
            records = {
                identity: [r for r in steps if r.funnel == funnel]
                for identity, steps in self._records.items()
            }

        now = self._clock()
        end = now if end is None else end
        start = end - definition.time_window if start is None else start
        time_range = TimeRange(start=start, end=end)

        step_names = [s.name for s in definition.steps]
        final = definition.final_step.name
        step_users: dict[str, int] = dict.fromkeys(step_names, 0)
        completion_times: list[int] = []
        total_users = 0

        for steps in records.values():
            in_range = [r for r in steps if start <= r.timestamp <= end]
            if not in_range:
                continue
            total_users += 1

            reached = _reached_steps(in_range, step_names, definition.strict_order)
            for name in reached:
                step_users[name] += 1
            if final in reached:
                first_seen = min(r.timestamp for r in in_range)
                completion_times.append(reached[final] - first_seen)

        if total_users == 0:
            return FunnelResult(funnel_name=funnel, time_range=time_range)

        conversions = []
        previous = total_users
        for name in step_names:
            users = step_users[name]
            rate = min(100.0, users / previous * 100) if previous else 0.0
            conversions.append(
                StepConversion(
                    step_name=name,
                    users=users,
                    conversion_rate=rate,
                    dropoff_rate=100.0 - rate,
                )
            )
            previous = users

        return FunnelResult(
            funnel_name=funnel,
            total_users=total_users,
            step_conversions=conversions,
            overall_conversion_rate=step_users[final] / total_users * 100,
            average_time_to_complete=(
                sum(completion_times) / len(completion_times) if completion_times else 0.0
            ),
            time_range=time_range,
        )


def _reached_steps(
    records: list[FunnelStepRecord], step_names: list[str], strict_order: bool
) -> dict[str, int]:
    """
    Steps an identity reached, mapped to the timestamp they were counted at.

    Presence-only: the earliest timestamp of each recorded step.
    Strict order: the earliest timestamp at or after the previous counted
    step; the walk stops at the first step not reached.
    """
    timestamps: dict[str, list[int]] = defaultdict(list)
    for r in records:
        timestamps[r.step_name].append(r.timestamp)

    if not strict_order:
        return {name: min(timestamps[name]) for name in step_names if timestamps[name]}

    reached: dict[str, int] = {}
    floor = None
    for name in step_names:
        candidates = [t for t in timestamps[name] if floor is None or t >= floor]
        if not candidates:
            break
        floor = min(candidates)
        reached[name] = floor
    return reached
