# ==============================================================================
# Experiment Registry
# ==============================================================================
"""
Controlled experiments: definitions, lifecycle, assignment and analysis.

Lifecycle:
    draft -> running -> (paused <-> running) -> completed

Only running experiments accept new assignments. Variants and weights are
frozen once an experiment leaves draft.

Assignment is made once per (test, identity), where identity is the user id
when known and the session id otherwise. Both inclusion and traffic-targeting
exclusion are sticky: they are persisted in the AssignmentStore, and a
returning identity always gets the stored outcome.

Analysis is derived from the assignments and conversions observed by this
registry, either live or replayed from a delivered event log via ingest().
"""

import logging
import math
import random
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from beacon.core.defaults import DEFAULT_EXPERIMENTS
from beacon.core.exceptions import ExperimentConfigError, ExperimentLockedError
from beacon.core.models import (
    Assignment,
    ConversionRecord,
    Event,
    ExperimentDefinition,
    ExperimentResults,
    ExperimentStatus,
    MetricGoal,
    Recommendation,
    Variant,
    VariantResult,
)
from beacon.core.session import generate_session_id
from beacon.infrastructure.assignment_store import AssignmentStore
from beacon.utils.clock import now_ms
from beacon.utils.config import ExperimentSettings

if TYPE_CHECKING:
    from beacon.core.emitter import EventEmitter

logger = logging.getLogger(__name__)

ASSIGNED_EVENT = "ab_test_assigned"
CONVERSION_EVENT = "ab_test_conversion"

# z-score for the 95% interval used by the confidence figure
Z_95 = 1.96


# ==============================================================================
# Analysis Helpers
# ==============================================================================


def rate_confidence(conversion_rate: float, participants: int) -> float:
    """
    Precision of a conversion-rate estimate on a 0-100 scale.

    100 minus the half-width of the 95% normal interval around the rate,
    in percentage points. This is a stability indicator for the estimate,
    not a significance test between variants.
    """
    if participants <= 0:
        return 0.0
    p = conversion_rate / 100.0
    half_width = Z_95 * math.sqrt(p * (1.0 - p) / participants) * 100.0
    return round(max(0.0, min(100.0, 100.0 - half_width)), 2)


def select_variant(variants: list[Variant], draw: float) -> Variant:
    """
    Weighted selection.

    Args:
        variants: Variants in definition order
        draw: Uniform number in [0, 1)

    Returns:
        The first variant whose cumulative weight exceeds ``draw * total``
    """
    total = sum(v.weight for v in variants)
    target = draw * total
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if target < cumulative:
            return variant
    # Float rounding at the top of the range
    return [v for v in variants if v.weight > 0][-1]


# ==============================================================================
# Registry
# ==============================================================================


class ExperimentRegistry:
    """
    Registry of experiments with persisted, sticky assignments.

    Runtime calls (assign, get_variant_config, track_conversion, analyze)
    never raise. Registration calls raise ExperimentConfigError or
    ExperimentLockedError.
    """

    def __init__(
        self,
        emitter: "EventEmitter | None" = None,
        store: AssignmentStore | None = None,
        rng: random.Random | None = None,
        settings: ExperimentSettings | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the registry.

        Args:
            emitter: Sink for ab_test_assigned / ab_test_conversion events
            store: Assignment persistence. A local-only store if None.
            rng: Random source for traffic and variant draws
            settings: Thresholds for recommendations
            clock: Millisecond clock, injectable for tests
        """
        self._emitter = emitter
        self._store = store or AssignmentStore()
        self._rng = rng or random.Random()
        self._settings = settings or ExperimentSettings()
        self._clock = clock
        self._lock = threading.RLock()

        self._tests: dict[str, ExperimentDefinition] = {}
        self._schemas: dict[str, type[BaseModel]] = {}
        # test_id -> identity -> variant_id
        self._participants: dict[str, dict[str, str]] = defaultdict(dict)
        self._conversions: list[ConversionRecord] = []

    # ------------------------------------------------------------------
    # Registration and lifecycle
    # ------------------------------------------------------------------

    def create_test(
        self,
        definition: ExperimentDefinition | dict[str, Any],
        schema: type[BaseModel] | None = None,
    ) -> ExperimentDefinition:
        """
        Register an experiment in draft.

        Args:
            definition: Experiment definition (model or dict)
            schema: Optional pydantic model every variant config must satisfy

        Raises:
            ExperimentConfigError: Malformed, duplicate or schema-invalid definition
        """
        try:
            if isinstance(definition, ExperimentDefinition):
                definition = ExperimentDefinition.model_validate(definition.model_dump())
            else:
                definition = ExperimentDefinition.model_validate(definition)
        except ValidationError as e:
            raise ExperimentConfigError(f"Invalid experiment definition: {e}") from e

        if schema is not None:
            _check_configs(definition, schema)

        test = definition.model_copy(
            update={
                "status": ExperimentStatus.DRAFT,
                "start_date": definition.start_date or self._clock(),
                "end_date": None,
            }
        )
        with self._lock:
            if test.id in self._tests:
                raise ExperimentConfigError(f"Experiment already registered: {test.id}")
            self._tests[test.id] = test
            if schema is not None:
                self._schemas[test.id] = schema

        logger.info("Registered experiment %s (%d variants)", test.id, len(test.variants))
        return test

    def register_defaults(self) -> list[str]:
        """
        Register the built-in experiments that are not registered yet.

        Returns:
            Ids of the experiments added
        """
        added = []
        for definition in DEFAULT_EXPERIMENTS:
            if self.get_test(definition["id"]) is None:
                added.append(self.create_test(definition).id)
        return added

    def replace_variants(self, test_id: str, variants: list[Variant | dict]) -> ExperimentDefinition:
        """
        Replace the variants of a draft experiment.

        Raises:
            ExperimentConfigError: Unknown experiment or invalid variants
            ExperimentLockedError: The experiment has left draft
        """
        with self._lock:
            test = self._tests.get(test_id)
            if test is None:
                raise ExperimentConfigError(f"Unknown experiment: {test_id}")
            if test.status != ExperimentStatus.DRAFT:
                raise ExperimentLockedError(
                    f"Experiment {test_id} is {test.status.value}; variants are locked"
                )
            data = test.model_dump()
            data["variants"] = [
                v.model_dump() if isinstance(v, Variant) else v for v in variants
            ]
            try:
                updated = ExperimentDefinition.model_validate(data)
            except ValidationError as e:
                raise ExperimentConfigError(f"Invalid variants for {test_id}: {e}") from e
            schema = self._schemas.get(test_id)
            if schema is not None:
                _check_configs(updated, schema)
            self._tests[test_id] = updated
            return updated

    def start_test(self, test_id: str) -> bool:
        return self._transition(
            test_id, {ExperimentStatus.DRAFT}, ExperimentStatus.RUNNING, "start_date"
        )

    def pause_test(self, test_id: str) -> bool:
        return self._transition(test_id, {ExperimentStatus.RUNNING}, ExperimentStatus.PAUSED)

    def resume_test(self, test_id: str) -> bool:
        return self._transition(test_id, {ExperimentStatus.PAUSED}, ExperimentStatus.RUNNING)

    def stop_test(self, test_id: str) -> bool:
        return self._transition(
            test_id,
            {ExperimentStatus.RUNNING, ExperimentStatus.PAUSED},
            ExperimentStatus.COMPLETED,
            "end_date",
        )

    def _transition(
        self,
        test_id: str,
        allowed: set[ExperimentStatus],
        target: ExperimentStatus,
        stamp: str | None = None,
    ) -> bool:
        with self._lock:
            test = self._tests.get(test_id)
            if test is None or test.status not in allowed:
                logger.debug(
                    "Illegal transition for %s: %s -> %s",
                    test_id,
                    test.status.value if test else "unknown",
                    target.value,
                )
                return False
            update: dict[str, Any] = {"status": target}
            if stamp:
                update[stamp] = self._clock()
            self._tests[test_id] = test.model_copy(update=update)

        logger.info("Experiment %s is now %s", test_id, target.value)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_test(self, test_id: str) -> ExperimentDefinition | None:
        with self._lock:
            return self._tests.get(test_id)

    def all_tests(self) -> list[ExperimentDefinition]:
        with self._lock:
            return list(self._tests.values())

    def active_tests(self) -> list[ExperimentDefinition]:
        with self._lock:
            return [t for t in self._tests.values() if t.status == ExperimentStatus.RUNNING]

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(
        self, test_id: str, user_id: str | None = None, session_id: str | None = None
    ) -> Assignment | None:
        """
        Assign an identity to a variant, once.

        Returns:
            The (possibly pre-existing) assignment, or None when the experiment
            is unknown or not running, or the identity is excluded
        """
        try:
            with self._lock:
                test = self._tests.get(test_id)
                if test is None or test.status != ExperimentStatus.RUNNING:
                    return None

                session_id = session_id or generate_session_id()
                identity = user_id or session_id

                existing = self._store.get(test_id, identity)
                if existing is not None:
                    if existing.excluded:
                        return None
                    self._participants[test_id].setdefault(identity, existing.variant_id)
                    return existing

                traffic = test.targeting.traffic_percentage if test.targeting else None
                excluded = traffic is not None and self._rng.random() * 100 >= traffic
                variant_id = None if excluded else select_variant(test.variants, self._rng.random()).id
                assignment = self._store.save(
                    Assignment(
                        test_id=test_id,
                        variant_id=variant_id,
                        user_id=user_id,
                        session_id=session_id,
                        assigned_at=self._clock(),
                        excluded=excluded,
                    )
                )
                if assignment.excluded:
                    logger.debug("Identity %s excluded from %s by traffic targeting", identity, test_id)
                    return None
                self._participants[test_id].setdefault(identity, assignment.variant_id)
        except Exception as e:
            logger.error("Assignment failed for %s: %s", test_id, e)
            return None

        self._emit(
            ASSIGNED_EVENT,
            {
                "testId": test_id,
                "variantId": assignment.variant_id,
                "userId": user_id,
                "sessionId": assignment.session_id,
                "identity": assignment.identity,
            },
        )
        return assignment

    def get_assignment(
        self, test_id: str, user_id: str | None = None, session_id: str | None = None
    ) -> Assignment | None:
        """Pure lookup; exclusions are reported as no assignment."""
        identity = user_id or session_id
        if identity is None:
            return None
        assignment = self._store.get(test_id, identity)
        if assignment is None or assignment.excluded:
            return None
        return assignment

    def is_user_in_test(
        self, test_id: str, user_id: str | None = None, session_id: str | None = None
    ) -> bool:
        return self.get_assignment(test_id, user_id, session_id) is not None

    def get_variant_config(
        self,
        test_id: str,
        user_id: str | None = None,
        session_id: str | None = None,
        schema: type[BaseModel] | None = None,
    ) -> dict[str, Any] | BaseModel | None:
        """
        Config of the identity's assigned variant.

        Args:
            schema: Pydantic model to parse the config into. Defaults to the
                    schema registered with the experiment, if any.

        Returns:
            The config (dict, or schema instance), or None when unassigned
            or when the config does not satisfy the schema
        """
        assignment = self.get_assignment(test_id, user_id, session_id)
        if assignment is None:
            return None
        test = self.get_test(test_id)
        variant = test.get_variant(assignment.variant_id) if test else None
        if variant is None:
            return None

        schema = schema or self._schemas.get(test_id)
        if schema is None:
            return dict(variant.config)
        try:
            return schema.model_validate(variant.config)
        except ValidationError as e:
            logger.warning("Variant config for %s/%s is invalid: %s", test_id, variant.id, e)
            return None

    def active_flags(self, identity: str) -> dict[str, str]:
        """
        Variant ids of running experiments the identity is assigned to.

        Reads only assignments this process has already made or loaded, so
        it is safe to call on every tracked event.
        """
        running = [t.id for t in self.active_tests()]
        if not running:
            return {}
        assignments = self._store.get_for_identity(running, identity)
        return {
            test_id: a.variant_id
            for test_id, a in assignments.items()
            if not a.excluded and a.variant_id is not None
        }

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def track_conversion(
        self,
        test_id: str,
        metric: str,
        user_id: str | None = None,
        session_id: str | None = None,
        value: float | None = None,
    ) -> bool:
        """
        Record a conversion for the identity's variant.

        Returns:
            True if recorded, False when the identity has no assignment
        """
        assignment = self.get_assignment(test_id, user_id, session_id)
        if assignment is None:
            return False

        record = ConversionRecord(
            test_id=test_id,
            variant_id=assignment.variant_id,
            metric=metric,
            value=value,
            identity=assignment.identity,
            timestamp=self._clock(),
        )
        with self._lock:
            self._participants[test_id].setdefault(record.identity, record.variant_id)
            self._conversions.append(record)

        self._emit(
            CONVERSION_EVENT,
            {
                "testId": test_id,
                "variantId": assignment.variant_id,
                "metricName": metric,
                "value": value,
                "userId": user_id,
                "sessionId": session_id,
                "identity": assignment.identity,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def ingest(self, events: Iterable[Event]) -> int:
        """
        Rebuild assignments and conversions from delivered events.

        Events for unregistered experiments are skipped.

        Returns:
            Number of events applied
        """
        applied = 0
        with self._lock:
            for event in events:
                if event.name not in (ASSIGNED_EVENT, CONVERSION_EVENT):
                    continue
                props = event.properties
                test_id = props.get("testId")
                variant_id = props.get("variantId")
                identity = props.get("identity") or event.identity
                if test_id not in self._tests or not variant_id:
                    continue

                participants = self._participants[test_id]
                participants.setdefault(identity, variant_id)
                if event.name == CONVERSION_EVENT:
                    self._conversions.append(
                        ConversionRecord(
                            test_id=test_id,
                            variant_id=participants[identity],
                            metric=props.get("metricName") or "",
                            value=props.get("value"),
                            identity=identity,
                            timestamp=event.timestamp,
                        )
                    )
                applied += 1

        logger.debug("Ingested %d experiment events", applied)
        return applied

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, test_id: str) -> ExperimentResults | None:
        """
        Per-variant results and a recommendation.

        Returns:
            ExperimentResults, or None for an unknown experiment
        """
        with self._lock:
            test = self._tests.get(test_id)
            if test is None:
                return None
            participants = dict(self._participants.get(test_id, {}))
            conversions = [c for c in self._conversions if c.test_id == test_id]

        primary = test.primary_metric
        goal = primary.goal if primary else MetricGoal.INCREASE

        members: dict[str, set[str]] = defaultdict(set)
        for identity, variant_id in participants.items():
            members[variant_id].add(identity)

        converters: dict[str, set[str]] = defaultdict(set)
        totals: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        for c in conversions:
            totals[c.variant_id][c.metric] += c.value if c.value is not None else 1.0
            if primary is None or c.metric == primary.name:
                converters[c.variant_id].add(c.identity)

        results = []
        for variant in test.variants:
            n = len(members[variant.id])
            converted = len(converters[variant.id] & members[variant.id])
            rate = converted / n * 100 if n else 0.0
            results.append(
                VariantResult(
                    variant_id=variant.id,
                    participants=n,
                    conversions=converted,
                    conversion_rate=rate,
                    confidence=rate_confidence(rate, n),
                    metrics=dict(totals[variant.id]),
                )
            )

        total = sum(r.participants for r in results)
        recommendation, winner = self._recommend(results, total, goal)
        for r in results:
            r.is_winner = r.variant_id == winner

        return ExperimentResults(
            test_id=test_id,
            total_participants=total,
            variants=results,
            winner=winner,
            recommendation=recommendation,
        )

    def _recommend(
        self, results: list[VariantResult], total: int, goal: MetricGoal
    ) -> tuple[Recommendation, str | None]:
        settings = self._settings
        if total < settings.min_sample_size or not results:
            return Recommendation.CONTINUE, None

        sign = 1.0 if goal == MetricGoal.INCREASE else -1.0
        control, challengers = results[0], results[1:]

        def lift(r: VariantResult) -> float:
            if control.conversion_rate == 0:
                return math.inf if sign * r.conversion_rate > 0 else 0.0
            return sign * (r.conversion_rate - control.conversion_rate) / control.conversion_rate

        confident = [r for r in challengers if r.confidence >= settings.confidence_threshold]
        winners = [r for r in confident if lift(r) >= settings.min_relative_lift]
        if winners:
            best = max(winners, key=lift)
            return Recommendation.IMPLEMENT, best.variant_id

        all_confident = all(r.confidence >= settings.confidence_threshold for r in results)
        if all_confident and all(lift(r) <= 0 for r in challengers):
            return Recommendation.STOP, control.variant_id

        return Recommendation.CONTINUE, None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _emit(self, name: str, properties: dict[str, Any]) -> None:
        if self._emitter is not None:
            self._emitter.track(name, properties)


def _check_configs(definition: ExperimentDefinition, schema: type[BaseModel]) -> None:
    for variant in definition.variants:
        try:
            schema.model_validate(variant.config)
        except ValidationError as e:
            raise ExperimentConfigError(
                f"Variant {variant.id} of {definition.id} does not match its config schema: {e}"
            ) from e
