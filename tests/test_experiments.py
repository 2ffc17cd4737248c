# ==============================================================================
# Tests for ExperimentRegistry — experiments.py
# ==============================================================================
"""
Tests for experiment registration, lifecycle, sticky assignment, variant
configs, conversions, replay and analysis.
"""

import random
from collections import Counter

import pytest
from pydantic import BaseModel

from beacon.core.exceptions import ExperimentConfigError, ExperimentLockedError
from beacon.core.experiments import (
    ASSIGNED_EVENT,
    CONVERSION_EVENT,
    ExperimentRegistry,
    rate_confidence,
    select_variant,
)
from beacon.core.models import (
    Event,
    ExperimentStatus,
    Recommendation,
    Variant,
)
from beacon.infrastructure.assignment_store import AssignmentStore
from beacon.utils.config import ExperimentSettings

from tests.conftest import START_MS

# ==============================================================================
# Helpers
# ==============================================================================


def _definition(
    test_id: str = "checkout",
    weights: tuple = (50, 50),
    traffic: float | None = None,
    goal: str = "increase",
) -> dict:
    definition = {
        "id": test_id,
        "name": "Checkout Button",
        "variants": [
            {"id": "control" if i == 0 else f"variant-{i}", "weight": w, "config": {"color": f"c{i}"}}
            for i, w in enumerate(weights)
        ],
        "metrics": [{"name": "purchase", "type": "conversion", "goal": goal}],
    }
    if traffic is not None:
        definition["targeting"] = {"trafficPercentage": traffic}
    return definition


def _assigned(test_id: str, variant_id: str, identity: str) -> Event:
    return Event(
        name=ASSIGNED_EVENT,
        properties={"testId": test_id, "variantId": variant_id, "identity": identity},
        session_id=identity,
        timestamp=START_MS,
    )


def _converted(test_id: str, variant_id: str, identity: str, value=None) -> Event:
    return Event(
        name=CONVERSION_EVENT,
        properties={
            "testId": test_id,
            "variantId": variant_id,
            "metricName": "purchase",
            "value": value,
            "identity": identity,
        },
        session_id=identity,
        timestamp=START_MS + 1,
    )


def _population(test_id: str, variant_id: str, participants: int, converted: int) -> list[Event]:
    events = []
    for i in range(participants):
        identity = f"{variant_id}-{i}"
        events.append(_assigned(test_id, variant_id, identity))
        if i < converted:
            events.append(_converted(test_id, variant_id, identity))
    return events


def _running(registry, **kwargs):
    test = registry.create_test(_definition(**kwargs))
    registry.start_test(test.id)
    return test.id


def _emitted(queue, name: str) -> list[Event]:
    return [e for e in queue.pending() if e.name == name]


class ScriptedRandom(random.Random):
    """Random source that returns a fixed sequence of draws."""

    def __init__(self, *draws: float):
        super().__init__(0)
        self.draws = list(draws)

    def random(self) -> float:
        return self.draws.pop(0)


# ==============================================================================
# Pure helpers
# ==============================================================================


class TestSelectVariant:
    """Tests for weighted variant selection."""

    def test_70_30_split(self):
        """Over 10,000 draws a 70/30 split lands within 5 points."""
        variants = [Variant(id="a", weight=70), Variant(id="b", weight=30)]
        rng = random.Random(42)
        counts = Counter(select_variant(variants, rng.random()).id for _ in range(10_000))
        assert 6_500 <= counts["a"] <= 7_500
        assert 2_500 <= counts["b"] <= 3_500

    def test_boundaries(self):
        variants = [Variant(id="a", weight=50), Variant(id="b", weight=50)]
        assert select_variant(variants, 0.0).id == "a"
        assert select_variant(variants, 0.4999).id == "a"
        assert select_variant(variants, 0.5).id == "b"
        assert select_variant(variants, 0.9999).id == "b"

    def test_zero_weight_never_selected(self):
        variants = [Variant(id="a", weight=0), Variant(id="b", weight=10)]
        assert select_variant(variants, 0.0).id == "b"
        assert select_variant(variants, 0.99).id == "b"


class TestRateConfidence:
    def test_no_participants(self):
        assert rate_confidence(50.0, 0) == 0.0

    def test_known_value(self):
        # 1.96 * sqrt(0.25 / 100) * 100 = 9.8
        assert rate_confidence(50.0, 100) == pytest.approx(90.2)

    def test_degenerate_rates(self):
        assert rate_confidence(0.0, 10) == 100.0
        assert rate_confidence(100.0, 10) == 100.0

    def test_clamped_to_zero(self):
        assert rate_confidence(50.0, 1) == 2.0
        assert rate_confidence(50.0, 1) >= 0.0


# ==============================================================================
# Registration and lifecycle
# ==============================================================================


class TestRegistration:
    """Tests for create_test, register_defaults and replace_variants."""

    def test_create_stores_draft(self, registry):
        test = registry.create_test(_definition())
        assert test.status == ExperimentStatus.DRAFT
        assert test.start_date == START_MS
        assert registry.get_test("checkout") == test

    def test_duplicate_rejected(self, registry):
        registry.create_test(_definition())
        with pytest.raises(ExperimentConfigError):
            registry.create_test(_definition())

    def test_no_variants_rejected(self, registry):
        definition = _definition()
        definition["variants"] = []
        with pytest.raises(ExperimentConfigError):
            registry.create_test(definition)

    def test_all_zero_weights_rejected(self, registry):
        with pytest.raises(ExperimentConfigError):
            registry.create_test(_definition(weights=(0, 0)))

    def test_duplicate_variant_ids_rejected(self, registry):
        definition = _definition()
        definition["variants"][1]["id"] = "control"
        with pytest.raises(ExperimentConfigError):
            registry.create_test(definition)

    def test_register_defaults_idempotent(self, registry):
        added = registry.register_defaults()
        assert added == ["homepage-layout", "search-experience", "recommendation-algorithm"]
        assert registry.register_defaults() == []
        assert len(registry.all_tests()) == 3

    def test_replace_variants_in_draft(self, registry):
        registry.create_test(_definition())
        updated = registry.replace_variants(
            "checkout", [{"id": "control", "weight": 80}, {"id": "variant-1", "weight": 20}]
        )
        assert [v.weight for v in updated.variants] == [80, 20]

    def test_replace_variants_locked_after_start(self, registry):
        test_id = _running(registry)
        with pytest.raises(ExperimentLockedError):
            registry.replace_variants(test_id, [{"id": "control", "weight": 1}])


class TestLifecycle:
    """Tests for the draft -> running -> paused -> completed state machine."""

    def test_full_lifecycle(self, registry, clock):
        registry.create_test(_definition())
        assert registry.start_test("checkout") is True
        assert registry.get_test("checkout").status == ExperimentStatus.RUNNING
        assert registry.pause_test("checkout") is True
        assert registry.resume_test("checkout") is True
        clock.advance(1_000)
        assert registry.stop_test("checkout") is True

        test = registry.get_test("checkout")
        assert test.status == ExperimentStatus.COMPLETED
        assert test.end_date == START_MS + 1_000

    def test_illegal_transitions(self, registry):
        registry.create_test(_definition())
        assert registry.pause_test("checkout") is False
        assert registry.resume_test("checkout") is False
        assert registry.stop_test("checkout") is False
        registry.start_test("checkout")
        assert registry.start_test("checkout") is False

    def test_stop_from_paused(self, registry):
        test_id = _running(registry)
        registry.pause_test(test_id)
        assert registry.stop_test(test_id) is True

    def test_completed_is_final(self, registry):
        test_id = _running(registry)
        registry.stop_test(test_id)
        assert registry.start_test(test_id) is False
        assert registry.resume_test(test_id) is False

    def test_unknown_test(self, registry):
        assert registry.start_test("missing") is False

    def test_active_tests(self, registry):
        _running(registry)
        registry.create_test(_definition(test_id="draft-only"))
        assert [t.id for t in registry.active_tests()] == ["checkout"]


# ==============================================================================
# Assignment
# ==============================================================================


class TestAssignment:
    """Tests for sticky assignment and traffic targeting."""

    def test_assign_is_idempotent(self, registry, queue):
        test_id = _running(registry)
        first = registry.assign(test_id, user_id="u1")
        for _ in range(5):
            assert registry.assign(test_id, user_id="u1").variant_id == first.variant_id
        assert len(_emitted(queue, ASSIGNED_EVENT)) == 1

    def test_assignment_event_properties(self, registry, queue):
        test_id = _running(registry)
        assignment = registry.assign(test_id, user_id="u1", session_id="s1")
        event = _emitted(queue, ASSIGNED_EVENT)[0]
        assert event.properties["testId"] == test_id
        assert event.properties["variantId"] == assignment.variant_id
        assert event.properties["identity"] == "u1"

    def test_session_identity_when_anonymous(self, registry):
        test_id = _running(registry)
        assignment = registry.assign(test_id, session_id="anon-1")
        assert assignment.identity == "anon-1"
        assert registry.is_user_in_test(test_id, session_id="anon-1")

    def test_assignment_survives_new_registry(self, registry, memory_cache):
        """A second registry sharing the cache returns the stored variant."""
        test_id = _running(registry)
        first = registry.assign(test_id, user_id="u1")

        other = ExperimentRegistry(
            store=AssignmentStore(memory_cache), rng=random.Random(999)
        )
        other.create_test(_definition())
        other.start_test(test_id)
        for _ in range(10):
            assert other.assign(test_id, user_id="u1").variant_id == first.variant_id

    def test_not_running_returns_none(self, registry):
        registry.create_test(_definition())
        assert registry.assign("checkout", user_id="u1") is None
        registry.start_test("checkout")
        registry.pause_test("checkout")
        assert registry.assign("checkout", user_id="u1") is None

    def test_unknown_test_returns_none(self, registry):
        assert registry.assign("missing", user_id="u1") is None

    def test_zero_traffic_excludes_sticky(self, registry, queue):
        test_id = _running(registry, traffic=0)
        assert registry.assign(test_id, user_id="u1") is None
        assert registry.assign(test_id, user_id="u1") is None
        assert registry.is_user_in_test(test_id, user_id="u1") is False
        assert _emitted(queue, ASSIGNED_EVENT) == []

    def test_partial_traffic_exclusion_is_sticky(self, emitter, memory_cache, queue):
        """An excluded identity stays out even when a later draw would include it."""
        rng = ScriptedRandom(0.9, 0.1, 0.1)
        registry = ExperimentRegistry(emitter, store=AssignmentStore(memory_cache), rng=rng)
        test_id = _running(registry, traffic=50)

        assert registry.assign(test_id, user_id="u1") is None
        assert registry.assign(test_id, user_id="u1") is None
        assert rng.draws == [0.1, 0.1]
        assert _emitted(queue, ASSIGNED_EVENT) == []

        other = ExperimentRegistry(store=AssignmentStore(memory_cache), rng=ScriptedRandom(0.1, 0.1))
        _running(other, traffic=50)
        assert other.assign(test_id, user_id="u1") is None

    def test_concurrent_first_writes_agree(self, memory_cache):
        """Two stores that both missed end up with the variant written first."""
        first = ExperimentRegistry(store=AssignmentStore(memory_cache), rng=ScriptedRandom(0.1))
        second = ExperimentRegistry(store=AssignmentStore(memory_cache), rng=ScriptedRandom(0.9))
        _running(first)
        _running(second)

        assert first.get_assignment("checkout", user_id="u1") is None
        assert second.assign("checkout", user_id="u1").variant_id == "variant-1"
        assert first.assign("checkout", user_id="u1").variant_id == "variant-1"

        fresh = AssignmentStore(memory_cache)
        assert fresh.get("checkout", "u1").variant_id == "variant-1"

    def test_assigned_split_follows_weights(self):
        registry = ExperimentRegistry(rng=random.Random(42))
        test_id = _running(registry, weights=(70, 30))
        counts = Counter(
            registry.assign(test_id, user_id=f"user-{i}").variant_id for i in range(10_000)
        )
        assert 6_800 <= counts["control"] <= 7_200
        assert counts["control"] + counts["variant-1"] == 10_000

    def test_full_traffic_includes(self, registry):
        test_id = _running(registry, traffic=100)
        assert registry.assign(test_id, user_id="u1") is not None

    def test_paused_keeps_existing_assignment(self, registry):
        test_id = _running(registry)
        assignment = registry.assign(test_id, user_id="u1")
        registry.pause_test(test_id)
        assert registry.get_assignment(test_id, user_id="u1").variant_id == assignment.variant_id

    def test_active_flags(self, registry, emitter):
        test_id = _running(registry)
        assignment = registry.assign(test_id, user_id="u1")
        assert registry.active_flags("u1") == {test_id: assignment.variant_id}
        assert registry.active_flags("nobody") == {}

    def test_flags_attached_to_events(self, registry, emitter):
        test_id = _running(registry)
        emitter.add_context_provider(registry.active_flags)
        emitter.set_user_id("u1")
        assignment = registry.assign(test_id, user_id="u1")
        event = emitter.track("x")
        assert event.context.experiments == {test_id: assignment.variant_id}


# ==============================================================================
# Variant configs
# ==============================================================================


class ButtonConfig(BaseModel):
    color: str


class TestVariantConfig:
    def test_unassigned_returns_none(self, registry):
        test_id = _running(registry)
        assert registry.get_variant_config(test_id, user_id="u1") is None

    def test_returns_copy_of_config(self, registry):
        test_id = _running(registry)
        assignment = registry.assign(test_id, user_id="u1")
        config = registry.get_variant_config(test_id, user_id="u1")
        expected = registry.get_test(test_id).get_variant(assignment.variant_id).config
        assert config == expected
        config["color"] = "mutated"
        assert registry.get_test(test_id).get_variant(assignment.variant_id).config == expected

    def test_schema_validated_at_registration(self, registry):
        definition = _definition()
        definition["variants"][1]["config"] = {"size": 3}
        with pytest.raises(ExperimentConfigError):
            registry.create_test(definition, schema=ButtonConfig)

    def test_schema_instance_returned(self, registry):
        registry.create_test(_definition(), schema=ButtonConfig)
        registry.start_test("checkout")
        registry.assign("checkout", user_id="u1")
        config = registry.get_variant_config("checkout", user_id="u1")
        assert isinstance(config, ButtonConfig)

    def test_invalid_config_for_explicit_schema(self, registry):
        class SizeConfig(BaseModel):
            size: int

        test_id = _running(registry)
        registry.assign(test_id, user_id="u1")
        assert registry.get_variant_config(test_id, user_id="u1", schema=SizeConfig) is None


# ==============================================================================
# Conversions and replay
# ==============================================================================


class TestConversions:
    def test_conversion_requires_assignment(self, registry, queue):
        test_id = _running(registry)
        assert registry.track_conversion(test_id, "purchase", user_id="u1") is False
        assert _emitted(queue, CONVERSION_EVENT) == []

    def test_conversion_recorded_and_emitted(self, registry, queue):
        test_id = _running(registry)
        assignment = registry.assign(test_id, user_id="u1")
        assert registry.track_conversion(test_id, "purchase", user_id="u1", value=19.99) is True

        event = _emitted(queue, CONVERSION_EVENT)[0]
        assert event.properties["metricName"] == "purchase"
        assert event.properties["value"] == 19.99
        assert event.properties["variantId"] == assignment.variant_id

        results = registry.analyze(test_id)
        variant = next(v for v in results.variants if v.variant_id == assignment.variant_id)
        assert variant.participants == 1
        assert variant.conversions == 1
        assert variant.conversion_rate == 100.0
        assert variant.metrics == {"purchase": 19.99}

    def test_ingest_skips_unknown_tests(self, registry):
        assert registry.ingest([_assigned("missing", "control", "u1")]) == 0

    def test_ingest_ignores_other_events(self, registry):
        _running(registry)
        other = Event(name="page_view", session_id="s1", timestamp=START_MS)
        assert registry.ingest([other]) == 0

    def test_ingest_uses_identity_property(self, registry):
        test_id = _running(registry)
        registry.ingest([_assigned(test_id, "control", "u1"), _converted(test_id, "control", "u1")])
        results = registry.analyze(test_id)
        assert results.variants[0].participants == 1
        assert results.variants[0].conversions == 1

    def test_replayed_log_matches_live_analysis(self, registry, queue):
        """Emitted events replayed into a fresh registry give the same results."""
        test_id = _running(registry)
        for i in range(20):
            registry.assign(test_id, user_id=f"u{i}")
            if i % 3 == 0:
                registry.track_conversion(test_id, "purchase", user_id=f"u{i}")
        live = registry.analyze(test_id)

        fresh = ExperimentRegistry()
        fresh.create_test(_definition())
        fresh.ingest(queue.pending())
        replayed = fresh.analyze(test_id)

        assert [v.participants for v in replayed.variants] == [v.participants for v in live.variants]
        assert [v.conversions for v in replayed.variants] == [v.conversions for v in live.variants]


# ==============================================================================
# Analysis
# ==============================================================================


class TestAnalysis:
    """Tests for per-variant results and recommendations."""

    def _registry(self, **settings) -> ExperimentRegistry:
        return ExperimentRegistry(settings=ExperimentSettings(**settings))

    def test_unknown_test(self, registry):
        assert registry.analyze("missing") is None

    def test_empty_results(self, registry):
        test_id = _running(registry)
        results = registry.analyze(test_id)
        assert results.total_participants == 0
        assert [v.participants for v in results.variants] == [0, 0]
        assert results.recommendation == Recommendation.CONTINUE
        assert results.winner is None

    def test_below_min_sample_continues(self):
        registry = self._registry()
        registry.create_test(_definition())
        registry.ingest(_population("checkout", "control", 25, 2))
        registry.ingest(_population("checkout", "variant-1", 25, 20))
        assert registry.analyze("checkout").recommendation == Recommendation.CONTINUE

    def test_confident_lift_implements(self):
        registry = self._registry()
        registry.create_test(_definition())
        registry.ingest(_population("checkout", "control", 1000, 100))
        registry.ingest(_population("checkout", "variant-1", 1000, 200))

        results = registry.analyze("checkout")
        assert results.total_participants == 2000
        assert results.variants[0].conversion_rate == pytest.approx(10.0)
        assert results.variants[1].conversion_rate == pytest.approx(20.0)
        assert results.recommendation == Recommendation.IMPLEMENT
        assert results.winner == "variant-1"
        assert results.variants[1].is_winner is True
        assert results.variants[0].is_winner is False

    def test_no_lift_stops_with_control(self):
        registry = self._registry()
        registry.create_test(_definition())
        registry.ingest(_population("checkout", "control", 1000, 200))
        registry.ingest(_population("checkout", "variant-1", 1000, 100))

        results = registry.analyze("checkout")
        assert results.recommendation == Recommendation.STOP
        assert results.winner == "control"

    def test_low_confidence_continues(self):
        registry = self._registry()
        registry.create_test(_definition())
        registry.ingest(_population("checkout", "control", 60, 30))
        registry.ingest(_population("checkout", "variant-1", 60, 30))

        results = registry.analyze("checkout")
        assert results.variants[0].confidence < 95.0
        assert results.recommendation == Recommendation.CONTINUE

    def test_decrease_goal_flips_lift(self):
        registry = self._registry()
        registry.create_test(_definition(goal="decrease"))
        registry.ingest(_population("checkout", "control", 1000, 200))
        registry.ingest(_population("checkout", "variant-1", 1000, 100))

        results = registry.analyze("checkout")
        assert results.recommendation == Recommendation.IMPLEMENT
        assert results.winner == "variant-1"

    def test_metric_totals_count_missing_values_as_one(self):
        registry = self._registry()
        registry.create_test(_definition())
        registry.ingest(
            [
                _assigned("checkout", "control", "u1"),
                _converted("checkout", "control", "u1", value=25.0),
                _assigned("checkout", "control", "u2"),
                _converted("checkout", "control", "u2"),
            ]
        )
        assert registry.analyze("checkout").variants[0].metrics == {"purchase": 26.0}
