# ==============================================================================
# Beacon Domain Models
# ==============================================================================
"""
Pydantic models for events, sessions, experiments, funnels and cohorts.

These models are used for:
- Validating experiment and funnel definitions at registration time
- Serializing event batches and session snapshots for the collector
- Type safety for analysis results handed to the UI layer

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``). This module has no external dependencies
beyond Pydantic.
"""

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

RETENTION_HORIZONS = (1, 3, 7, 14, 30, 90)


class BeaconModel(BaseModel):
    """Base model: camelCase aliases on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_message(self) -> dict:
        """Serialize for JSON transport."""
        return self.model_dump(by_alias=True, mode="json")


# ==============================================================================
# Enumerations
# ==============================================================================


class ExperimentStatus(str, Enum):
    """Experiment lifecycle states."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class MetricType(str, Enum):
    CONVERSION = "conversion"
    ENGAGEMENT = "engagement"
    REVENUE = "revenue"


class MetricGoal(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class Recommendation(str, Enum):
    """Action suggested by experiment analysis."""

    IMPLEMENT = "implement"
    CONTINUE = "continue"
    STOP = "stop"


class Trend(str, Enum):
    """Direction of day-7 retention across recent cohorts."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


# ==============================================================================
# Events and Sessions
# ==============================================================================


class Viewport(BeaconModel):
    width: int
    height: int


class EventContext(BeaconModel):
    """
    Contextual fields attached to every event by the EventEmitter.

    Attributes:
        route: Application route (path) the event fired on
        url: Full URL, when known
        device_class: Coarse device class (desktop, mobile, tablet)
        user_agent: Raw user agent string
        locale: Visitor locale, e.g. ``en-US``
        connection_type: Network connection type reported by the host
        viewport: Viewport dimensions
        referrer: Session referrer
        experiments: Active experiment assignments (test id -> variant id)
    """

    route: str | None = None
    url: str | None = None
    device_class: str | None = None
    user_agent: str | None = None
    locale: str | None = None
    connection_type: str | None = None
    viewport: Viewport | None = None
    referrer: str | None = None
    experiments: dict[str, str] = Field(default_factory=dict)


class Event(BeaconModel):
    """
    A single tracked event. Immutable once created.

    Attributes:
        name: Event name (e.g. ``page_view``, ``ab_test_assigned``)
        properties: Caller-supplied properties
        session_id: Session the event belongs to
        user_id: Authenticated user, if any
        timestamp: Unix timestamp in milliseconds
        context: Enrichment added by the emitter
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    properties: dict[str, Any] = Field(default_factory=dict)
    session_id: str
    user_id: str | None = None
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")
    context: EventContext = Field(default_factory=EventContext)

    @property
    def identity(self) -> str:
        """User id when authenticated, otherwise the session id."""
        return self.user_id or self.session_id

    @classmethod
    def from_message(cls, data: dict) -> "Event":
        """Deserialize an event from its wire form."""
        return cls.model_validate(data)


class Session(BeaconModel):
    """
    Per-lifetime session record owned by the SessionTracker.

    Invariants: ``last_activity >= start_time`` and ``events`` equals the
    number of tracked events in this lifetime.
    """

    session_id: str
    user_id: str | None = None
    start_time: int
    last_activity: int
    page_views: int = 0
    events: int = 0
    referrer: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    @property
    def duration(self) -> int:
        """Session duration in milliseconds."""
        return self.last_activity - self.start_time


# ==============================================================================
# Experiments
# ==============================================================================


class Variant(BeaconModel):
    """One arm of an experiment. Weights are relative."""

    id: str = Field(..., min_length=1)
    name: str = ""
    weight: float = Field(..., ge=0, le=100)
    config: dict[str, Any] = Field(default_factory=dict)


class Targeting(BeaconModel):
    traffic_percentage: float | None = Field(default=None, ge=0, le=100)
    segments: list[str] = Field(default_factory=list)
    user_properties: dict[str, Any] = Field(default_factory=dict)


class ExperimentMetric(BeaconModel):
    name: str
    type: MetricType = MetricType.CONVERSION
    goal: MetricGoal = MetricGoal.INCREASE


class ExperimentDefinition(BeaconModel):
    """
    A controlled experiment.

    The first variant is treated as the control arm during analysis.
    """

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    variants: list[Variant]
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: int | None = None
    end_date: int | None = None
    targeting: Targeting | None = None
    metrics: list[ExperimentMetric] = Field(default_factory=list)

    @field_validator("variants")
    @classmethod
    def _check_variants(cls, variants: list[Variant]) -> list[Variant]:
        if not variants:
            raise ValueError("experiment must define at least one variant")
        ids = [v.id for v in variants]
        if len(set(ids)) != len(ids):
            raise ValueError(f"variant ids must be unique: {ids}")
        if sum(v.weight for v in variants) <= 0:
            raise ValueError("variant weights must not all be zero")
        return variants

    @property
    def total_weight(self) -> float:
        return sum(v.weight for v in self.variants)

    @property
    def control(self) -> Variant:
        return self.variants[0]

    @property
    def primary_metric(self) -> ExperimentMetric | None:
        return self.metrics[0] if self.metrics else None

    def get_variant(self, variant_id: str) -> Variant | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class Assignment(BeaconModel):
    """
    A (test, identity) assignment.

    ``excluded`` marks the sticky sentinel stored when traffic targeting
    left the identity out of the experiment.
    """

    test_id: str
    variant_id: str | None = None
    user_id: str | None = None
    session_id: str
    assigned_at: int
    excluded: bool = False

    @property
    def identity(self) -> str:
        return self.user_id or self.session_id


class ConversionRecord(BeaconModel):
    """One reported conversion, attributed to the identity's variant."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    variant_id: str
    metric: str
    value: float | None = None
    identity: str
    timestamp: int


class VariantResult(BeaconModel):
    variant_id: str
    participants: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    confidence: float = 0.0
    is_winner: bool = False
    metrics: dict[str, float] = Field(default_factory=dict)


class ExperimentResults(BeaconModel):
    test_id: str
    total_participants: int = 0
    variants: list[VariantResult] = Field(default_factory=list)
    winner: str | None = None
    recommendation: Recommendation = Recommendation.CONTINUE


# ==============================================================================
# Funnels
# ==============================================================================


class FunnelStep(BeaconModel):
    name: str = Field(..., min_length=1)
    event: str = Field(..., min_length=1)
    properties: dict[str, Any] = Field(default_factory=dict)


class FunnelDefinition(BeaconModel):
    """
    Ordered funnel steps measured within a time window.

    Attributes:
        name: Human-readable funnel name
        steps: Ordered steps
        time_window: Default analysis window in milliseconds
        strict_order: Only count a step reached after the previous one
    """

    name: str
    steps: list[FunnelStep]
    time_window: int = Field(..., gt=0, description="Window in milliseconds")
    strict_order: bool = False

    @model_validator(mode="after")
    def _check_steps(self) -> "FunnelDefinition":
        if not self.steps:
            raise ValueError("funnel must define at least one step")
        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            raise ValueError(f"funnel step names must be unique: {names}")
        return self

    @property
    def final_step(self) -> FunnelStep:
        return self.steps[-1]

    def get_step(self, step_name: str) -> FunnelStep | None:
        for step in self.steps:
            if step.name == step_name:
                return step
        return None


class FunnelStepRecord(BeaconModel):
    """One recorded step completion. Append-only."""

    model_config = ConfigDict(frozen=True)

    funnel: str
    step_name: str
    event: str
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    user_id: str | None = None
    session_id: str

    @property
    def identity(self) -> str:
        return self.user_id or self.session_id


class StepConversion(BeaconModel):
    step_name: str
    users: int = 0
    conversion_rate: float = 0.0
    dropoff_rate: float = 0.0


class TimeRange(BeaconModel):
    start: int
    end: int


class FunnelResult(BeaconModel):
    funnel_name: str
    total_users: int = 0
    step_conversions: list[StepConversion] = Field(default_factory=list)
    overall_conversion_rate: float = 0.0
    average_time_to_complete: float = 0.0
    time_range: TimeRange


# ==============================================================================
# Cohorts
# ==============================================================================


class UserActivityRecord(BeaconModel):
    """Aggregate activity for one user on one calendar day."""

    user_id: str
    day: date = Field(..., alias="date")
    events: int = 0
    sessions: int = 0
    duration: float = Field(default=0.0, description="Active time in seconds")

    @property
    def is_active(self) -> bool:
        return self.events > 0 or self.sessions > 0


class CohortRetention(BeaconModel):
    day1: float = 0.0
    day3: float = 0.0
    day7: float = 0.0
    day14: float = 0.0
    day30: float = 0.0
    day90: float = 0.0


class CohortEngagement(BeaconModel):
    average_sessions: float = 0.0
    average_events: float = 0.0
    average_session_duration: float = 0.0


class CohortData(BeaconModel):
    cohort_date: date
    cohort_week: str
    total_users: int = 0
    retention: CohortRetention = Field(default_factory=CohortRetention)
    engagement: CohortEngagement = Field(default_factory=CohortEngagement)


class AverageRetention(BeaconModel):
    day1: float = 0.0
    day7: float = 0.0
    day30: float = 0.0


class CohortSummary(BeaconModel):
    average_retention: AverageRetention = Field(default_factory=AverageRetention)
    best_performing_cohort: date | None = None
    worst_performing_cohort: date | None = None
    trend: Trend = Trend.STABLE


class CohortAnalysisResult(BeaconModel):
    cohorts: list[CohortData] = Field(default_factory=list)
    summary: CohortSummary = Field(default_factory=CohortSummary)
