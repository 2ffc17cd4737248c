# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Domain logic for tracking, experiments, funnels and cohorts.

This module exports:
- Domain models (Event, Session, ExperimentDefinition, ...)
- Registration exceptions
- Session bookkeeping (SessionTracker)

The engines live in their own modules (emitter, experiments, funnels,
cohorts) and are composed by beacon.client.Beacon.
"""

from beacon.core.exceptions import (
    BeaconError,
    ExperimentConfigError,
    ExperimentLockedError,
    FunnelConfigError,
)
from beacon.core.models import (
    Assignment,
    CohortAnalysisResult,
    Event,
    EventContext,
    ExperimentDefinition,
    ExperimentResults,
    ExperimentStatus,
    FunnelDefinition,
    FunnelResult,
    Recommendation,
    Session,
    Trend,
    Variant,
)
from beacon.core.session import SessionTracker

__all__ = [
    # Exceptions
    "BeaconError",
    "ExperimentConfigError",
    "ExperimentLockedError",
    "FunnelConfigError",
    # Models
    "Assignment",
    "CohortAnalysisResult",
    "Event",
    "EventContext",
    "ExperimentDefinition",
    "ExperimentResults",
    "ExperimentStatus",
    "FunnelDefinition",
    "FunnelResult",
    "Recommendation",
    "Session",
    "Trend",
    "Variant",
    # Session
    "SessionTracker",
]
