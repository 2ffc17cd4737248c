# ==============================================================================
# Shared Utilities for CLI Commands
# ==============================================================================
"""
Shared utilities, constants, and helper functions used across CLI command modules.

This module provides:
- ANSI color codes and box-drawing characters
- Box drawing helpers for formatted output
- Event log replay into fresh analysis engines
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

from beacon.core.cohorts import CohortEngine
from beacon.core.exceptions import ExperimentConfigError, FunnelConfigError
from beacon.core.experiments import ASSIGNED_EVENT, CONVERSION_EVENT, ExperimentRegistry
from beacon.core.funnels import FunnelEngine
from beacon.core.models import Event, FunnelDefinition, FunnelStep
from beacon.infrastructure.collectors.file import read_event_log
from beacon.utils.clock import parse_date
from beacon.utils.config import get_settings

logger = logging.getLogger(__name__)

# ==============================================================================
# Constants
# ==============================================================================

# Box drawing width (unified for all commands)
BOX_WIDTH = 68

_ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


# ==============================================================================
# ANSI Colors and Box Drawing
# ==============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    # Colors
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Bright colors
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


class Box:
    """Unicode box-drawing characters."""

    H = "─"  # horizontal
    V = "│"  # vertical
    TL = "┌"  # top-left
    TR = "┐"  # top-right
    BL = "└"  # bottom-left
    BR = "┘"  # bottom-right
    LT = "├"  # left-tee
    RT = "┤"  # right-tee


class Icons:
    """Status icons using Unicode symbols."""

    CHECK = "✓"
    CROSS = "✗"
    WARN = "!"
    BULLET = "•"


# Module-level aliases for convenience
C, B, I = Colors, Box, Icons


def _visible_len(s: str) -> int:
    """Calculate visible length of string, ignoring ANSI escape codes."""
    return len(_ANSI_ESCAPE_PATTERN.sub("", s))


def _box_header(title: str, width: int = BOX_WIDTH) -> str:
    """Create a single-line box header."""
    inner_width = width - 2
    title_padded = f" {title} "
    left_bar = (inner_width - len(title_padded)) // 2
    right_bar = inner_width - left_bar - len(title_padded)
    return (
        f"{C.CYAN}{B.TL}{B.H * left_bar}{C.BOLD}{C.WHITE}{title_padded}"
        f"{C.RESET}{C.CYAN}{B.H * right_bar}{B.TR}{C.RESET}"
    )


def _section_header(title: str, width: int = BOX_WIDTH) -> str:
    """Create a section header inside a box."""
    inner_width = width - 2
    title_padded = f" {title} "
    bar_len = inner_width - len(title_padded) - 1  # -1 for the first H after LT
    return (
        f"{C.CYAN}{B.LT}{B.H}{C.BOLD}{title_padded}{C.RESET}{C.CYAN}{B.H * bar_len}{B.RT}{C.RESET}"
    )


def _box_line(content: str, width: int = BOX_WIDTH) -> str:
    """Create a line inside the box with proper padding to right border."""
    inner_width = width - 2
    padding = inner_width - _visible_len(content)
    return f"{C.CYAN}{B.V}{C.RESET}{content}{' ' * padding}{C.CYAN}{B.V}{C.RESET}"


def _empty_line(width: int = BOX_WIDTH) -> str:
    """Create an empty line inside the box."""
    return f"{C.CYAN}{B.V}{' ' * (width - 2)}{B.V}{C.RESET}"


def _box_bottom(width: int = BOX_WIDTH) -> str:
    """Create a box bottom border."""
    return f"{C.CYAN}{B.BL}{B.H * (width - 2)}{B.BR}{C.RESET}"


# ==============================================================================
# Date Helpers
# ==============================================================================


def day_start_ms(day: date) -> int:
    """Unix milliseconds at 00:00 UTC of ``day``."""
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp() * 1000)


def day_end_ms(day: date) -> int:
    """Unix milliseconds of the last millisecond of ``day`` (UTC)."""
    return day_start_ms(day + timedelta(days=1)) - 1


def parse_date_option(value: str | None) -> date | None:
    """Parse an optional ``YYYY-MM-DD`` CLI option; raises ValueError when malformed."""
    return parse_date(value) if value else None


# ==============================================================================
# Event Log Replay
# ==============================================================================


@dataclass
class Replay:
    """Analysis engines rebuilt from a delivered event log."""

    path: Path
    experiments: ExperimentRegistry
    funnels: FunnelEngine
    cohorts: CohortEngine
    event_counts: dict[str, int] = field(default_factory=dict)
    first_timestamp: int | None = None
    last_timestamp: int | None = None

    @property
    def total_events(self) -> int:
        return sum(self.event_counts.values())


def resolve_log_path(log: Path | None) -> Path:
    """The ``--log`` option, or the configured event log."""
    return log if log is not None else get_settings().tracker.event_log_path


def infer_experiments(registry: ExperimentRegistry, events: list[Event]) -> list[str]:
    """
    Register experiments that appear in the log but are not registered.

    Variants are equally weighted, in order of first appearance, with a
    variant named ``control`` moved to the front so it is the control arm.
    Conversion metric names become increase-goal metrics.

    Returns:
        Ids of the experiments registered
    """
    variants: dict[str, list[str]] = {}
    metrics: dict[str, list[str]] = {}
    for event in events:
        if event.name not in (ASSIGNED_EVENT, CONVERSION_EVENT):
            continue
        test_id = event.properties.get("testId")
        variant_id = event.properties.get("variantId")
        if not test_id or not variant_id or registry.get_test(test_id) is not None:
            continue
        seen = variants.setdefault(test_id, [])
        if variant_id not in seen:
            seen.append(variant_id)
        metric = event.properties.get("metricName")
        if event.name == CONVERSION_EVENT and metric and metric not in metrics.setdefault(test_id, []):
            metrics[test_id].append(metric)

    registered = []
    for test_id, variant_ids in variants.items():
        variant_ids.sort(key=lambda v: v != "control")
        try:
            registry.create_test(
                {
                    "id": test_id,
                    "name": test_id,
                    "description": "Reconstructed from the event log",
                    "variants": [{"id": v, "weight": 1} for v in variant_ids],
                    "metrics": [{"name": m} for m in metrics.get(test_id, [])],
                }
            )
        except ExperimentConfigError as e:
            logger.warning("Skipping experiment %s found in log: %s", test_id, e)
            continue
        registered.append(test_id)
    return registered


def infer_funnels(engine: FunnelEngine, events: list[Event]) -> list[str]:
    """
    Register funnels that appear in the log but are not registered.

    Steps are ordered by the first time each was reached. The time window
    spans the whole log so the default analysis range covers every record.

    Returns:
        Keys of the funnels registered
    """
    steps: dict[str, dict[str, Event]] = {}
    for event in events:
        funnel = event.properties.get("funnel")
        step = event.properties.get("step")
        if not funnel or not step or engine.get_funnel(funnel) is not None:
            continue
        first = steps.setdefault(funnel, {}).get(step)
        if first is None or event.timestamp < first.timestamp:
            steps[funnel][step] = event

    if not steps:
        return []
    timestamps = [e.timestamp for e in events]
    window = max(timestamps) - min(timestamps) + 1

    registered = []
    for key, first_seen in steps.items():
        ordered = sorted(first_seen.items(), key=lambda item: item[1].timestamp)
        definition = FunnelDefinition(
            name=key,
            steps=[FunnelStep(name=name, event=event.name) for name, event in ordered],
            time_window=window,
        )
        try:
            engine.add_funnel(key, definition)
        except FunnelConfigError as e:
            logger.warning("Skipping funnel %s found in log: %s", key, e)
            continue
        registered.append(key)
    return registered


def replay_event_log(path: Path) -> Replay:
    """
    Read a JSONL event log and feed it to fresh engines.

    The built-in experiments and funnels are registered first. Any other
    experiment or funnel named in the log is reconstructed from its events
    (see infer_experiments and infer_funnels) so that it can be analyzed too.

    Raises:
        FileNotFoundError: The log does not exist
    """
    events: list[Event] = list(read_event_log(path))

    experiments = ExperimentRegistry()
    experiments.register_defaults()
    infer_experiments(experiments, events)
    funnels = FunnelEngine()
    funnels.register_defaults()
    infer_funnels(funnels, events)
    cohorts = CohortEngine()

    experiments.ingest(events)
    funnels.ingest(events)
    cohorts.ingest(events)

    counts: dict[str, int] = {}
    for event in events:
        counts[event.name] = counts.get(event.name, 0) + 1
    timestamps = [e.timestamp for e in events]

    return Replay(
        path=path,
        experiments=experiments,
        funnels=funnels,
        cohorts=cohorts,
        event_counts=counts,
        first_timestamp=min(timestamps) if timestamps else None,
        last_timestamp=max(timestamps) if timestamps else None,
    )
