# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for beacon.

Commands are organized into separate modules for maintainability:
- shared.py: Common utilities, constants, box drawing and log replay
- config.py: Configuration display
- analytics.py: Funnel, cohort and experiment analysis of the event log
"""

from beacon.cli.shared import (
    # Constants
    BOX_WIDTH,
    # Classes
    Box,
    Colors,
    Icons,
    Replay,
    # Aliases
    B,
    C,
    I,
    # Box drawing helpers (private)
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _section_header,
    _visible_len,
    # Replay helpers
    replay_event_log,
    resolve_log_path,
)

__all__ = [
    # Constants
    "BOX_WIDTH",
    # Classes
    "Box",
    "Colors",
    "Icons",
    "Replay",
    # Aliases
    "B",
    "C",
    "I",
    # Box drawing helpers (private - kept for internal use)
    "_box_bottom",
    "_box_header",
    "_box_line",
    "_empty_line",
    "_section_header",
    "_visible_len",
    # Replay helpers
    "replay_event_log",
    "resolve_log_path",
]
