# ==============================================================================
# Beacon Utilities
# ==============================================================================
"""
Shared utilities: configuration, time helpers and retry decorators.
"""

from beacon.utils.clock import (
    DAY_MS,
    iso_week_label,
    ms_to_date,
    now_ms,
    parse_date,
    week_start,
)
from beacon.utils.config import (
    ConsentSettings,
    ExperimentSettings,
    Settings,
    TrackerSettings,
    ValkeySettings,
    get_settings,
)
from beacon.utils.retry import HTTP_RETRY_EXCEPTIONS, retry_light

__all__ = [
    # Config
    "ConsentSettings",
    "ExperimentSettings",
    "Settings",
    "TrackerSettings",
    "ValkeySettings",
    "get_settings",
    # Time
    "DAY_MS",
    "iso_week_label",
    "ms_to_date",
    "now_ms",
    "parse_date",
    "week_start",
    # Retry
    "HTTP_RETRY_EXCEPTIONS",
    "retry_light",
]
