# ==============================================================================
# Beacon Exceptions
# ==============================================================================
"""
Exceptions raised by registration calls made at startup.

Runtime operations (track, assign, record_step, record_activity, analyze)
never raise; they log and return None or an empty result instead.
"""


class BeaconError(Exception):
    """Base class for all Beacon errors."""


class ExperimentConfigError(BeaconError):
    """An experiment definition is malformed or already registered."""


class ExperimentLockedError(BeaconError):
    """Variants or weights were modified after the experiment left draft."""


class FunnelConfigError(BeaconError):
    """A funnel definition is malformed."""
