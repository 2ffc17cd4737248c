# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the beacon CLI.
"""

import json
from typing import Annotated

import typer

from beacon.cli.shared import C
from beacon.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()
    tracker = settings.tracker
    valkey = settings.valkey
    experiment = settings.experiment
    consent = settings.consent

    # JSON output mode
    if json_output:
        config = {
            "tracker": {
                "endpoint": tracker.endpoint,
                "batch_size": tracker.batch_size,
                "flush_interval_seconds": tracker.flush_interval_seconds,
                "send_timeout_seconds": tracker.send_timeout_seconds,
                "max_queue_size": tracker.max_queue_size,
                "sample_rate": tracker.sample_rate,
                "debug": tracker.debug,
                "event_log": str(tracker.event_log_path),
            },
            "valkey": {
                "host": valkey.host,
                "port": valkey.port,
                "db": valkey.db,
                "ssl_enabled": valkey.ssl,
                "password": valkey.password,
                "assignment_ttl_days": valkey.assignment_ttl_days,
            },
            "experiment": {
                "min_sample_size": experiment.min_sample_size,
                "confidence_threshold": experiment.confidence_threshold,
                "min_relative_lift": experiment.min_relative_lift,
            },
            "consent": {
                "default_granted": consent.default_granted,
                "cache_key": consent.cache_key,
            },
            "log_level": settings.log_level,
        }
        print(json.dumps(config, indent=2))
        return

    # Human-readable output
    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}Tracker{C.RESET}")
    print(f"  Endpoint:   {C.WHITE}{tracker.endpoint}{C.RESET}")
    print(f"  Batch:      {C.WHITE}{tracker.batch_size} events{C.RESET}")
    print(f"  Interval:   {C.WHITE}{tracker.flush_interval_seconds:g}s{C.RESET}")
    print(f"  Timeout:    {C.WHITE}{tracker.send_timeout_seconds:g}s{C.RESET}")
    print(f"  Max queue:  {C.WHITE}{tracker.max_queue_size:,}{C.RESET}")
    print(f"  Sampling:   {C.WHITE}{tracker.sample_rate:.0%}{C.RESET}")
    print(f"  Debug:      {C.WHITE}{'enabled' if tracker.debug else 'disabled'}{C.RESET}")
    print(f"  Event log:  {C.WHITE}{tracker.event_log_path}{C.RESET}")
    print()

    print(f"{C.CYAN}Valkey{C.RESET}")
    print(f"  Host:       {C.WHITE}{valkey.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{valkey.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{valkey.db}{C.RESET}")
    print(f"  SSL:        {C.WHITE}{'enabled' if valkey.ssl else 'disabled'}{C.RESET}")
    print(f"  TTL:        {C.WHITE}{valkey.assignment_ttl_days} days{C.RESET}")
    print()

    print(f"{C.CYAN}Experiments{C.RESET}")
    print(f"  Min sample: {C.WHITE}{experiment.min_sample_size:,}{C.RESET}")
    print(f"  Confidence: {C.WHITE}{experiment.confidence_threshold:g}{C.RESET}")
    print(f"  Min lift:   {C.WHITE}{experiment.min_relative_lift:.0%}{C.RESET}")
    print()

    print(f"{C.CYAN}Consent{C.RESET}")
    default = "granted" if consent.default_granted else "denied"
    print(f"  Default:    {C.WHITE}{default}{C.RESET}")
    print(f"  Key:        {C.WHITE}{consent.cache_key}{C.RESET}")
    print()
