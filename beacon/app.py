# ==============================================================================
# Beacon CLI
# ==============================================================================
"""
Command-line interface for beacon.

Usage:
    beacon --help
    beacon config show
    beacon analyze list
    beacon analyze funnel signup
    beacon analyze cohorts --start 2024-01-01
    beacon analyze experiment homepage-layout --json
"""

import logging

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
import os

import typer

from beacon.utils.config import get_settings

if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="beacon",
    help="Telemetry and experimentation engine CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

# Register config commands from cli.config module
from beacon.cli.config import config_show

config_app.command("show")(config_show)

analyze_app = typer.Typer(
    help="Analyze a delivered event log",
    no_args_is_help=True,
)
app.add_typer(analyze_app, name="analyze")

# Register analyze commands from cli.analytics module
from beacon.cli.analytics import (
    analyze_cohorts,
    analyze_experiment,
    analyze_funnel,
    analyze_list,
)

analyze_app.command("funnel")(analyze_funnel)
analyze_app.command("cohorts")(analyze_cohorts)
analyze_app.command("experiment")(analyze_experiment)
analyze_app.command("list")(analyze_list)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app()


if __name__ == "__main__":
    main()
