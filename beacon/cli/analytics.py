# ==============================================================================
# Analyze Commands
# ==============================================================================
"""
Analysis commands for the beacon CLI.

Each command replays the JSONL event log written by JsonlFileCollector into
fresh engines and reports funnel, cohort or experiment results. Time windows
default to the data's own timestamps, not the current wall clock time.
"""

import json
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from beacon.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    Replay,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _section_header,
    day_end_ms,
    day_start_ms,
    parse_date_option,
    replay_event_log,
    resolve_log_path,
)
from beacon.core.models import Recommendation, Trend
from beacon.utils.clock import ms_to_date

LogOption = Annotated[
    Optional[Path],
    typer.Option("--log", "-l", help="JSONL event log (defaults to TRACKER_EVENT_LOG)"),
]
JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON for scripting")]
StartOption = Annotated[
    Optional[str], typer.Option("--start", "-s", help="Start date (YYYY-MM-DD)")
]
EndOption = Annotated[Optional[str], typer.Option("--end", "-e", help="End date (YYYY-MM-DD)")]

_TREND_ICONS = {
    Trend.IMPROVING: f"{C.BRIGHT_GREEN}↑ improving{C.RESET}",
    Trend.STABLE: f"{C.BRIGHT_CYAN}→ stable{C.RESET}",
    Trend.DECLINING: f"{C.BRIGHT_RED}↓ declining{C.RESET}",
}

_RECOMMENDATION_STYLE = {
    Recommendation.IMPLEMENT: C.BRIGHT_GREEN,
    Recommendation.CONTINUE: C.BRIGHT_YELLOW,
    Recommendation.STOP: C.BRIGHT_RED,
}


# ==============================================================================
# Helper Functions
# ==============================================================================


def _fail(message: str, json_output: bool) -> None:
    if json_output:
        print(json.dumps({"error": message}))
    else:
        print(f"\n{C.BRIGHT_RED}{I.CROSS} {message}{C.RESET}\n")
    raise typer.Exit(1)


def _load(log: Optional[Path], json_output: bool) -> Replay:
    path = resolve_log_path(log)
    if not path.exists():
        _fail(f"Event log not found: {path}", json_output)
    return replay_event_log(path)


def _dates(start: Optional[str], end: Optional[str], json_output: bool):
    try:
        return parse_date_option(start), parse_date_option(end)
    except ValueError:
        _fail(f"Invalid date range: {start!r}..{end!r} (expected YYYY-MM-DD)", json_output)


def _format_duration(ms: float) -> str:
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


# ==============================================================================
# Commands
# ==============================================================================


def analyze_funnel(
    name: Annotated[str, typer.Argument(help="Funnel key (e.g. signup)")],
    start: StartOption = None,
    end: EndOption = None,
    log: LogOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show step conversion for a funnel.

    Without --start/--end the funnel's own time window is used, ending at
    the most recent event in the log.

    Funnels other than the built-in ones are reconstructed from the log,
    with steps in the order they were first reached.

    Examples:
        beacon analyze funnel signup
        beacon analyze funnel purchase --start 2024-01-01 --end 2024-01-31
        beacon analyze funnel onboarding --json
    """
    replay = _load(log, json_output)
    definition = replay.funnels.get_funnel(name)
    if definition is None:
        _fail(f"Unknown funnel: {name}", json_output)

    start_day, end_day = _dates(start, end, json_output)
    end_ms = day_end_ms(end_day) if end_day else replay.last_timestamp
    start_ms = day_start_ms(start_day) if start_day else None
    result = replay.funnels.analyze(name, start=start_ms, end=end_ms)

    if json_output:
        print(json.dumps(result.to_message(), indent=2))
        return

    W = BOX_WIDTH
    INNER = W - 2

    print()
    print(_box_header(f"FUNNEL: {definition.name.upper()}", W))
    print(_empty_line(W))

    if result.total_users == 0:
        print(_box_line(f"  {C.BRIGHT_YELLOW}{I.WARN} No funnel activity in range{C.RESET}", W))
        print(_empty_line(W))
        print(_box_bottom(W))
        print()
        return

    header = f"  {'Step':<30}{'Users':>10}  {'Conversion':>10}  {'Drop-off':>8}"
    print(_box_line(header, W))
    sep = "  " + "─" * (INNER - 4)
    print(_box_line(sep, W))

    for i, step in enumerate(result.step_conversions):
        label = step.step_name if i == 0 else f"  -> {step.step_name}"
        row = (
            f"  {label[:30]:<30}{step.users:>10,}  {step.conversion_rate:>9.1f}%"
            f"  {step.dropoff_rate:>7.1f}%"
        )
        print(_box_line(row, W))

    print(_empty_line(W))
    print(_box_line(f"  {'Entrants':<30}{result.total_users:>10,}", W))
    print(_box_line(f"  {'Overall Conversion':<30}{result.overall_conversion_rate:>9.1f}%", W))
    avg = _format_duration(result.average_time_to_complete)
    print(_box_line(f"  {'Avg Time to Complete':<30}{avg:>10}", W))
    print(_empty_line(W))
    print(_box_bottom(W))
    print()


def analyze_cohorts(
    start: StartOption = None,
    end: EndOption = None,
    log: LogOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show weekly cohort retention and engagement.

    Without --start the earliest cohort in the log is used; without --end
    the date of the most recent event.

    Examples:
        beacon analyze cohorts
        beacon analyze cohorts --start 2024-01-01 --end 2024-03-31 --json
    """
    replay = _load(log, json_output)
    start_day, end_day = _dates(start, end, json_output)

    cohorts = replay.cohorts.all_cohorts()
    if start_day is None:
        start_day = cohorts[0] if cohorts else None
    if end_day is None and replay.last_timestamp is not None:
        end_day = ms_to_date(replay.last_timestamp)
    if start_day is None or end_day is None:
        _fail("No cohort data in event log", json_output)

    result = replay.cohorts.analyze(start_day, end_day)

    if json_output:
        print(json.dumps(result.to_message(), indent=2))
        return

    console = Console()
    table = Table(
        title=f"Cohort Retention ({start_day.isoformat()} to {end_day.isoformat()})",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Cohort")
    table.add_column("Week")
    table.add_column("Users", justify="right")
    for label in ("D1", "D3", "D7", "D14", "D30", "D90"):
        table.add_column(label, justify="right")
    table.add_column("Avg Sessions", justify="right")
    table.add_column("Avg Events", justify="right")

    for cohort in result.cohorts:
        r = cohort.retention
        table.add_row(
            cohort.cohort_date.isoformat(),
            cohort.cohort_week,
            f"{cohort.total_users:,}",
            *(f"{v:.1f}%" for v in (r.day1, r.day3, r.day7, r.day14, r.day30, r.day90)),
            f"{cohort.engagement.average_sessions:.1f}",
            f"{cohort.engagement.average_events:.1f}",
        )

    summary = result.summary
    avg = summary.average_retention
    print()
    console.print(table)
    print(
        f"  {C.BOLD}Avg retention:{C.RESET}  D1 {avg.day1:.1f}%  D7 {avg.day7:.1f}%"
        f"  D30 {avg.day30:.1f}%"
    )
    best = summary.best_performing_cohort.isoformat() if summary.best_performing_cohort else "-"
    worst = summary.worst_performing_cohort.isoformat() if summary.worst_performing_cohort else "-"
    print(f"  {C.BOLD}Best cohort:{C.RESET}    {best}")
    print(f"  {C.BOLD}Worst cohort:{C.RESET}   {worst}")
    print(f"  {C.BOLD}Trend:{C.RESET}          {_TREND_ICONS[summary.trend]}")
    print()


def analyze_experiment(
    test_id: Annotated[str, typer.Argument(help="Experiment id (e.g. homepage-layout)")],
    log: LogOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show per-variant results and a recommendation for an experiment.

    Experiments other than the built-in ones are reconstructed from the
    log, with equally weighted variants and ``control`` as the control arm.

    Examples:
        beacon analyze experiment homepage-layout
        beacon analyze experiment search-experience --json
    """
    replay = _load(log, json_output)
    results = replay.experiments.analyze(test_id)
    if results is None:
        _fail(f"Unknown experiment: {test_id}", json_output)

    if json_output:
        print(json.dumps(results.to_message(), indent=2))
        return

    test = replay.experiments.get_test(test_id)
    console = Console()
    table = Table(title=f"Experiment: {test.name}", show_header=True, header_style="bold")
    table.add_column("Variant")
    table.add_column("Participants", justify="right")
    table.add_column("Conversions", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Winner", justify="center")

    for variant in results.variants:
        table.add_row(
            variant.variant_id,
            f"{variant.participants:,}",
            f"{variant.conversions:,}",
            f"{variant.conversion_rate:.1f}%",
            f"{variant.confidence:.1f}",
            I.CHECK if variant.is_winner else "",
        )

    style = _RECOMMENDATION_STYLE[results.recommendation]
    print()
    console.print(table)
    print(f"  {C.BOLD}Participants:{C.RESET}    {results.total_participants:,}")
    print(f"  {C.BOLD}Recommendation:{C.RESET}  {style}{results.recommendation.value}{C.RESET}")
    if results.winner:
        print(f"  {C.BOLD}Winner:{C.RESET}          {results.winner}")
    print()


def analyze_list(
    log: LogOption = None,
    json_output: JsonOption = False,
) -> None:
    """List registered experiments and funnels, and event counts in the log.

    Examples:
        beacon analyze list
        beacon analyze list --json
    """
    replay = _load(log, json_output)
    experiments = replay.experiments.all_tests()
    funnels = {key: replay.funnels.get_funnel(key) for key in replay.funnels.all_funnels()}

    first = ms_to_date(replay.first_timestamp) if replay.first_timestamp is not None else None
    last = ms_to_date(replay.last_timestamp) if replay.last_timestamp is not None else None

    if json_output:
        print(
            json.dumps(
                {
                    "log": str(replay.path),
                    "total_events": replay.total_events,
                    "first_event": first.isoformat() if first else None,
                    "last_event": last.isoformat() if last else None,
                    "event_counts": replay.event_counts,
                    "experiments": [
                        {"id": t.id, "name": t.name, "variants": [v.id for v in t.variants]}
                        for t in experiments
                    ],
                    "funnels": [
                        {"key": key, "name": f.name, "steps": [s.name for s in f.steps]}
                        for key, f in funnels.items()
                    ],
                    "cohorts": [d.isoformat() for d in replay.cohorts.all_cohorts()],
                },
                indent=2,
            )
        )
        return

    W = BOX_WIDTH
    print()
    print(_box_header("BEACON EVENT LOG", W))
    print(_empty_line(W))
    print(_box_line(f"  Log:     {C.WHITE}{str(replay.path)[: W - 14]}{C.RESET}", W))
    print(_box_line(f"  Events:  {C.WHITE}{replay.total_events:,}{C.RESET}", W))
    if first and last:
        span = (last - first) + timedelta(days=1)
        print(_box_line(f"  Range:   {C.WHITE}{first} to {last} ({span.days}d){C.RESET}", W))
    print(_empty_line(W))

    print(_section_header("Experiments", W))
    for test in experiments:
        print(_box_line(f"  {I.BULLET} {test.id:<28}{C.DIM}{len(test.variants)} variants{C.RESET}", W))
    print(_empty_line(W))

    print(_section_header("Funnels", W))
    for key, definition in funnels.items():
        print(_box_line(f"  {I.BULLET} {key:<28}{C.DIM}{len(definition.steps)} steps{C.RESET}", W))
    print(_empty_line(W))

    if replay.event_counts:
        print(_section_header("Events", W))
        for name, count in sorted(replay.event_counts.items(), key=lambda kv: -kv[1]):
            print(_box_line(f"  {name[:40]:<40}{count:>12,}", W))
        print(_empty_line(W))

    print(_box_bottom(W))
    print()