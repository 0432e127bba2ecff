"""
CLI interface for Data Plan Monitor.

Provides command-line access to ingestion, projection and history.
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from data_plan_monitor.config.loader import DEFAULT_CONFIG_PATH, AppConfig, load_config
from data_plan_monitor.core.daily_usage import daily_usage
from data_plan_monitor.core.ingestion import ImportReport, RefreshState, refresh_status, run_import
from data_plan_monitor.core.parser import MB_PER_GB
from data_plan_monitor.core.projection import ProjectionResult, ProjectionStatus, project
from data_plan_monitor.core.scheduler import run_scheduled
from data_plan_monitor.demo.seed_demo_data import seed_demo_data
from data_plan_monitor.storage.repository import StoreFailure, get_repository
from data_plan_monitor.transport.mikrotik_client import MikroTikClient, TransportFailure

app = typer.Typer()
console = Console()

# Exit codes - warning and critical projections are reports, not failures
EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_STATUS_STYLES = {
    ProjectionStatus.OK: "green",
    ProjectionStatus.WARNING: "yellow",
    ProjectionStatus.CRITICAL: "red",
}

ConfigOption = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    help="Path to YAML configuration file"
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level")
):
    """Data Plan Monitor CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Data Plan Monitor - Use --help to see available commands")


def _load(config_path: str) -> AppConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _fail(message: str, error: Exception) -> None:
    console.print(f"[red]{message}:[/] {str(error)}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def init(config: str = ConfigOption):
    """Initialize the reading store."""
    app_config = _load(config)
    try:
        get_repository(app_config.storage.db_path).initialize_schema()
    except StoreFailure as e:
        _fail("Error initializing database", e)
    console.print("[green]✓[/] Database initialized successfully")
    sys.exit(EXIT_CODE_PASS)


@app.command("import")
def import_(config: str = ConfigOption):
    """Fetch the router inbox and import carrier status messages."""
    app_config = _load(config)
    try:
        router = app_config.require_router()
        repository = get_repository(app_config.storage.db_path)
        repository.initialize_schema()
        with MikroTikClient(router) as transport:
            report = run_import(transport, repository)
    except ValueError as e:
        _fail("Configuration error", e)
    except TransportFailure as e:
        _fail("Router error", e)
    except StoreFailure as e:
        _fail("Store error", e)

    _display_import_report(report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def refresh(
    config: str = ConfigOption,
    force: bool = typer.Option(False, "--force", "-f", help="Request a new status even if fresh"),
    max_age_minutes: int = typer.Option(59, "--max-age-minutes", help="Oldest acceptable reading age"),
    timeout_seconds: int = typer.Option(30, "--timeout-seconds", help="How long to wait for the SMS"),
    poll_seconds: int = typer.Option(2, "--poll-seconds", help="Delay between inbox polls")
):
    """Make sure a recent reading is stored, asking the carrier if needed."""
    app_config = _load(config)
    try:
        router = app_config.require_router()
        repository = get_repository(app_config.storage.db_path)
        repository.initialize_schema()
        with MikroTikClient(router) as transport:
            outcome = refresh_status(
                transport,
                repository,
                max_age=timedelta(minutes=max_age_minutes),
                timeout=timedelta(seconds=timeout_seconds),
                poll_interval=timedelta(seconds=poll_seconds),
                force=force
            )
    except ValueError as e:
        _fail("Configuration error", e)
    except TransportFailure as e:
        _fail("Router error", e)
    except StoreFailure as e:
        _fail("Store error", e)

    _display_import_report(outcome.report)
    if outcome.latest_reading is not None:
        reading = outcome.latest_reading
        console.print(
            f"Latest reading: {_format_timestamp(reading.timestamp)} "
            f"{_format_megabytes(reading.used_mb)} of {_format_megabytes(reading.total_mb)}"
        )
    if outcome.state == RefreshState.TIMEOUT:
        console.print("[yellow]No new status message arrived before the timeout[/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Status {outcome.state.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def watch(
    config: str = ConfigOption,
    interval_minutes: int = typer.Option(60, "--interval-minutes", help="Minutes between refreshes"),
    timeout_seconds: int = typer.Option(30, "--timeout-seconds", help="How long to wait for the SMS"),
    poll_seconds: int = typer.Option(2, "--poll-seconds", help="Delay between inbox polls")
):
    """Refresh now and then on every interval tick until interrupted."""
    app_config = _load(config)
    try:
        router = app_config.require_router()
        repository = get_repository(app_config.storage.db_path)
        repository.initialize_schema()
        with MikroTikClient(router) as transport:
            state = run_scheduled(
                transport,
                repository,
                interval=timedelta(minutes=interval_minutes),
                timeout=timedelta(seconds=timeout_seconds),
                poll_interval=timedelta(seconds=poll_seconds)
            )
    except KeyboardInterrupt:
        console.print("Stopped")
        sys.exit(EXIT_CODE_PASS)
    except ValueError as e:
        _fail("Configuration error", e)
    except StoreFailure as e:
        _fail("Store error", e)

    console.print(f"Scheduler stopped after {state.runs} runs")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    config: str = ConfigOption,
    as_of: Optional[str] = typer.Option(None, "--as-of", help="ISO timestamp to project at (default: now)")
):
    """Show burn rate and exhaustion forecast for the current cycle."""
    app_config = _load(config)
    try:
        when = _parse_as_of(as_of)
    except ValueError as e:
        _fail("Invalid --as-of", e)

    try:
        readings = get_repository(app_config.storage.db_path).list_ordered_by_timestamp()
    except StoreFailure as e:
        _fail("Store error", e)

    result = project(readings, app_config.plan, when)
    _display_projection(result)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    config: str = ConfigOption,
    days: int = typer.Option(7, "--days", "-d", help="Number of days to list")
):
    """List stored readings."""
    app_config = _load(config)
    since = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        readings = get_repository(app_config.storage.db_path).list_ordered_by_timestamp(start=since)
    except StoreFailure as e:
        _fail("Store error", e)

    if not readings:
        console.print("\n[dim]No readings stored for this period.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Readings")
    table.add_column("Time")
    table.add_column("Used", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Used %", justify="right")
    for reading in readings:
        table.add_row(
            _format_timestamp(reading.timestamp),
            _format_megabytes(reading.used_mb),
            _format_megabytes(reading.total_mb),
            f"{reading.used_ratio * 100:.0f}%"
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def daily(
    config: str = ConfigOption,
    days: int = typer.Option(30, "--days", "-d", help="Number of days to show")
):
    """Show data consumed per day."""
    app_config = _load(config)
    now = datetime.now(timezone.utc)
    try:
        readings = get_repository(app_config.storage.db_path).list_ordered_by_timestamp(
            start=now - timedelta(days=days + 1)
        )
        points = daily_usage(readings, days, now)
    except StoreFailure as e:
        _fail("Store error", e)
    except ValueError as e:
        _fail("Invalid --days", e)

    table = Table(title="Daily usage")
    table.add_column("Date")
    table.add_column("Used", justify="right")
    for point in points:
        table.add_row(point.date.isoformat(), _format_megabytes(point.used_mb))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("seed-demo")
def seed_demo(
    config: str = ConfigOption,
    days: int = typer.Option(90, "--days", "-d", help="Days of history to generate"),
    seed: int = typer.Option(42, "--seed", help="Random seed")
):
    """Insert synthetic readings for manual testing."""
    app_config = _load(config)
    try:
        inserted = seed_demo_data(
            get_repository(app_config.storage.db_path),
            total_mb=app_config.plan.total_mb,
            days=days,
            seed=seed,
            cycle_start_day=app_config.plan.cycle_start_day
        )
    except StoreFailure as e:
        _fail("Store error", e)
    console.print(f"[green]✓[/] Inserted {inserted} synthetic readings")
    sys.exit(EXIT_CODE_PASS)


def _parse_as_of(value: Optional[str]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_megabytes(mb: float) -> str:
    """Format a quantity in MB, switching to GB from 1 GB up."""
    if abs(mb) >= MB_PER_GB:
        gb = mb / MB_PER_GB
        if round(gb, 1) == round(gb):
            return f"{round(gb):,} GB"
        return f"{gb:,.1f} GB"
    return f"{round(mb):,} MB"


def _format_timestamp(ts: datetime) -> str:
    return ts.strftime("%d.%m.%Y %H:%M")


def _display_import_report(report: ImportReport):
    """Display import counts."""
    table = Table(title="Import Report")
    table.add_column("Messages", justify="right")
    table.add_column("Parsed", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Duplicate", justify="right")
    table.add_row(
        str(report.total),
        str(report.parsed_ok),
        str(report.rejected),
        str(report.inserted),
        str(report.duplicate)
    )
    console.print(table)
    for error in report.errors:
        console.print(f"[dim]Rejected:[/] {error.reason}")


def _display_projection(result: ProjectionResult):
    """Display projection in a compact summary."""
    console.print("\n[bold]Data Plan Projection[/bold]")
    console.print("-" * 40)
    console.print(
        f"Cycle: {_format_timestamp(result.cycle_start)} - {_format_timestamp(result.cycle_end)} "
        f"({result.days_remaining_in_cycle:.1f} days left)"
    )
    console.print(f"Readings in cycle: {result.readings_in_cycle}")

    if result.latest_reading is not None:
        reading = result.latest_reading
        console.print(
            f"Used: {_format_megabytes(reading.used_mb)} of {_format_megabytes(reading.total_mb)} "
            f"({reading.used_ratio * 100:.0f}%)"
        )

    if result.average_daily_usage_mb is None:
        console.print("[dim]Not enough readings in this cycle to compute a trend.[/]")
    else:
        console.print(f"Average daily usage: {_format_megabytes(result.average_daily_usage_mb)}/day")
        if result.projected_cycle_end_usage_mb is not None:
            console.print(f"Projected usage at cycle end: {_format_megabytes(result.projected_cycle_end_usage_mb)}")

    if result.projected_exhaustion_date is None:
        console.print("Projected exhaustion: none at current trend")
    else:
        console.print(f"Projected exhaustion: {_format_timestamp(result.projected_exhaustion_date)}")

    style = _STATUS_STYLES[result.status]
    console.print(f"\n[bold]Status:[/bold] [{style}]{result.status.value.upper()}[/]")


if __name__ == "__main__":
    app()
