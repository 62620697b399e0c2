"""Command-line interface for the issue timer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .config import TimerSettings
from .db import IssueRepository
from .errors import TimerError
from .models import PauseCause
from .paths import get_db_path, get_log_path
from .reconcile import Reconciler
from .reporting import LedgerPrinter, format_duration
from .service import TimerService

app = typer.Typer(help="Per-issue work timers with automatic pause and resume.")

DB_OPTION = typer.Option(
    None,
    "--db",
    path_type=Path,
    help="Location of the issues SQLite database.",
)
INACTIVITY_OPTION = typer.Option(
    30.0,
    "--inactivity",
    min=1.0,
    help="Minutes without activity before a running timer is auto-paused.",
)
END_OF_DAY_OPTION = typer.Option(
    "17:30", "--end-of-day", help="Local time (HH:MM) at which running timers pause."
)
START_OF_DAY_OPTION = typer.Option(
    "09:00",
    "--start-of-day",
    help="Local time (HH:MM) after which end-of-day pauses are resumed.",
)
TIMEZONE_OPTION = typer.Option(
    "UTC", "--timezone", help="IANA timezone for the end-of-day and start-of-day times."
)
WEEKDAYS_OPTION = typer.Option(
    True,
    "--weekdays-only/--every-day",
    help="Only apply the daily cutoffs Monday to Friday.",
)
START_MISSING_OPTION = typer.Option(
    False,
    "--start-missing/--no-start-missing",
    help="At start of day, start timers for in-progress issues that have none.",
)


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the application log file."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8765, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = DB_OPTION,
    inactivity_minutes: float = INACTIVITY_OPTION,
    end_of_day: str = END_OF_DAY_OPTION,
    start_of_day: str = START_OF_DAY_OPTION,
    timezone: str = TIMEZONE_OPTION,
    weekdays_only: bool = WEEKDAYS_OPTION,
    start_missing: bool = START_MISSING_OPTION,
    sweeps: bool = typer.Option(
        True, "--sweeps/--no-sweeps", help="Run the background pause/resume sweeps."
    ),
) -> None:
    """Start the HTTP API with the background sweeps."""
    from .server_runner import run_server

    settings = _settings(
        inactivity_minutes, end_of_day, start_of_day, timezone, weekdays_only, start_missing
    )
    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=settings,
        run_scheduler=sweeps,
    )


@app.command()
def scheduler(
    db_path: Optional[Path] = DB_OPTION,
    interval: float = typer.Option(
        60.0, "--interval", min=1.0, help="Seconds between sweeps."
    ),
    inactivity_minutes: float = INACTIVITY_OPTION,
    end_of_day: str = END_OF_DAY_OPTION,
    start_of_day: str = START_OF_DAY_OPTION,
    timezone: str = TIMEZONE_OPTION,
    weekdays_only: bool = WEEKDAYS_OPTION,
    start_missing: bool = START_MISSING_OPTION,
) -> None:
    """Run the pause/resume sweeps in the foreground until interrupted."""
    from .scheduler import SchedulerRunner

    settings = _settings(
        inactivity_minutes,
        end_of_day,
        start_of_day,
        timezone,
        weekdays_only,
        start_missing,
        sweep_seconds=interval,
    )
    SchedulerRunner(_service(db_path), settings).run_forever()


@app.command()
def sweep(
    db_path: Optional[Path] = DB_OPTION,
    inactivity_minutes: float = INACTIVITY_OPTION,
    end_of_day: str = END_OF_DAY_OPTION,
    timezone: str = TIMEZONE_OPTION,
    weekdays_only: bool = WEEKDAYS_OPTION,
) -> None:
    """Run one auto-pause sweep and report what was paused."""
    from .scheduler import AutoPauseScheduler

    settings = _settings(inactivity_minutes, end_of_day, "09:00", timezone, weekdays_only, False)
    report = AutoPauseScheduler(_service(db_path), settings).sweep()
    for issue_id, cause in report.paused:
        typer.echo(f"paused   {issue_id} ({cause.value})")
    for issue_id in report.skipped:
        typer.echo(f"skipped  {issue_id}")
    for error in report.errors:
        typer.echo(f"error    {error}", err=True)
    typer.echo(f"{len(report.paused)} timer(s) paused.")


@app.command("resume-sweep")
def resume_sweep(
    db_path: Optional[Path] = DB_OPTION,
    force: bool = typer.Option(
        False, "--force", help="Resume every end-of-day pause now, ignoring start of day."
    ),
    start_of_day: str = START_OF_DAY_OPTION,
    timezone: str = TIMEZONE_OPTION,
    weekdays_only: bool = WEEKDAYS_OPTION,
    start_missing: bool = START_MISSING_OPTION,
) -> None:
    """Resume timers paused by the end-of-day cutoff."""
    from .scheduler import ResumeSweep

    settings = _settings(30.0, "17:30", start_of_day, timezone, weekdays_only, start_missing)
    report = ResumeSweep(_service(db_path), settings).sweep(force=force)
    for issue_id in report.resumed:
        typer.echo(f"resumed  {issue_id}")
    for issue_id in report.started:
        typer.echo(f"started  {issue_id}")
    for error in report.errors:
        typer.echo(f"error    {error}", err=True)
    typer.echo(f"{len(report.resumed)} timer(s) resumed.")


@app.command()
def reconcile(
    issue_id: Optional[str] = typer.Argument(None, help="Issue to reconcile; all if omitted."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Recompute total time spent from the ledger and repair drift."""
    reconciler = Reconciler(IssueRepository(db_path or get_db_path()))
    with _translate_errors():
        results = [reconciler.reconcile(issue_id)] if issue_id else reconciler.reconcile_all()
    drifted = [result for result in results if result.drifted]
    for result in drifted:
        typer.echo(
            f"{result.issue_id}: {format_duration(result.before)} -> {format_duration(result.after)}"
            f" (logged {result.logged_hours_before:g}h -> {result.logged_hours_after:g}h)"
        )
    typer.echo(f"{len(drifted)} issue(s) repaired.")


@app.command("add-issue")
def add_issue(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    key: Optional[str] = typer.Option(None, "--key", help="Human-readable issue key."),
    status: str = typer.Option("todo", "--status", help="Issue status."),
    assignees: Optional[List[str]] = typer.Option(
        None, "--assignee", help="Assignee user id (repeatable)."
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Register an issue record so its time can be tracked."""
    with _translate_errors():
        issue = _service(db_path).register_issue(
            issue_id, key, status=status, assignees=assignees or []
        )
    typer.echo(f"Registered {issue.key}.")


@app.command()
def start(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    user_id: str = typer.Argument(..., help="User who owns the timer."),
    extra_hours: bool = typer.Option(
        False, "--extra-hours", help="Flag the session as outside normal working hours."
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Start a timer on an issue."""
    with _translate_errors():
        entry = _service(db_path).start(issue_id, user_id, is_extra_hours=extra_hours)
    typer.echo(f"Timer {entry.id} started for {entry.user_id}.")


@app.command()
def pause(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    cause: PauseCause = typer.Option(PauseCause.USER, "--cause", help="Why the timer pauses."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Pause a running timer."""
    with _translate_errors():
        _service(db_path).pause(issue_id, cause)
    typer.echo("Timer paused.")


@app.command()
def resume(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Resume a paused timer."""
    with _translate_errors():
        entry = _service(db_path).resume(issue_id)
    typer.echo(f"Timer resumed ({format_duration(entry.accumulated_paused_time)} paused so far).")


@app.command()
def stop(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Stop a timer and record the session."""
    with _translate_errors():
        entry = _service(db_path).stop(issue_id, description)
    typer.echo(f"Recorded {format_duration(entry.duration)}.")


@app.command()
def log(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    user_id: str = typer.Argument(..., help="User the time is logged for."),
    minutes: int = typer.Argument(..., min=1, help="Minutes to log."),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Log time manually, independent of any timer."""
    with _translate_errors():
        entry = _service(db_path).add_manual_time(issue_id, user_id, minutes * 60, description)
    typer.echo(f"Logged {format_duration(entry.seconds)}.")


@app.command()
def status(
    issue_id: str = typer.Argument(..., help="Issue identifier."),
    show_ledger: bool = typer.Option(False, "--ledger", help="Also list recorded time."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Show the timer state and total time of an issue."""
    service = _service(db_path)
    with _translate_errors():
        issue = service.issue(issue_id)
        timer = service.status(issue_id)
    printer = LedgerPrinter()
    printer.print_status(issue, timer)
    if show_ledger:
        print()
        printer.print_ledger(issue)


def _service(db_path: Optional[Path]) -> TimerService:
    return TimerService(IssueRepository(db_path or get_db_path()))


def _settings(
    inactivity_minutes: float,
    end_of_day: str,
    start_of_day: str,
    timezone: str,
    weekdays_only: bool,
    start_missing: bool,
    sweep_seconds: Optional[float] = None,
) -> TimerSettings:
    try:
        return TimerSettings.from_options(
            inactivity_minutes=inactivity_minutes,
            end_of_day=end_of_day,
            start_of_day=start_of_day,
            timezone=timezone,
            weekdays_only=weekdays_only,
            start_missing_timers=start_missing,
            sweep_seconds=sweep_seconds,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Report timer failures as a one-line error and a non-zero exit code."""
    try:
        yield
    except TimerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
