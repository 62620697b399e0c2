"""Simple ledger rendering for CLI output."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .models import Issue, TimerStatus


class LedgerPrinter:
    """Render an issue's timer and time ledger in the console."""

    def print_status(self, issue: Issue, status: TimerStatus) -> None:
        print(f"Timer for {issue.key}")
        print("-" * 40)
        if not status.is_running and not status.is_paused:
            print("State:       idle")
        else:
            cause = status.pause_cause.value if status.pause_cause else "unknown"
            state = "running" if status.is_running else f"paused ({cause})"
            if status.is_extra_hours:
                state += ", extra hours"
            print(f"State:       {state}")
            print(f"Owner:       {status.user_id}")
            print(f"Started:     {format_timestamp(status.start_time)}")
            print(f"Worked:      {format_duration(status.current_duration)}")
        print(f"Total spent: {format_duration(issue.time_tracking.total_time_spent)}")

    def print_ledger(self, issue: Issue) -> None:
        tracking = issue.time_tracking
        if not tracking.time_entries and not tracking.time_logs:
            print("No time recorded for this issue.")
            return

        if tracking.time_entries:
            print("Timer sessions:")
            for entry in tracking.time_entries:
                label = entry.description or ""
                print(
                    f"  {entry.id[:8]}  {entry.user_id:<12} "
                    f"{format_timestamp(entry.start_time)}  "
                    f"{format_duration(entry.duration)}  {label[:40]}"
                )

        if tracking.time_logs:
            if tracking.time_entries:
                print()
            print("Manual logs:")
            for log in tracking.time_logs:
                label = log.description or ""
                print(
                    f"  {log.id[:8]}  {log.user_id:<12} "
                    f"{format_timestamp(log.date)}  "
                    f"{format_duration(log.seconds)}  {label[:40]}"
                )


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")
