"""Background sweeps that pause and resume timers on the system's behalf.

Both sweeps select their targets from the persisted ledger on every run and
mutate it only through :class:`TimerService`, so they obey the same
invariants as user requests and need no in-memory state across restarts.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .config import TimerSettings
from .errors import ConflictError, InvalidStateError, TimerError
from .models import ActiveTimeEntry, Issue, PauseCause
from .service import TimerService
from .workday import latest_boundary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    """Outcome of one sweep, one line per issue touched."""

    ran_at: datetime
    paused: list[tuple[str, PauseCause]] = field(default_factory=list)
    resumed: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_document(self) -> dict:
        return {
            "ranAt": self.ran_at.isoformat(),
            "paused": [
                {"issueId": issue_id, "cause": cause.value}
                for issue_id, cause in self.paused
            ],
            "resumed": list(self.resumed),
            "started": list(self.started),
            "skipped": list(self.skipped),
            "errors": list(self.errors),
        }


class AutoPauseScheduler:
    """Pauses running timers that went inactive or crossed the end-of-day cutoff."""

    def __init__(self, service: TimerService, settings: TimerSettings) -> None:
        self.service = service
        self.settings = settings

    def pause_cause(
        self, entry: ActiveTimeEntry, now: datetime, cutoff: Optional[datetime]
    ) -> Optional[PauseCause]:
        if now - entry.last_activity_at > self.settings.inactivity_threshold:
            return PauseCause.INACTIVITY
        if cutoff is not None and entry.last_activity_at < cutoff:
            return PauseCause.END_OF_DAY
        return None

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.service.now()
        report = SweepReport(ran_at=now)
        if not self.settings.auto_pause_enabled:
            return report

        cutoff = latest_boundary(
            now,
            self.settings.end_of_day,
            self.settings.zone,
            weekdays_only=self.settings.weekdays_only,
        )
        for issue in self.service.repository.find_running():
            entry = issue.time_tracking.active_time_entry
            cause = self.pause_cause(entry, now, cutoff)
            if cause is None:
                continue
            # An idle timer stops counting at its last activity, not at the sweep.
            paused_at = entry.last_activity_at if cause is PauseCause.INACTIVITY else None
            try:
                self.service.pause(
                    issue.id, cause, idle_since=entry.last_activity_at, paused_at=paused_at
                )
            except InvalidStateError as exc:
                logger.info("Skipped auto-pause for issue %s: %s", issue.key, exc)
                report.skipped.append(issue.id)
            except TimerError as exc:
                logger.warning("Failed to auto-pause issue %s: %s", issue.key, exc)
                report.errors.append(f"{issue.id}: {exc}")
            else:
                logger.info(
                    "System auto-paused timer of %s on issue %s (%s)",
                    entry.user_id,
                    issue.key,
                    cause.value,
                )
                report.paused.append((issue.id, cause))

        if report.paused or report.errors:
            logger.info(
                "Auto-pause sweep complete. Paused: %d, Skipped: %d, Errors: %d",
                len(report.paused),
                len(report.skipped),
                len(report.errors),
            )
        return report


class ResumeSweep:
    """Resumes timers that the end-of-day cutoff paused, once a new day starts.

    Timers paused by their owner or for inactivity are never touched.
    """

    def __init__(self, service: TimerService, settings: TimerSettings) -> None:
        self.service = service
        self.settings = settings

    def sweep(self, now: Optional[datetime] = None, *, force: bool = False) -> SweepReport:
        now = now or self.service.now()
        report = SweepReport(ran_at=now)
        day_start = latest_boundary(
            now,
            self.settings.start_of_day,
            self.settings.zone,
            weekdays_only=self.settings.weekdays_only,
        )

        for issue in self.service.repository.find_paused(end_of_day_only=True):
            entry = issue.time_tracking.active_time_entry
            if not force and not self._due(entry, day_start):
                continue
            try:
                self.service.resume(issue.id, end_of_day_only=True)
            except InvalidStateError as exc:
                logger.info("Skipped auto-resume for issue %s: %s", issue.key, exc)
                report.skipped.append(issue.id)
            except TimerError as exc:
                logger.warning("Failed to auto-resume issue %s: %s", issue.key, exc)
                report.errors.append(f"{issue.id}: {exc}")
            else:
                logger.info(
                    "System auto-resumed timer of %s on issue %s (start-of-day)",
                    entry.user_id,
                    issue.key,
                )
                report.resumed.append(issue.id)

        if self.settings.start_missing_timers and self._within_workday(now, day_start):
            self._start_missing(day_start, report)

        if report.resumed or report.started or report.errors:
            logger.info(
                "Resume sweep complete. Resumed: %d, Started: %d, Errors: %d",
                len(report.resumed),
                len(report.started),
                len(report.errors),
            )
        return report

    @staticmethod
    def _due(entry: ActiveTimeEntry, day_start: Optional[datetime]) -> bool:
        if day_start is None:
            return False
        return entry.paused_at is None or entry.paused_at < day_start

    def _within_workday(self, now: datetime, day_start: Optional[datetime]) -> bool:
        """True between the start of day and the end-of-day cutoff of the same local day."""
        if day_start is None:
            return False
        zone = self.settings.zone
        workday = day_start.astimezone(zone).date()
        if now.astimezone(zone).date() != workday:
            return False
        return now < datetime.combine(workday, self.settings.end_of_day, tzinfo=zone)

    def _start_missing(self, day_start: datetime, report: SweepReport) -> None:
        for issue in self.service.repository.find_without_timer("in_progress"):
            if not self._needs_timer(issue, day_start):
                continue
            user_id = issue.assignees[0]
            try:
                self.service.start(issue.id, user_id)
            except ConflictError as exc:
                logger.info("Skipped auto-start for issue %s: %s", issue.key, exc)
                report.skipped.append(issue.id)
            except TimerError as exc:
                logger.warning("Failed to auto-start issue %s: %s", issue.key, exc)
                report.errors.append(f"{issue.id}: {exc}")
            else:
                logger.info(
                    "System auto-started timer for %s on issue %s (start-of-day)",
                    user_id,
                    issue.key,
                )
                report.started.append(issue.id)

    @staticmethod
    def _needs_timer(issue: Issue, day_start: datetime) -> bool:
        if not issue.assignees:
            logger.debug("Issue %s has no assignees; not starting a timer.", issue.key)
            return False
        entries = issue.time_tracking.time_entries
        # A timer stopped since the day started was stopped on purpose.
        return not any(entry.end_time >= day_start for entry in entries)


class SchedulerRunner:
    """Run both sweeps periodically in a background thread."""

    def __init__(self, service: TimerService, settings: TimerSettings) -> None:
        self.settings = settings
        self.auto_pause = AutoPauseScheduler(service, settings)
        self.resume_sweep = ResumeSweep(service, settings)
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self.run_until_stopped,
                args=(stop_event,),
                name="timer-scheduler",
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Scheduler background thread started.")

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Scheduler background thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self.run_until_stopped(stop_event)
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted.")

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        interval = self.settings.sweep_interval.total_seconds()
        logger.info("Starting timer sweeps every %.0fs", interval)
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(interval)

    def tick(self) -> None:
        """Run one auto-pause sweep and one resume sweep."""
        try:
            self.auto_pause.sweep()
        except Exception:
            logger.exception("Auto-pause sweep failed.")
        try:
            self.resume_sweep.sweep()
        except Exception:
            logger.exception("Resume sweep failed.")
