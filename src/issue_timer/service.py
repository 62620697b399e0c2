"""Timer facade: the entry point for every caller that touches a timer."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Union

from . import machine
from .db import IssueRepository
from .errors import ConflictError, InvalidStateError
from .models import (
    ActiveTimeEntry,
    Issue,
    PauseCause,
    TimeEntry,
    TimeLog,
    TimeTracking,
    TimerStatus,
    utcnow,
)
from .normalization import normalize_description, normalize_identifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def new_entry_id() -> str:
    return uuid.uuid4().hex


class TimerService:
    """Start, pause, resume and stop issue timers against the persisted ledger.

    Each mutation is one conditional update whose predicate is the
    transition's precondition, so two callers racing on the same issue are
    serialized: exactly one sees the state it expected, the other gets a
    typed error.
    """

    def __init__(self, repository: IssueRepository, clock: Optional[Clock] = None) -> None:
        self.repository = repository
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def start(
        self, issue_id: str, user_id: str, *, is_extra_hours: bool = False
    ) -> ActiveTimeEntry:
        issue_id = normalize_identifier(issue_id, "issue id")
        user_id = normalize_identifier(user_id, "user id")
        now = self.now()
        issue = self.repository.conditional_update(
            issue_id,
            machine.is_idle,
            lambda tracking: machine.start(
                tracking, user_id, now, new_entry_id(), is_extra_hours=is_extra_hours
            ),
        )
        if issue is None:
            raise ConflictError(f"A timer is already running for issue {issue_id}")
        entry = issue.time_tracking.active_time_entry
        logger.info(
            "Timer started on issue %s by %s at %s%s",
            issue.key,
            user_id,
            now.isoformat(),
            " (extra hours)" if is_extra_hours else "",
        )
        return entry

    def pause(
        self,
        issue_id: str,
        cause: PauseCause = PauseCause.USER,
        *,
        idle_since: Optional[datetime] = None,
        paused_at: Optional[datetime] = None,
    ) -> ActiveTimeEntry:
        """Pause a running timer.

        ``idle_since`` adds a condition for system pauses: the timer's
        ``last_activity_at`` must not have advanced past it, so an activity
        signal that lands first keeps the timer running. ``paused_at``
        back-dates the pause; it is clamped to the range between the
        timer's last activity and now.
        """
        issue_id = normalize_identifier(issue_id, "issue id")
        cause = PauseCause(cause)
        now = self.now()

        def can_pause(tracking: TimeTracking) -> bool:
            if not machine.is_running(tracking):
                return False
            if idle_since is None:
                return True
            return tracking.active_time_entry.last_activity_at <= idle_since

        def apply(tracking: TimeTracking) -> TimeTracking:
            at = now
            if paused_at is not None:
                last_activity = tracking.active_time_entry.last_activity_at
                at = min(max(paused_at, last_activity), now)
            return machine.pause(tracking, cause, at)

        issue = self.repository.conditional_update(issue_id, can_pause, apply)
        if issue is None:
            raise InvalidStateError(f"No running timer to pause on issue {issue_id}")
        entry = issue.time_tracking.active_time_entry
        logger.info(
            "Timer paused on issue %s (%s) at %s",
            issue.key,
            cause.value,
            entry.paused_at.isoformat(),
        )
        return entry

    def resume(self, issue_id: str, *, end_of_day_only: bool = False) -> ActiveTimeEntry:
        issue_id = normalize_identifier(issue_id, "issue id")
        now = self.now()

        def can_resume(tracking: TimeTracking) -> bool:
            if not machine.is_paused(tracking):
                return False
            return not end_of_day_only or tracking.active_time_entry.auto_paused_end_of_day

        issue = self.repository.conditional_update(
            issue_id, can_resume, lambda tracking: machine.resume(tracking, now)
        )
        if issue is None:
            raise InvalidStateError(f"No paused timer to resume on issue {issue_id}")
        entry = issue.time_tracking.active_time_entry
        logger.info(
            "Timer resumed on issue %s at %s (paused %ss in total)",
            issue.key,
            now.isoformat(),
            entry.accumulated_paused_time,
        )
        return entry

    def stop(self, issue_id: str, description: Optional[str] = None) -> TimeEntry:
        issue_id = normalize_identifier(issue_id, "issue id")
        description = normalize_description(description)
        now = self.now()
        completed: list[TimeEntry] = []

        def finish(tracking: TimeTracking) -> TimeTracking:
            updated, entry = machine.stop(tracking, now, description)
            completed.append(entry)
            return updated

        issue = self.repository.conditional_update(issue_id, machine.has_active, finish)
        if issue is None:
            raise InvalidStateError(f"No active timer to stop on issue {issue_id}")
        entry = completed[-1]
        logger.info(
            "Timer stopped on issue %s by %s at %s (duration: %s, paused: %ss)",
            issue.key,
            entry.user_id,
            now.isoformat(),
            _format_hm(entry.duration),
            entry.paused_duration,
        )
        return entry

    def record_activity(self, issue_id: str) -> Optional[ActiveTimeEntry]:
        """Advance ``last_activity_at``; returns ``None`` when paused or idle."""
        issue_id = normalize_identifier(issue_id, "issue id")
        now = self.now()
        issue = self.repository.conditional_update(
            issue_id,
            machine.is_running,
            lambda tracking: machine.record_activity(tracking, now),
        )
        if issue is None:
            return None
        return issue.time_tracking.active_time_entry

    def add_manual_time(
        self,
        issue_id: str,
        user_id: str,
        duration_seconds: int,
        description: Optional[str] = None,
    ) -> TimeLog:
        issue_id = normalize_identifier(issue_id, "issue id")
        user_id = normalize_identifier(user_id, "user id")
        description = normalize_description(description)
        now = self.now()
        logs: list[TimeLog] = []

        def append(tracking: TimeTracking) -> TimeTracking:
            updated, log = machine.add_manual_time(
                tracking, user_id, duration_seconds, now, new_entry_id(), description
            )
            logs.append(log)
            return updated

        issue = self.repository.conditional_update(issue_id, lambda tracking: True, append)
        logger.info(
            "Manual time logged on issue %s by %s: %ss", issue.key, user_id, duration_seconds
        )
        return logs[-1]

    def edit_entry(
        self,
        issue_id: str,
        entry_id: str,
        *,
        duration: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Union[TimeEntry, TimeLog]:
        issue_id = normalize_identifier(issue_id, "issue id")
        entry_id = normalize_identifier(entry_id, "entry id")
        if description is not None:
            # An empty string clears the description.
            description = normalize_description(description) or ""
        edited: list[Union[TimeEntry, TimeLog]] = []

        def apply(tracking: TimeTracking) -> TimeTracking:
            updated, entry = machine.edit_entry(
                tracking, entry_id, duration=duration, description=description
            )
            edited.append(entry)
            return updated

        issue = self.repository.conditional_update(issue_id, lambda tracking: True, apply)
        logger.info(
            "Edited entry %s on issue %s; total is now %ss",
            entry_id,
            issue.key,
            issue.time_tracking.total_time_spent,
        )
        return edited[-1]

    def delete_entry(self, issue_id: str, entry_id: str) -> Union[TimeEntry, TimeLog]:
        issue_id = normalize_identifier(issue_id, "issue id")
        entry_id = normalize_identifier(entry_id, "entry id")
        removed: list[Union[TimeEntry, TimeLog]] = []

        def apply(tracking: TimeTracking) -> TimeTracking:
            updated, entry = machine.delete_entry(tracking, entry_id)
            removed.append(entry)
            return updated

        issue = self.repository.conditional_update(issue_id, lambda tracking: True, apply)
        logger.info(
            "Deleted entry %s on issue %s; total is now %ss",
            entry_id,
            issue.key,
            issue.time_tracking.total_time_spent,
        )
        return removed[-1]

    def status(self, issue_id: str) -> TimerStatus:
        issue = self.issue(issue_id)
        return TimerStatus.from_entry(issue.time_tracking.active_time_entry, self.now())

    def ledger(self, issue_id: str) -> TimeTracking:
        return self.issue(issue_id).time_tracking

    def issue(self, issue_id: str) -> Issue:
        return self.repository.get(normalize_identifier(issue_id, "issue id"))

    def register_issue(
        self,
        issue_id: str,
        key: Optional[str] = None,
        *,
        status: str = "todo",
        assignees: Optional[list[str]] = None,
        estimated_hours: Optional[float] = None,
    ) -> Issue:
        issue_id = normalize_identifier(issue_id, "issue id")
        issue = Issue(
            id=issue_id,
            key=(key or issue_id).strip(),
            status=status,
            assignees=[normalize_identifier(user, "user id") for user in assignees or []],
            time_tracking=TimeTracking(estimated_hours=estimated_hours),
        )
        return self.repository.add(issue)


def _format_hm(seconds: int) -> str:
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
