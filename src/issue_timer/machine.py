"""Timer state machine: legal transitions over an issue's time ledger.

Every transition takes the current :class:`TimeTracking` and returns a new
one; inputs are never mutated, so a transition can be retried against a
fresh read when a concurrent writer wins. Illegal transitions raise
:class:`ConflictError` or :class:`InvalidStateError`.

All durations are whole seconds. A computed duration that comes out negative
(clock skew between ``start_time`` and ``now``) is clamped to zero and logged
as an anomaly instead of rejected.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Union

from .errors import ConflictError, EntryNotFoundError, InvalidStateError, ValidationError
from .models import (
    ActiveTimeEntry,
    PauseCause,
    TimeEntry,
    TimeLog,
    TimeTracking,
    seconds_between,
)
from .reconcile import recompute

logger = logging.getLogger(__name__)


def is_idle(tracking: TimeTracking) -> bool:
    return tracking.active_time_entry is None


def has_active(tracking: TimeTracking) -> bool:
    return tracking.active_time_entry is not None


def is_running(tracking: TimeTracking) -> bool:
    entry = tracking.active_time_entry
    return entry is not None and not entry.is_paused


def is_paused(tracking: TimeTracking) -> bool:
    entry = tracking.active_time_entry
    return entry is not None and entry.is_paused


def start(
    tracking: TimeTracking,
    user_id: str,
    now: datetime,
    entry_id: str,
    *,
    is_extra_hours: bool = False,
) -> TimeTracking:
    if tracking.active_time_entry is not None:
        raise ConflictError(
            f"A timer is already running for this issue "
            f"(started by {tracking.active_time_entry.user_id})"
        )
    entry = ActiveTimeEntry(
        id=entry_id,
        user_id=user_id,
        start_time=now,
        last_activity_at=now,
        is_extra_hours=is_extra_hours,
    )
    return replace(tracking, active_time_entry=entry)


def pause(tracking: TimeTracking, cause: PauseCause, now: datetime) -> TimeTracking:
    entry = tracking.active_time_entry
    if entry is None:
        raise InvalidStateError("No active timer to pause")
    if entry.is_paused:
        raise InvalidStateError("Timer is already paused")
    # The interval is credited to accumulated_paused_time on resume or stop.
    paused = replace(
        entry,
        is_paused=True,
        paused_at=now,
        pause_cause=cause,
        auto_paused_end_of_day=cause is PauseCause.END_OF_DAY,
    )
    return replace(tracking, active_time_entry=paused)


def resume(tracking: TimeTracking, now: datetime) -> TimeTracking:
    entry = tracking.active_time_entry
    if entry is None or not entry.is_paused:
        raise InvalidStateError("Timer is not paused")
    resumed = replace(
        entry,
        is_paused=False,
        paused_at=None,
        pause_cause=None,
        accumulated_paused_time=entry.accumulated_paused_time + _pause_interval(entry, now),
        auto_paused_end_of_day=False,
        last_activity_at=now,
    )
    return replace(tracking, active_time_entry=resumed)


def record_activity(tracking: TimeTracking, now: datetime) -> TimeTracking:
    if not is_running(tracking):
        return tracking
    entry = replace(tracking.active_time_entry, last_activity_at=now)
    return replace(tracking, active_time_entry=entry)


def stop(
    tracking: TimeTracking,
    now: datetime,
    description: Optional[str] = None,
) -> tuple[TimeTracking, TimeEntry]:
    entry = tracking.active_time_entry
    if entry is None:
        raise InvalidStateError("No active timer to stop")

    paused_total = entry.accumulated_paused_time
    if entry.is_paused:
        paused_total += _pause_interval(entry, now)

    duration = seconds_between(entry.start_time, now) - paused_total
    if duration < 0:
        logger.warning(
            "Clock anomaly stopping timer %s: start=%s end=%s paused=%ss "
            "gives %ss; recording 0s.",
            entry.id,
            entry.start_time.isoformat(),
            now.isoformat(),
            paused_total,
            duration,
        )
        duration = 0

    completed = TimeEntry(
        id=entry.id,
        user_id=entry.user_id,
        start_time=entry.start_time,
        end_time=now,
        duration=duration,
        paused_duration=paused_total,
        description=description,
        created_at=now,
    )
    updated = replace(
        tracking,
        active_time_entry=None,
        time_entries=tracking.time_entries + (completed,),
    )
    return recompute(updated), completed


def add_manual_time(
    tracking: TimeTracking,
    user_id: str,
    seconds: int,
    now: datetime,
    log_id: str,
    description: Optional[str] = None,
) -> tuple[TimeTracking, TimeLog]:
    _require_positive_seconds(seconds)
    log = TimeLog(
        id=log_id,
        user_id=user_id,
        hours=seconds / 3600,
        date=now,
        description=description,
    )
    updated = replace(tracking, time_logs=tracking.time_logs + (log,))
    return recompute(updated), log


def edit_entry(
    tracking: TimeTracking,
    entry_id: str,
    *,
    duration: Optional[int] = None,
    description: Optional[str] = None,
) -> tuple[TimeTracking, Union[TimeEntry, TimeLog]]:
    if duration is None and description is None:
        raise ValidationError("Nothing to update: provide a duration or description")

    for index, entry in enumerate(tracking.time_entries):
        if entry.id != entry_id:
            continue
        changes: dict = {}
        if duration is not None:
            if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
                raise ValidationError("duration must be a non-negative number of seconds")
            # Keep duration = (end - start) - paused by moving the end time.
            changes["duration"] = duration
            changes["end_time"] = entry.start_time + timedelta(
                seconds=entry.paused_duration + duration
            )
        if description is not None:
            changes["description"] = description or None
        edited = replace(entry, **changes)
        entries = tracking.time_entries[:index] + (edited,) + tracking.time_entries[index + 1:]
        return recompute(replace(tracking, time_entries=entries)), edited

    for index, log in enumerate(tracking.time_logs):
        if log.id != entry_id:
            continue
        log_changes: dict = {}
        if duration is not None:
            _require_positive_seconds(duration)
            log_changes["hours"] = duration / 3600
        if description is not None:
            log_changes["description"] = description or None
        edited_log = replace(log, **log_changes)
        logs = tracking.time_logs[:index] + (edited_log,) + tracking.time_logs[index + 1:]
        return recompute(replace(tracking, time_logs=logs)), edited_log

    raise EntryNotFoundError(entry_id)


def delete_entry(
    tracking: TimeTracking, entry_id: str
) -> tuple[TimeTracking, Union[TimeEntry, TimeLog]]:
    for entry in tracking.time_entries:
        if entry.id == entry_id:
            remaining = tuple(item for item in tracking.time_entries if item.id != entry_id)
            return recompute(replace(tracking, time_entries=remaining)), entry
    for log in tracking.time_logs:
        if log.id == entry_id:
            remaining_logs = tuple(item for item in tracking.time_logs if item.id != entry_id)
            return recompute(replace(tracking, time_logs=remaining_logs)), log
    raise EntryNotFoundError(entry_id)


def _pause_interval(entry: ActiveTimeEntry, now: datetime) -> int:
    if entry.paused_at is None:
        logger.warning(
            "Timer %s is marked paused without a pausedAt timestamp; crediting 0s.",
            entry.id,
        )
        return 0
    interval = seconds_between(entry.paused_at, now)
    if interval < 0:
        logger.warning(
            "Clock anomaly on timer %s: pausedAt=%s is after %s; crediting 0s.",
            entry.id,
            entry.paused_at.isoformat(),
            now.isoformat(),
        )
        return 0
    return interval


def _require_positive_seconds(seconds: object) -> None:
    if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
        raise ValidationError("duration must be a positive number of seconds")
