"""Domain models for the per-issue time ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class PauseCause(str, Enum):
    USER = "user"
    INACTIVITY = "inactivity"
    END_OF_DAY = "end_of_day"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from ``start`` to ``end`` (negative if ``end`` is earlier)."""
    return int((end - start).total_seconds())


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class ActiveTimeEntry:
    """The in-progress timer session of an issue."""

    id: str
    user_id: str
    start_time: datetime
    last_activity_at: datetime
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    accumulated_paused_time: int = 0
    auto_paused_end_of_day: bool = False
    is_extra_hours: bool = False
    pause_cause: Optional[PauseCause] = None

    def open_pause_seconds(self, now: datetime) -> int:
        if not self.is_paused or self.paused_at is None:
            return 0
        return max(0, seconds_between(self.paused_at, now))

    def worked_seconds(self, now: datetime) -> int:
        elapsed = seconds_between(self.start_time, now)
        paused = self.accumulated_paused_time + self.open_pause_seconds(now)
        return max(0, elapsed - paused)

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "startTime": format_timestamp(self.start_time),
            "lastActivityAt": format_timestamp(self.last_activity_at),
            "isPaused": self.is_paused,
            "accumulatedPausedTime": self.accumulated_paused_time,
            "autoPausedEndOfDay": self.auto_paused_end_of_day,
            "isExtraHours": self.is_extra_hours,
        }
        if self.paused_at is not None:
            document["pausedAt"] = format_timestamp(self.paused_at)
        if self.pause_cause is not None:
            document["pauseCause"] = self.pause_cause.value
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ActiveTimeEntry":
        cause = document.get("pauseCause")
        start_time = parse_timestamp(document["startTime"])
        return cls(
            id=str(document["id"]),
            user_id=str(document["userId"]),
            start_time=start_time,
            last_activity_at=parse_timestamp(document.get("lastActivityAt")) or start_time,
            is_paused=bool(document.get("isPaused", False)),
            paused_at=parse_timestamp(document.get("pausedAt")),
            accumulated_paused_time=int(document.get("accumulatedPausedTime") or 0),
            auto_paused_end_of_day=bool(document.get("autoPausedEndOfDay", False)),
            is_extra_hours=bool(document.get("isExtraHours", False)),
            pause_cause=PauseCause(cause) if cause else None,
        )


@dataclass(frozen=True, slots=True)
class TimeEntry:
    """A completed automatic work session."""

    id: str
    user_id: str
    start_time: datetime
    end_time: datetime
    duration: int
    paused_duration: int = 0
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    source: str = "automatic"

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "duration": self.duration,
            "source": self.source,
            "pausedDuration": self.paused_duration,
            "createdAt": format_timestamp(self.created_at or self.end_time),
        }
        if self.description is not None:
            document["description"] = self.description
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "TimeEntry":
        return cls(
            id=str(document["id"]),
            user_id=str(document["userId"]),
            start_time=parse_timestamp(document["startTime"]),
            end_time=parse_timestamp(document["endTime"]),
            duration=int(document.get("duration") or 0),
            paused_duration=int(document.get("pausedDuration") or 0),
            description=document.get("description"),
            created_at=parse_timestamp(document.get("createdAt")),
            source=document.get("source", "automatic"),
        )


@dataclass(frozen=True, slots=True)
class TimeLog:
    """A manual time correction, not tied to a timer session."""

    id: str
    user_id: str
    hours: float
    date: datetime
    description: Optional[str] = None

    @property
    def seconds(self) -> int:
        return int(round(self.hours * 3600))

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "hours": self.hours,
            "date": format_timestamp(self.date),
        }
        if self.description is not None:
            document["description"] = self.description
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "TimeLog":
        return cls(
            id=str(document["id"]),
            user_id=str(document["userId"]),
            hours=float(document["hours"]),
            date=parse_timestamp(document["date"]),
            description=document.get("description"),
        )


@dataclass(frozen=True, slots=True)
class TimeTracking:
    """The durable time ledger embedded in an issue record."""

    estimated_hours: Optional[float] = None
    logged_hours: float = 0.0
    time_logs: tuple[TimeLog, ...] = ()
    time_entries: tuple[TimeEntry, ...] = ()
    active_time_entry: Optional[ActiveTimeEntry] = None
    total_time_spent: int = 0

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "loggedHours": self.logged_hours,
            "timeLogs": [log.to_document() for log in self.time_logs],
            "timeEntries": [entry.to_document() for entry in self.time_entries],
            "totalTimeSpent": self.total_time_spent,
        }
        if self.estimated_hours is not None:
            document["estimatedHours"] = self.estimated_hours
        # Idle is the absence of the key, never an explicit null.
        if self.active_time_entry is not None:
            document["activeTimeEntry"] = self.active_time_entry.to_document()
        return document

    @classmethod
    def from_document(cls, document: Optional[dict[str, Any]]) -> "TimeTracking":
        if not document:
            return cls()
        active = document.get("activeTimeEntry")
        estimated = document.get("estimatedHours")
        return cls(
            estimated_hours=float(estimated) if estimated is not None else None,
            logged_hours=float(document.get("loggedHours") or 0.0),
            time_logs=tuple(
                TimeLog.from_document(item) for item in document.get("timeLogs") or []
            ),
            time_entries=tuple(
                TimeEntry.from_document(item)
                for item in document.get("timeEntries") or []
            ),
            active_time_entry=ActiveTimeEntry.from_document(active) if active else None,
            total_time_spent=int(document.get("totalTimeSpent") or 0),
        )


@dataclass(slots=True)
class Issue:
    """The slice of an issue record this service reads and writes."""

    id: str
    key: str
    status: str = "todo"
    assignees: list[str] = field(default_factory=list)
    time_tracking: TimeTracking = field(default_factory=TimeTracking)
    version: int = 0


@dataclass(frozen=True, slots=True)
class TimerStatus:
    """Snapshot of an issue's timer as seen at ``checked_at``."""

    is_running: bool
    is_paused: bool
    current_duration: int
    checked_at: datetime
    user_id: Optional[str] = None
    start_time: Optional[datetime] = None
    pause_cause: Optional[PauseCause] = None
    is_extra_hours: bool = False

    @classmethod
    def from_entry(
        cls, entry: Optional[ActiveTimeEntry], now: datetime
    ) -> "TimerStatus":
        if entry is None:
            return cls(is_running=False, is_paused=False, current_duration=0, checked_at=now)
        return cls(
            is_running=not entry.is_paused,
            is_paused=entry.is_paused,
            current_duration=entry.worked_seconds(now),
            checked_at=now,
            user_id=entry.user_id,
            start_time=entry.start_time,
            pause_cause=entry.pause_cause,
            is_extra_hours=entry.is_extra_hours,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "currentDuration": self.current_duration,
            "checkedAt": format_timestamp(self.checked_at),
            "userId": self.user_id,
            "startTime": format_timestamp(self.start_time),
            "pauseCause": self.pause_cause.value if self.pause_cause else None,
            "isExtraHours": self.is_extra_hours,
        }
