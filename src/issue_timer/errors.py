"""Typed failures raised by the timer service."""

from __future__ import annotations


class TimerError(Exception):
    """Base class for failures scoped to a single issue's timer."""

    code = "timer_error"
    status_code = 400


class ConflictError(TimerError):
    """A timer is already running, or a concurrent update kept winning."""

    code = "conflict"
    status_code = 409


class InvalidStateError(TimerError):
    """The requested transition is not legal from the timer's current state."""

    code = "invalid_state"
    status_code = 409


class ValidationError(TimerError):
    code = "validation_error"
    status_code = 422


class NotFoundError(TimerError):
    code = "not_found"
    status_code = 404


class IssueNotFoundError(NotFoundError):
    def __init__(self, issue_id: str) -> None:
        super().__init__(f"No issue found for id={issue_id}")
        self.issue_id = issue_id


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"No time entry or log found for id={entry_id}")
        self.entry_id = entry_id
