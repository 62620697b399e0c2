from datetime import datetime, timedelta, timezone

import pytest

from issue_timer.db import IssueRepository
from issue_timer.service import TimerService

# Monday.
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable time source shared by the service and the sweeps."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> datetime:
        self.current = value
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "issues.sqlite3"


@pytest.fixture
def repository(db_path) -> IssueRepository:
    return IssueRepository(db_path)


@pytest.fixture
def service(repository, clock) -> TimerService:
    timer_service = TimerService(repository, clock=clock)
    timer_service.register_issue("ISS-1", "PRJ-1", status="in_progress", assignees=["alice"])
    return timer_service
