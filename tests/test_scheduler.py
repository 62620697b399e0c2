import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from issue_timer.config import TimerSettings
from issue_timer.models import PauseCause
from issue_timer.scheduler import AutoPauseScheduler, ResumeSweep, SchedulerRunner

from conftest import T0

UTC = timezone.utc


def monday(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute, tzinfo=UTC)


def tuesday(hour, minute=0):
    return datetime(2026, 3, 3, hour, minute, tzinfo=UTC)


@pytest.fixture
def settings() -> TimerSettings:
    return TimerSettings()


@pytest.fixture
def auto_pause(service, settings) -> AutoPauseScheduler:
    return AutoPauseScheduler(service, settings)


@pytest.fixture
def resume_sweep(service, settings) -> ResumeSweep:
    return ResumeSweep(service, settings)


class TestAutoPause:
    def test_inactive_timer_is_paused(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(minutes=31)
        report = auto_pause.sweep()
        assert report.paused == [("ISS-1", PauseCause.INACTIVITY)]
        entry = service.ledger("ISS-1").active_time_entry
        assert entry.is_paused
        assert entry.pause_cause is PauseCause.INACTIVITY
        assert not entry.auto_paused_end_of_day

    def test_inactivity_pause_starts_at_last_activity(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(minutes=10)
        service.record_activity("ISS-1")
        clock.advance(minutes=35)
        auto_pause.sweep()

        entry = service.ledger("ISS-1").active_time_entry
        assert entry.paused_at == T0 + timedelta(minutes=10)
        clock.advance(hours=2)
        assert service.stop("ISS-1").duration == 10 * 60

    def test_end_of_day_pause_starts_at_sweep_time(self, service, clock, auto_pause):
        clock.set(monday(17, 25))
        service.start("ISS-1", "alice")
        clock.set(monday(17, 31))
        auto_pause.sweep()
        assert service.ledger("ISS-1").active_time_entry.paused_at == monday(17, 31)

    def test_threshold_is_exclusive(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(minutes=30)
        assert auto_pause.sweep().paused == []

    def test_activity_keeps_timer_running(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(minutes=25)
        service.record_activity("ISS-1")
        clock.advance(minutes=25)
        assert auto_pause.sweep().paused == []
        assert not service.ledger("ISS-1").active_time_entry.is_paused

    def test_end_of_day_cutoff(self, service, clock, auto_pause):
        clock.set(monday(17))
        service.start("ISS-1", "alice")
        clock.set(monday(17, 25))
        service.record_activity("ISS-1")
        clock.set(monday(17, 31))
        report = auto_pause.sweep()
        assert report.paused == [("ISS-1", PauseCause.END_OF_DAY)]
        assert service.ledger("ISS-1").active_time_entry.auto_paused_end_of_day

    def test_inactivity_wins_over_end_of_day(self, service, clock, auto_pause):
        clock.set(monday(17))
        service.start("ISS-1", "alice")
        clock.set(monday(17, 45))
        assert auto_pause.sweep().paused == [("ISS-1", PauseCause.INACTIVITY)]

    def test_timer_started_after_cutoff_keeps_running(self, service, clock, auto_pause):
        clock.set(monday(17, 40))
        service.start("ISS-1", "alice", is_extra_hours=True)
        clock.set(monday(17, 50))
        assert auto_pause.sweep().paused == []

    def test_weekend_has_no_cutoff(self, service, clock, auto_pause):
        saturday = datetime(2026, 3, 7, 17, 20, tzinfo=UTC)
        clock.set(saturday)
        service.start("ISS-1", "alice")
        clock.set(saturday + timedelta(minutes=15))
        assert auto_pause.sweep().paused == []

    def test_every_day_applies_cutoff_on_weekends(self, service, clock, settings):
        settings.weekdays_only = False
        saturday = datetime(2026, 3, 7, 17, 20, tzinfo=UTC)
        clock.set(saturday)
        service.start("ISS-1", "alice")
        clock.set(saturday + timedelta(minutes=15))
        report = AutoPauseScheduler(service, settings).sweep()
        assert report.paused == [("ISS-1", PauseCause.END_OF_DAY)]

    def test_cutoff_uses_configured_timezone(self, service, clock, settings):
        settings.timezone = "Africa/Tunis"
        # 16:31 UTC is 17:31 in Tunis (UTC+1, no daylight saving).
        clock.set(monday(16))
        service.start("ISS-1", "alice")
        clock.set(monday(16, 20))
        service.record_activity("ISS-1")
        clock.set(monday(16, 31))
        report = AutoPauseScheduler(service, settings).sweep()
        assert report.paused == [("ISS-1", PauseCause.END_OF_DAY)]

    def test_sweep_is_idempotent(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(hours=1)
        assert len(auto_pause.sweep().paused) == 1
        version = service.issue("ISS-1").version
        assert auto_pause.sweep().paused == []
        assert service.issue("ISS-1").version == version

    def test_user_paused_timer_is_left_alone(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        service.pause("ISS-1")
        clock.advance(hours=2)
        auto_pause.sweep()
        assert service.ledger("ISS-1").active_time_entry.pause_cause is PauseCause.USER

    def test_activity_between_scan_and_pause_wins(
        self, service, clock, auto_pause, monkeypatch
    ):
        service.start("ISS-1", "alice")
        clock.advance(minutes=40)
        stale = service.repository.find_running()
        service.record_activity("ISS-1")
        monkeypatch.setattr(service.repository, "find_running", lambda: stale)

        report = auto_pause.sweep()

        assert report.paused == []
        assert report.skipped == ["ISS-1"]
        assert not service.ledger("ISS-1").active_time_entry.is_paused

    def test_disabled(self, service, clock, settings):
        settings.auto_pause_enabled = False
        service.start("ISS-1", "alice")
        clock.advance(hours=3)
        assert AutoPauseScheduler(service, settings).sweep().paused == []

    def test_report_document(self, service, clock, auto_pause):
        service.start("ISS-1", "alice")
        clock.advance(hours=1)
        document = auto_pause.sweep().to_document()
        assert document["paused"] == [{"issueId": "ISS-1", "cause": "inactivity"}]
        assert document["ranAt"] == clock().isoformat()


class TestResumeSweep:
    @pytest.fixture
    def paused_overnight(self, service, clock):
        service.register_issue("ISS-2", "PRJ-2", status="in_progress")
        service.register_issue("ISS-3", "PRJ-3", status="in_progress")
        clock.set(monday(17))
        for issue_id in ("ISS-1", "ISS-2", "ISS-3"):
            service.start(issue_id, "alice")
        clock.set(monday(17, 31))
        service.pause("ISS-1", PauseCause.USER)
        service.pause("ISS-2", PauseCause.INACTIVITY)
        service.pause("ISS-3", PauseCause.END_OF_DAY)
        return service

    def test_only_end_of_day_pauses_resume(self, paused_overnight, clock, resume_sweep):
        clock.set(tuesday(9, 5))
        report = resume_sweep.sweep()
        assert report.resumed == ["ISS-3"]
        ledger = paused_overnight.ledger
        assert not ledger("ISS-3").active_time_entry.is_paused
        assert ledger("ISS-1").active_time_entry.pause_cause is PauseCause.USER
        assert ledger("ISS-2").active_time_entry.pause_cause is PauseCause.INACTIVITY

    def test_not_due_before_start_of_day(self, paused_overnight, clock, resume_sweep):
        clock.set(tuesday(8))
        assert resume_sweep.sweep().resumed == []
        assert paused_overnight.ledger("ISS-3").active_time_entry.is_paused

    def test_force_resumes_early(self, paused_overnight, clock, resume_sweep):
        clock.set(tuesday(8))
        assert resume_sweep.sweep(force=True).resumed == ["ISS-3"]

    def test_resumed_timer_credits_the_night(self, paused_overnight, clock, resume_sweep):
        clock.set(tuesday(9))
        resume_sweep.sweep()
        entry = paused_overnight.ledger("ISS-3").active_time_entry
        assert entry.accumulated_paused_time == int(timedelta(hours=15, minutes=29).total_seconds())

    def test_friday_pause_waits_for_monday(self, service, clock, resume_sweep):
        friday = datetime(2026, 3, 6, 17, 0, tzinfo=UTC)
        clock.set(friday)
        service.start("ISS-1", "alice")
        clock.set(friday + timedelta(minutes=31))
        service.pause("ISS-1", PauseCause.END_OF_DAY)

        clock.set(datetime(2026, 3, 7, 10, 0, tzinfo=UTC))
        assert resume_sweep.sweep().resumed == []
        clock.set(datetime(2026, 3, 9, 9, 1, tzinfo=UTC))
        assert resume_sweep.sweep().resumed == ["ISS-1"]

    def test_overnight_session(self, service, clock, resume_sweep):
        sunday_night = datetime(2026, 3, 1, 22, 0, tzinfo=UTC)
        clock.set(sunday_night)
        service.start("ISS-1", "alice")
        clock.set(sunday_night + timedelta(hours=8))
        service.pause("ISS-1", PauseCause.END_OF_DAY)
        clock.set(sunday_night + timedelta(hours=16))
        assert resume_sweep.sweep().resumed == ["ISS-1"]
        assert service.ledger("ISS-1").active_time_entry.accumulated_paused_time == 8 * 3600

        clock.set(sunday_night + timedelta(hours=17))
        entry = service.stop("ISS-1")
        assert entry.duration == 9 * 3600

    def test_pause_then_resume_round_trip(self, service, clock, settings):
        clock.set(monday(17))
        service.start("ISS-1", "alice")
        clock.set(monday(17, 20))
        service.record_activity("ISS-1")
        clock.set(monday(17, 35))
        assert AutoPauseScheduler(service, settings).sweep().paused == [
            ("ISS-1", PauseCause.END_OF_DAY)
        ]
        clock.set(tuesday(9, 1))
        assert ResumeSweep(service, settings).sweep().resumed == ["ISS-1"]


class TestStartMissingTimers:
    @pytest.fixture
    def sweep(self, service, settings):
        settings.start_missing_timers = True
        return ResumeSweep(service, settings)

    def test_starts_timer_for_assignee(self, service, clock, sweep):
        service.register_issue("ISS-2", "PRJ-2", status="in_progress")
        service.register_issue("ISS-3", "PRJ-3", status="todo", assignees=["bob"])
        clock.set(monday(9, 5))

        report = sweep.sweep()

        assert report.started == ["ISS-1"]
        assert service.ledger("ISS-1").active_time_entry.user_id == "alice"
        assert service.ledger("ISS-2").active_time_entry is None
        assert service.ledger("ISS-3").active_time_entry is None

    def test_timer_stopped_today_stays_stopped(self, service, clock, sweep):
        clock.set(monday(9, 1))
        service.start("ISS-1", "alice")
        clock.set(monday(9, 3))
        service.stop("ISS-1")
        clock.set(monday(9, 5))
        assert sweep.sweep().started == []

    @pytest.mark.parametrize(
        "now",
        [
            datetime(2026, 3, 6, 20, 0, tzinfo=UTC),
            datetime(2026, 3, 7, 11, 0, tzinfo=UTC),
            datetime(2026, 3, 8, 10, 0, tzinfo=UTC),
            datetime(2026, 3, 9, 8, 0, tzinfo=UTC),
            datetime(2026, 3, 9, 17, 30, tzinfo=UTC),
        ],
        ids=["friday-evening", "saturday", "sunday", "monday-early", "monday-cutoff"],
    )
    def test_nothing_starts_outside_the_workday(self, service, clock, sweep, now):
        clock.set(now)
        assert sweep.sweep().started == []
        assert service.ledger("ISS-1").active_time_entry is None

    def test_starts_later_in_the_workday(self, service, clock, sweep):
        clock.set(monday(16))
        assert sweep.sweep().started == ["ISS-1"]

    def test_disabled_by_default(self, service, clock, resume_sweep):
        clock.set(monday(9, 5))
        assert resume_sweep.sweep().started == []


class TestSchedulerRunner:
    def test_tick_survives_failing_sweep(self, service, settings, monkeypatch, caplog):
        runner = SchedulerRunner(service, settings)
        calls = []

        def explode(*args, **kwargs):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(runner.auto_pause, "sweep", explode)
        monkeypatch.setattr(runner.resume_sweep, "sweep", lambda: calls.append("resume"))

        with caplog.at_level(logging.ERROR, logger="issue_timer.scheduler"):
            runner.tick()

        assert "Auto-pause sweep failed." in caplog.text
        assert calls == ["resume"]

    def test_start_and_stop(self, service):
        settings = replace(TimerSettings(), sweep_interval=timedelta(milliseconds=10))
        runner = SchedulerRunner(service, settings)
        runner.start()
        try:
            assert runner.is_running()
            runner.start()
            assert runner.is_running()
        finally:
            runner.stop()
        assert not runner.is_running()

    def test_background_sweep_pauses_idle_timer(self, service, clock):
        service.start("ISS-1", "alice")
        clock.advance(hours=1)
        runner = SchedulerRunner(service, TimerSettings())
        runner.tick()
        assert service.ledger("ISS-1").active_time_entry.pause_cause is PauseCause.INACTIVITY
