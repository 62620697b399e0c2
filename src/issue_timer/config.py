"""Configuration models and helpers for the timer service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time, timedelta
from zoneinfo import ZoneInfo


@dataclass(slots=True)
class TimerSettings:
    """Runtime configuration for auto-pause and resume sweeps."""

    inactivity_threshold: timedelta = timedelta(minutes=30)
    end_of_day: time = time(17, 30)
    start_of_day: time = time(9, 0)
    timezone: str = "UTC"
    weekdays_only: bool = True
    auto_pause_enabled: bool = True
    start_missing_timers: bool = False
    sweep_interval: timedelta = timedelta(seconds=60)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_options(
        cls,
        inactivity_minutes: float = 30.0,
        end_of_day: str = "17:30",
        start_of_day: str = "09:00",
        timezone: str = "UTC",
        weekdays_only: bool = True,
        auto_pause_enabled: bool = True,
        start_missing_timers: bool = False,
        sweep_seconds: float | None = None,
    ) -> "TimerSettings":
        if inactivity_minutes <= 0:
            raise ValueError("inactivity_minutes must be positive")
        sweep = sweep_seconds if sweep_seconds is not None else 60.0
        if sweep <= 0:
            raise ValueError("sweep_seconds must be positive")
        try:
            ZoneInfo(timezone)
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {timezone}") from exc
        return cls(
            inactivity_threshold=timedelta(minutes=inactivity_minutes),
            end_of_day=parse_clock_time(end_of_day),
            start_of_day=parse_clock_time(start_of_day),
            timezone=timezone,
            weekdays_only=weekdays_only,
            auto_pause_enabled=auto_pause_enabled,
            start_missing_timers=start_missing_timers,
            sweep_interval=timedelta(seconds=sweep),
        )


def parse_clock_time(value: str) -> time:
    """Parse an ``HH:MM`` wall-clock time."""
    try:
        hour_text, minute_text = value.strip().split(":")
        return time(int(hour_text), int(minute_text))
    except ValueError as exc:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM") from exc
