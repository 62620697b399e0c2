"""Wall-clock boundary helpers for end-of-day and start-of-day checks."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def latest_boundary(
    now: datetime,
    at: time,
    zone: ZoneInfo,
    *,
    weekdays_only: bool = False,
) -> Optional[datetime]:
    """Return the most recent instant at or before ``now`` whose local time is ``at``.

    Saturdays and Sundays are skipped when ``weekdays_only`` is set. The result
    is expressed in UTC.
    """
    local_now = now.astimezone(zone)
    for days_back in range(8):
        day = local_now.date() - timedelta(days=days_back)
        if weekdays_only and day.weekday() >= 5:
            continue
        candidate = datetime.combine(day, at, tzinfo=zone)
        if candidate <= local_now:
            return candidate.astimezone(timezone.utc)
    return None

