"""Recompute aggregate logged time from the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from .models import TimeTracking

if TYPE_CHECKING:
    from .db import IssueRepository

logger = logging.getLogger(__name__)


def total_seconds(tracking: TimeTracking) -> int:
    """Completed sessions plus manual logs; an in-progress timer never counts."""
    automatic = sum(entry.duration for entry in tracking.time_entries)
    manual = sum(log.seconds for log in tracking.time_logs)
    return automatic + manual


def logged_hours(tracking: TimeTracking) -> float:
    return sum(log.hours for log in tracking.time_logs)


def recompute(tracking: TimeTracking) -> TimeTracking:
    return replace(
        tracking,
        total_time_spent=total_seconds(tracking),
        logged_hours=logged_hours(tracking),
    )


def is_consistent(tracking: TimeTracking) -> bool:
    return (
        tracking.total_time_spent == total_seconds(tracking)
        and tracking.logged_hours == logged_hours(tracking)
    )


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    issue_id: str
    before: int
    after: int
    logged_hours_before: float = 0.0
    logged_hours_after: float = 0.0

    @property
    def drifted(self) -> bool:
        return (
            self.before != self.after
            or self.logged_hours_before != self.logged_hours_after
        )


class Reconciler:
    """Repairs stored totals so they match the ledger they summarize."""

    def __init__(self, repository: "IssueRepository") -> None:
        self._repository = repository

    def reconcile(self, issue_id: str) -> ReconcileResult:
        observed: list[TimeTracking] = []

        def repair(tracking: TimeTracking) -> TimeTracking:
            observed.append(tracking)
            return recompute(tracking)

        updated = self._repository.conditional_update(
            issue_id, lambda tracking: not is_consistent(tracking), repair
        )
        if updated is None:
            current = self._repository.get(issue_id).time_tracking
            return ReconcileResult(
                issue_id=issue_id,
                before=current.total_time_spent,
                after=current.total_time_spent,
                logged_hours_before=current.logged_hours,
                logged_hours_after=current.logged_hours,
            )
        before = observed[-1]
        after = updated.time_tracking
        result = ReconcileResult(
            issue_id=issue_id,
            before=before.total_time_spent,
            after=after.total_time_spent,
            logged_hours_before=before.logged_hours,
            logged_hours_after=after.logged_hours,
        )
        if result.drifted:
            logger.warning(
                "Repaired totals for issue %s: %ss -> %ss, logged hours %s -> %s",
                issue_id,
                result.before,
                result.after,
                result.logged_hours_before,
                result.logged_hours_after,
            )
        return result

    def reconcile_all(self) -> list[ReconcileResult]:
        """Reconcile every issue and return the ones whose totals drifted."""
        repaired: list[ReconcileResult] = []
        for issue_id in self._repository.list_ids():
            result = self.reconcile(issue_id)
            if result.drifted:
                repaired.append(result)
        logger.info("Reconciliation pass complete; %d issue(s) repaired.", len(repaired))
        return repaired
