import logging
from dataclasses import replace

import pytest

from issue_timer.errors import IssueNotFoundError
from issue_timer.reconcile import Reconciler, is_consistent, recompute, total_seconds


def corrupt(repository, issue_id, **changes):
    repository.conditional_update(
        issue_id, lambda tracking: True, lambda tracking: replace(tracking, **changes)
    )


@pytest.fixture
def reconciler(repository) -> Reconciler:
    return Reconciler(repository)


def test_repairs_drifted_total(service, clock, reconciler, caplog):
    service.start("ISS-1", "alice")
    clock.advance(minutes=45)
    service.stop("ISS-1")
    service.add_manual_time("ISS-1", "alice", 900)
    corrupt(service.repository, "ISS-1", total_time_spent=10)

    with caplog.at_level(logging.WARNING, logger="issue_timer.reconcile"):
        result = reconciler.reconcile("ISS-1")

    assert result.drifted
    assert (result.before, result.after) == (10, 45 * 60 + 900)
    assert service.ledger("ISS-1").total_time_spent == 45 * 60 + 900
    assert "Repaired totals for issue ISS-1" in caplog.text


def test_consistent_issue_is_not_written(service, reconciler):
    service.add_manual_time("ISS-1", "alice", 600)
    version = service.issue("ISS-1").version
    result = reconciler.reconcile("ISS-1")
    assert not result.drifted
    assert result.after == 600
    assert service.issue("ISS-1").version == version


def test_active_timer_never_counts(service, clock):
    service.start("ISS-1", "alice")
    clock.advance(hours=3)
    ledger = service.ledger("ISS-1")
    assert total_seconds(ledger) == 0
    assert is_consistent(ledger)


def test_reconcile_all_reports_only_drift(service, reconciler):
    service.register_issue("ISS-2", "PRJ-2")
    service.add_manual_time("ISS-2", "bob", 1200)
    corrupt(service.repository, "ISS-2", total_time_spent=0)

    results = reconciler.reconcile_all()

    assert [result.issue_id for result in results] == ["ISS-2"]
    assert service.ledger("ISS-2").total_time_spent == 1200


def test_unknown_issue(reconciler):
    with pytest.raises(IssueNotFoundError):
        reconciler.reconcile("ISS-404")


def test_repairs_logged_hours_drift(service, reconciler, caplog):
    service.add_manual_time("ISS-1", "alice", 1800)
    corrupt(service.repository, "ISS-1", logged_hours=0.0)

    with caplog.at_level(logging.WARNING, logger="issue_timer.reconcile"):
        results = reconciler.reconcile_all()

    assert len(results) == 1
    result = results[0]
    assert result.drifted
    assert result.before == result.after == 1800
    assert (result.logged_hours_before, result.logged_hours_after) == (0.0, 0.5)
    assert service.ledger("ISS-1").logged_hours == 0.5
    assert "Repaired totals for issue ISS-1" in caplog.text


def test_recompute_is_idempotent(service, clock):
    service.start("ISS-1", "alice")
    clock.advance(minutes=20)
    service.stop("ISS-1")
    service.add_manual_time("ISS-1", "alice", 900)
    drifted = replace(service.ledger("ISS-1"), total_time_spent=5, logged_hours=3.0)

    once = recompute(drifted)

    assert recompute(once) == once
    assert once.total_time_spent == 20 * 60 + 900
    assert once.logged_hours == 0.25


def test_second_reconcile_finds_nothing(service, reconciler):
    service.add_manual_time("ISS-1", "alice", 600)
    corrupt(service.repository, "ISS-1", total_time_spent=0)
    assert reconciler.reconcile("ISS-1").drifted
    version = service.issue("ISS-1").version

    again = reconciler.reconcile("ISS-1")

    assert not again.drifted
    assert again.after == 600
    assert service.issue("ISS-1").version == version
