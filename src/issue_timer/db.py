"""SQLite database layer for issue time ledgers."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import ConflictError, IssueNotFoundError
from .models import Issue, TimeTracking, format_timestamp, utcnow

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 8

LedgerPredicate = Callable[[TimeTracking], bool]
LedgerPatch = Callable[[TimeTracking], TimeTracking]


def open_database(
    path: Path, *, check_same_thread: bool = True, initialize: bool = True
) -> sqlite3.Connection:
    """Open (and optionally initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
        timeout=10.0,
    )
    conn.row_factory = sqlite3.Row
    if initialize:
        initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True, initialize: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(
        path, check_same_thread=check_same_thread, initialize=initialize
    )
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS issues (
            id TEXT PRIMARY KEY,
            key TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'todo',
            assignees TEXT NOT NULL DEFAULT '[]',
            time_tracking TEXT NOT NULL DEFAULT '{}',
            version INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_issues_status
            ON issues(status);
        """
    )


def insert_issue(conn: sqlite3.Connection, issue: Issue) -> None:
    try:
        conn.execute(
            """
            INSERT INTO issues (id, key, status, assignees, time_tracking, version, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                issue.id,
                issue.key,
                issue.status,
                json.dumps(list(issue.assignees)),
                json.dumps(issue.time_tracking.to_document()),
                issue.version,
                format_timestamp(utcnow()),
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise ConflictError(f"Issue {issue.id} already exists") from exc


def fetch_issue(conn: sqlite3.Connection, issue_id: str) -> Optional[sqlite3.Row]:
    # fetchall() finalizes the statement so no read lock outlives the call.
    rows = conn.execute(
        """
        SELECT id, key, status, assignees, time_tracking, version
        FROM issues
        WHERE id = ?
        """,
        (issue_id,),
    ).fetchall()
    return rows[0] if rows else None


def compare_and_set_ledger(
    conn: sqlite3.Connection,
    issue_id: str,
    expected_version: int,
    tracking: TimeTracking,
) -> bool:
    """Write ``tracking`` only if the row is still at ``expected_version``."""
    cur = conn.execute(
        """
        UPDATE issues
        SET time_tracking = ?, version = version + 1, updated_at = ?
        WHERE id = ? AND version = ?
        """,
        (
            json.dumps(tracking.to_document()),
            format_timestamp(utcnow()),
            issue_id,
            expected_version,
        ),
    )
    return cur.rowcount == 1


def row_to_issue(row: sqlite3.Row) -> Issue:
    return Issue(
        id=row["id"],
        key=row["key"],
        status=row["status"],
        assignees=list(json.loads(row["assignees"] or "[]")),
        time_tracking=TimeTracking.from_document(json.loads(row["time_tracking"] or "{}")),
        version=row["version"],
    )


class IssueRepository:
    """Issue records keyed by id, with per-issue optimistic concurrency."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        open_database(self.db_path).close()

    def add(self, issue: Issue) -> Issue:
        with self._connect() as conn:
            insert_issue(conn, issue)
        logger.debug("Registered issue %s (%s)", issue.id, issue.key)
        return issue

    def get(self, issue_id: str) -> Issue:
        with self._connect() as conn:
            row = fetch_issue(conn, issue_id)
        if row is None:
            raise IssueNotFoundError(issue_id)
        return row_to_issue(row)

    def list_ids(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id FROM issues ORDER BY id").fetchall()
        return [row["id"] for row in rows]

    def conditional_update(
        self,
        issue_id: str,
        predicate: LedgerPredicate,
        patch: LedgerPatch,
    ) -> Optional[Issue]:
        """Apply ``patch`` to the ledger if ``predicate`` holds, atomically.

        Returns the updated issue, or ``None`` when the predicate rejected the
        ledger as currently stored. Exceptions raised by ``patch`` abort the
        update. A concurrent writer forces a re-read and a fresh predicate check.
        """
        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            with self._connect() as conn:
                row = fetch_issue(conn, issue_id)
                if row is None:
                    raise IssueNotFoundError(issue_id)
                issue = row_to_issue(row)
                if not predicate(issue.time_tracking):
                    return None
                updated = patch(issue.time_tracking)
                if compare_and_set_ledger(conn, issue_id, issue.version, updated):
                    issue.time_tracking = updated
                    issue.version += 1
                    return issue
            logger.debug(
                "Ledger for issue %s changed concurrently (attempt %d); retrying.",
                issue_id,
                attempt,
            )
        raise ConflictError(
            f"Issue {issue_id} is being modified concurrently; try again."
        )

    def find_running(self) -> list[Issue]:
        """Issues whose active timer exists and is not paused."""
        return self._select(
            """
            json_extract(time_tracking, '$.activeTimeEntry') IS NOT NULL
            AND json_extract(time_tracking, '$.activeTimeEntry.isPaused') = 0
            """
        )

    def find_paused(self, *, end_of_day_only: bool = False) -> list[Issue]:
        clause = """
            json_extract(time_tracking, '$.activeTimeEntry') IS NOT NULL
            AND json_extract(time_tracking, '$.activeTimeEntry.isPaused') = 1
        """
        if end_of_day_only:
            clause += " AND json_extract(time_tracking, '$.activeTimeEntry.autoPausedEndOfDay') = 1"
        return self._select(clause)

    def find_without_timer(self, status: str) -> list[Issue]:
        return self._select(
            "status = ? AND json_extract(time_tracking, '$.activeTimeEntry') IS NULL",
            (status,),
        )

    def _select(self, where: str, params: tuple = ()) -> list[Issue]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, key, status, assignees, time_tracking, version
                FROM issues
                WHERE {where}
                ORDER BY id
                """,
                params,
            ).fetchall()
        return [row_to_issue(row) for row in rows]

    def _connect(self):
        return database_connection(self.db_path, initialize=False)
