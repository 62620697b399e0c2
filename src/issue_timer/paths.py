"""Where the issue database and the timer log live on disk."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

# Points both the database and the log at one directory (containers, tests).
HOME_ENV_VAR = "ISSUE_TIMER_HOME"

_DIRS = PlatformDirs(appname="IssueTimer", appauthor=False, roaming=True)


def _ensure(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _override() -> Path | None:
    value = os.environ.get(HOME_ENV_VAR, "").strip()
    return Path(value).expanduser() if value else None


def get_data_dir() -> Path:
    return _ensure(_override() or _DIRS.user_data_path)


def get_log_dir() -> Path:
    return _ensure(_override() or _DIRS.user_log_path)


def get_db_path() -> Path:
    return get_data_dir() / "issues.sqlite3"


def get_log_path() -> Path:
    return get_log_dir() / "timer.log"
