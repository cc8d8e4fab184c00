"""
Filesystem locations.

Everything the service writes lives under one app home (~/.timeblocker by
default, TIMEBLOCKER_HOME to move it). The database can be pointed elsewhere
on its own with TIMEBLOCKER_DB.
"""

from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "TIMEBLOCKER_HOME"
APP_ENV_DB = "TIMEBLOCKER_DB"
DB_FILENAME = "timeblocker.db"


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value).expanduser().resolve() if value else None


def _subdir(name: str) -> Path:
    directory = app_home() / name
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def project_root() -> Path:
    """Checkout root: holds timeblocker/, api/, cli/ and config/."""
    return Path(__file__).resolve().parent.parent


def bundled_config(name: str) -> Path:
    """A file shipped in the repository's config/ directory."""
    return project_root() / "config" / name


def app_home() -> Path:
    return _env_path(APP_ENV_HOME) or (Path.home() / ".timeblocker").resolve()


def config_dir() -> Path:
    return _subdir("config")


def data_dir() -> Path:
    return _subdir("data")


def log_dir() -> Path:
    return _subdir("logs")


def db_path() -> Path:
    """TIMEBLOCKER_DB if set, else <app home>/data/timeblocker.db."""
    return _env_path(APP_ENV_DB) or data_dir() / DB_FILENAME
