"""
Test configuration - repo root on sys.path + live database guard.

Every test runs with TIMEBLOCKER_HOME and TIMEBLOCKER_DB pointing into its
own tmp_path, and sqlite3.connect refuses the default live database path.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import timeblocker.*, api.*, cli.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from timeblocker import db as db_module  # noqa: E402
from timeblocker import state_store  # noqa: E402

# =============================================================================
# DETERMINISM GUARD: Block live database access
# =============================================================================

LIVE_DB_ABSOLUTE = Path.home() / ".timeblocker" / "data" / "timeblocker.db"

_original_sqlite_connect = sqlite3.connect


def _guarded_sqlite_connect(database, *args, **kwargs):
    """Intercept sqlite3.connect to block live DB access."""
    db_str = str(database)
    if db_str != ":memory:" and Path(db_str).expanduser() == LIVE_DB_ABSOLUTE:
        raise RuntimeError(
            f"DETERMINISM VIOLATION: Test attempted to access live DB at {database}.\n"
            "Use the `store` fixture or a tmp_path database."
        )
    return _original_sqlite_connect(database, *args, **kwargs)


@pytest.fixture(autouse=True)
def guard_live_db_access(monkeypatch):
    """Automatically guard all tests against live DB access."""
    monkeypatch.setattr(sqlite3, "connect", _guarded_sqlite_connect)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point app home and DB at a per-test directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("TIMEBLOCKER_HOME", str(home))
    monkeypatch.setenv("TIMEBLOCKER_DB", str(home / "data" / "timeblocker.db"))
    monkeypatch.delenv("TIMEBLOCKER_SCHEDULING_CONFIG", raising=False)
    db_module.reset_schema_cache()
    monkeypatch.setattr(state_store, "_stores", {})
    yield home
    db_module.reset_schema_cache()


# =============================================================================
# STORE FIXTURES
# =============================================================================


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path):
    """Fresh StateStore with the converged schema."""
    return state_store.StateStore(db_path)


@pytest.fixture
def defaults():
    """Scheduling defaults independent of config/scheduling.yaml."""
    return {
        "working_hours": {"start": "09:00", "end": "17:00"},
        "break_duration": 15,
        "minimum_block_size": 30,
        "focus_time_preferred": True,
        "max_tasks_per_day": 8,
    }
