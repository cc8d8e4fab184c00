"""
Test fixtures for deterministic testing.

This module provides:
- fixture_db: seed helpers writing activities, calendar events and blocks
  into a StateStore
- FakeProvider / FakeJobs: in-memory stand-ins for the calendar API and the
  background job runner
"""

from .fakes import FakeJobs, FakeProvider
from .fixture_db import DAY, USER_ID, at, seed_activity, seed_block, seed_event

__all__ = [
    "DAY",
    "USER_ID",
    "FakeJobs",
    "FakeProvider",
    "at",
    "seed_activity",
    "seed_block",
    "seed_event",
]
