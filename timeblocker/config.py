"""
Centralized configuration for the time-blocking service.

All values that vary by deployment belong here.
Override via environment variables where marked.
"""

import logging
import os
from pathlib import Path

import yaml

from timeblocker import paths

logger = logging.getLogger(__name__)

# ============================================================
# Logging
# ============================================================

LOG_LEVEL: str = os.environ.get("TIMEBLOCKER_LOG_LEVEL", "INFO")
"""Root log level for the API server and CLI."""

LOG_FILE: str | None = os.environ.get("TIMEBLOCKER_LOG_FILE") or None
"""Optional rotating log file. Unset means stderr only."""

# ============================================================
# External calendar (Google Calendar)
# ============================================================

CALENDAR_ID: str = os.environ.get("TIMEBLOCKER_CALENDAR_ID", "primary")
"""Calendar that committed task blocks are mirrored to."""

CALENDAR_SA_FILE: str | None = os.environ.get("TIMEBLOCKER_CALENDAR_SA_FILE") or None
"""Service account JSON used for Calendar API access."""

CALENDAR_USER: str | None = os.environ.get("TIMEBLOCKER_CALENDAR_USER") or None
"""User impersonated through domain-wide delegation."""

CALENDAR_TIMEZONE: str = os.environ.get("TIMEBLOCKER_CALENDAR_TIMEZONE", "Europe/Amsterdam")
"""IANA zone for the naive local block timestamps sent to the Calendar API."""

CALENDAR_DRY_RUN: bool = os.environ.get("TIMEBLOCKER_CALENDAR_DRY_RUN", "0") == "1"
"""Validate sync payloads without calling the Calendar API."""

# ============================================================
# Calendar sync worker
# ============================================================

SYNC_MAX_RETRIES: int = int(os.environ.get("TIMEBLOCKER_SYNC_MAX_RETRIES", "3"))
"""Retries after the first attempt for a transient provider failure."""

SYNC_BASE_DELAY: float = float(os.environ.get("TIMEBLOCKER_SYNC_BASE_DELAY", "1.0"))
"""Initial backoff delay in seconds, doubled per retry."""

SYNC_MAX_DELAY: float = float(os.environ.get("TIMEBLOCKER_SYNC_MAX_DELAY", "30.0"))
"""Upper bound for a single backoff delay in seconds."""

SYNC_WORKERS: int = int(os.environ.get("TIMEBLOCKER_SYNC_WORKERS", "2"))
"""Background threads available for calendar sync jobs."""

# ============================================================
# Scheduling defaults
# ============================================================

SCHEDULING_CONFIG_ENV = "TIMEBLOCKER_SCHEDULING_CONFIG"
SCHEDULING_CONFIG_PATH = paths.bundled_config("scheduling.yaml")

BUILTIN_SCHEDULE_DEFAULTS: dict = {
    "working_hours": {"start": "09:00", "end": "17:00"},
    "break_duration": 15,
    "minimum_block_size": 30,
    "focus_time_preferred": True,
    "max_tasks_per_day": 8,
}


def load_schedule_defaults(path: str | None = None) -> dict:
    """
    Load default scheduling options from YAML config.

    Returns:
        {
            "working_hours": {"start": "09:00", "end": "17:00"},
            "break_duration": 15,
            ...
        }

    Keys missing from the file fall back to BUILTIN_SCHEDULE_DEFAULTS.
    A missing file yields the built-in defaults.

    Raises:
        ValueError if the file exists but has no 'defaults' mapping.
        yaml.YAMLError if config is invalid YAML.
    """
    config_path = Path(path or os.environ.get(SCHEDULING_CONFIG_ENV) or SCHEDULING_CONFIG_PATH)
    defaults = {
        **BUILTIN_SCHEDULE_DEFAULTS,
        "working_hours": dict(BUILTIN_SCHEDULE_DEFAULTS["working_hours"]),
    }

    if not config_path.exists():
        logger.debug("Scheduling config not found at %s, using built-in defaults", config_path)
        return defaults

    with open(config_path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or not isinstance(data.get("defaults"), dict):
        raise ValueError(f"{config_path.name} must have a 'defaults' mapping")

    for key, value in data["defaults"].items():
        if key not in defaults:
            logger.warning(f"Ignoring unknown scheduling default: {key}")
            continue
        if key == "working_hours":
            if not isinstance(value, dict):
                raise ValueError("working_hours must be a mapping with start/end")
            defaults["working_hours"].update(value)
        else:
            defaults[key] = value

    return defaults
