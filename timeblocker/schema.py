"""
Tables and indexes of the scheduler database.

schema_engine.converge() creates whatever is missing from this declaration;
it never drops. To add a column, append it to the table's list and bump
SCHEMA_VERSION. Column DDL is written for CREATE TABLE, and the engine
derives the ADD COLUMN form for existing databases.

Timestamps are naive local time stored as TEXT (YYYY-MM-DDTHH:MM:SS).
"""

from collections import OrderedDict

SCHEMA_VERSION = 3

# TABLES[name] = {"columns": [(column, ddl), ...]}, in creation order
TABLES: dict[str, dict] = OrderedDict()

# ---------------------------------------------------------------------------
# activities: read projection of the CRUD application's activity rows.
# The scheduler never writes here.
# ---------------------------------------------------------------------------
TABLES["activities"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("priority", "TEXT NOT NULL DEFAULT 'normal'"),
        ("estimated_duration", "INTEGER"),
        ("due_date", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'open'"),
        ("created_by", "INTEGER NOT NULL"),
        ("created_at", "TEXT NOT NULL DEFAULT (datetime('now'))"),
    ],
}

# ---------------------------------------------------------------------------
# time_blocks: scheduled time, automatic or manual
# ---------------------------------------------------------------------------
TABLES["time_blocks"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("activity_id", "INTEGER REFERENCES activities(id) ON DELETE CASCADE"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("start_time", "TEXT NOT NULL"),
        ("end_time", "TEXT NOT NULL"),
        ("duration", "INTEGER NOT NULL"),
        ("block_type", "TEXT NOT NULL DEFAULT 'task'"),
        ("is_scheduled", "INTEGER NOT NULL DEFAULT 0"),
        ("is_completed", "INTEGER NOT NULL DEFAULT 0"),
        ("priority", "TEXT NOT NULL DEFAULT 'normal'"),
        ("color", "TEXT"),
        ("created_by", "INTEGER NOT NULL"),
        ("created_at", "TEXT NOT NULL DEFAULT (datetime('now'))"),
        ("updated_at", "TEXT NOT NULL DEFAULT (datetime('now'))"),
    ],
}

# ---------------------------------------------------------------------------
# calendar_events: busy markers imported from external calendars
# ---------------------------------------------------------------------------
TABLES["calendar_events"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("user_id", "INTEGER NOT NULL"),
        ("title", "TEXT"),
        ("start_time", "TEXT NOT NULL"),
        ("end_time", "TEXT NOT NULL"),
        ("source", "TEXT NOT NULL DEFAULT 'external'"),
        ("created_at", "TEXT NOT NULL DEFAULT (datetime('now'))"),
    ],
}

# ---------------------------------------------------------------------------
# calendar_sync_map: local block id <-> external event id
# No FK: the mapping must outlive its block so the external event can be
# removed after the block is deleted.
# ---------------------------------------------------------------------------
TABLES["calendar_sync_map"] = {
    "columns": [
        ("block_id", "INTEGER PRIMARY KEY"),
        ("calendar_id", "TEXT NOT NULL DEFAULT 'primary'"),
        ("external_event_id", "TEXT"),
        ("sync_status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("attempts", "INTEGER NOT NULL DEFAULT 0"),
        ("last_error", "TEXT"),
        ("synced_at", "TEXT"),
        ("updated_at", "TEXT NOT NULL DEFAULT (datetime('now'))"),
    ],
}

# =============================================================================
# Indexes
#
# Format: (index_name, table, columns, where_clause_or_None)
# =============================================================================

INDEXES: list[tuple[str, str, str, str | None]] = [
    ("idx_activities_owner", "activities", "created_by, status", None),
    ("idx_time_blocks_owner_start", "time_blocks", "created_by, start_time", None),
    ("idx_time_blocks_activity", "time_blocks", "activity_id", "activity_id IS NOT NULL"),
    ("idx_calendar_events_user_start", "calendar_events", "user_id, start_time", None),
    ("idx_calendar_sync_status", "calendar_sync_map", "sync_status", None),
]
