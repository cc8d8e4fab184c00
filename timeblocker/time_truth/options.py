"""
ScheduleOptions - the validated replacement for free-form settings blobs.

Options arrive as partial mappings (camelCase from the API, snake_case from
YAML/CLI) and are merged over the configured defaults. Anything malformed is
rejected with a ScheduleValidationError naming the offending field, before
any scheduling work happens.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import date, datetime, time

from timeblocker.config import load_schedule_defaults
from timeblocker.time_truth.intervals import Interval


class ScheduleValidationError(ValueError):
    """Structurally invalid scheduling input. Maps to a 4xx response."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


# camelCase (API) -> snake_case (internal)
_FIELD_ALIASES = {
    "workingHours": "working_hours",
    "breakDuration": "break_duration",
    "minimumBlockSize": "minimum_block_size",
    "focusTimePreferred": "focus_time_preferred",
    "maxTasksPerDay": "max_tasks_per_day",
}


def parse_clock(value, field: str) -> time:
    """Parse 'HH:MM' (or a time object) into a time of day."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime(str(value).strip(), "%H:%M").time()
    except ValueError:
        raise ScheduleValidationError(field, f"invalid time {value!r}, expected HH:MM") from None


def _require_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise ScheduleValidationError(field, f"must be an integer number of minutes, got {value!r}")
    return value


@dataclass(frozen=True)
class WorkingHours:
    start: time
    end: time

    def window(self, target_date: date) -> Interval:
        """Absolute working-hours interval on target_date."""
        return Interval(
            datetime.combine(target_date, self.start),
            datetime.combine(target_date, self.end),
            "working hours",
        )

    def describe(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class ScheduleOptions:
    working_hours: WorkingHours
    break_duration: int = 15
    minimum_block_size: int = 30
    focus_time_preferred: bool = True
    max_tasks_per_day: int = 8

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ScheduleValidationError for the first invalid field."""
        if self.working_hours.start >= self.working_hours.end:
            raise ScheduleValidationError(
                "workingHours",
                f"start {self.working_hours.start:%H:%M} must be before "
                f"end {self.working_hours.end:%H:%M}",
            )
        if self.break_duration < 0:
            raise ScheduleValidationError("breakDuration", "must be zero or positive")
        if self.minimum_block_size <= 0:
            raise ScheduleValidationError("minimumBlockSize", "must be positive")
        if self.max_tasks_per_day <= 0:
            raise ScheduleValidationError("maxTasksPerDay", "must be positive")

    @classmethod
    def from_mapping(
        cls, data: Mapping | None = None, defaults: Mapping | None = None
    ) -> "ScheduleOptions":
        """
        Build options from a partial mapping merged over defaults.

        Args:
            data: request options, camelCase or snake_case keys
            defaults: base values (loaded from config/scheduling.yaml if None)
        """
        base = dict(defaults) if defaults is not None else load_schedule_defaults()
        merged = {**base, "working_hours": dict(base.get("working_hours") or {})}

        for key, value in (data or {}).items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in merged:
                raise ScheduleValidationError(key, "unknown option")
            if name == "working_hours":
                if not isinstance(value, Mapping):
                    raise ScheduleValidationError(
                        "workingHours", "must be an object with start/end"
                    )
                merged["working_hours"].update(value)
            elif value is not None:
                merged[name] = value

        hours = merged["working_hours"]
        if "start" not in hours or "end" not in hours:
            raise ScheduleValidationError("workingHours", "start and end are required")

        focus = merged["focus_time_preferred"]
        if not isinstance(focus, bool):
            raise ScheduleValidationError("focusTimePreferred", f"must be a boolean, got {focus!r}")

        return cls(
            working_hours=WorkingHours(
                start=parse_clock(hours["start"], "workingHours.start"),
                end=parse_clock(hours["end"], "workingHours.end"),
            ),
            break_duration=_require_int(merged["break_duration"], "breakDuration"),
            minimum_block_size=_require_int(merged["minimum_block_size"], "minimumBlockSize"),
            focus_time_preferred=focus,
            max_tasks_per_day=_require_int(merged["max_tasks_per_day"], "maxTasksPerDay"),
        )

    @classmethod
    def coerce(cls, value, defaults: Mapping | None = None) -> "ScheduleOptions":
        """Accept an existing ScheduleOptions, a partial mapping, or None."""
        if isinstance(value, cls):
            return value
        return cls.from_mapping(value, defaults)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["working_hours"] = {
            "start": f"{self.working_hours.start:%H:%M}",
            "end": f"{self.working_hours.end:%H:%M}",
        }
        return data
