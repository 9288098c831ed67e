"""Record Rules - Pure functions for keying, parsing and expiring records.

All functions are pure: the current time is always passed in, nothing here
touches storage or the wall clock.
"""

import json
import math
import re
from datetime import date, datetime, timedelta, timezone

from pydantic import ValidationError

from .models import (
    DailyRecord,
    GoalSettings,
    IntakeTotals,
    DEFAULT_WATER_GOAL,
    DEFAULT_CALORIE_GOAL,
)


KEY_PREFIX = "health-tracker-"
GOALS_KEY = f"{KEY_PREFIX}goals"
RECORD_KEY_PATTERN = re.compile(rf"^{KEY_PREFIX}\d{{4}}-\d{{2}}-\d{{2}}$")

EXPIRY_WINDOW = timedelta(hours=24)
DEFAULT_RETENTION_DAYS = 7


class ParseError(ValueError):
    """A stored value could not be read back as a record."""


def date_key(moment: date | datetime) -> str:
    """Build the storage key for the calendar day of a moment.

    Datetimes are keyed by their own local date, so pass them in the
    timezone the day boundary should follow.

    Args:
        moment: Date or datetime inside the day

    Returns:
        Key in format: health-tracker-YYYY-MM-DD
    """
    if isinstance(moment, datetime):
        moment = moment.date()
    return f"{KEY_PREFIX}{moment.isoformat()}"


def goals_key() -> str:
    """Key holding the goal settings. Never matches a date key."""
    return GOALS_KEY


def is_record_key(key: str) -> bool:
    """Check if a key belongs to the per-day record namespace."""
    return RECORD_KEY_PATTERN.match(key) is not None


def parse_record(raw: str) -> DailyRecord:
    """Parse a stored daily record.

    Args:
        raw: JSON string as found in the store

    Returns:
        The parsed record

    Raises:
        ParseError: If the value is not valid JSON or not a valid record
    """
    try:
        return DailyRecord.model_validate_json(raw)
    except ValidationError as e:
        raise ParseError(str(e)) from e


def build_record(water_intake: int, calorie_intake: int, now: datetime) -> DailyRecord:
    """Create the record to store for the day containing `now`.

    Negative totals are clamped to zero.
    """
    return DailyRecord(
        record_date=now.date(),
        water_intake=max(water_intake, 0),
        calorie_intake=max(calorie_intake, 0),
        timestamp=now.astimezone(timezone.utc),
    )


def serialize_record(record: DailyRecord) -> str:
    """Serialize a record to the stored JSON layout."""
    return record.model_dump_json(by_alias=True)


def record_totals(record: DailyRecord) -> IntakeTotals:
    """Extract the intake counters from a record."""
    return IntakeTotals(
        water_intake=record.water_intake,
        calorie_intake=record.calorie_intake,
    )


def as_aware(moment: datetime) -> datetime:
    """Attach the system local timezone to a naive datetime."""
    if moment.tzinfo is None:
        return moment.astimezone()
    return moment


def is_expired(timestamp: datetime | None, now: datetime) -> bool:
    """Check if a record written at `timestamp` has passed its 24 hours.

    A missing timestamp counts as expired.

    Args:
        timestamp: When the record was last written
        now: Current time

    Returns:
        True if 24 hours or more have elapsed
    """
    if timestamp is None:
        return True
    return as_aware(now) - timestamp >= EXPIRY_WINDOW


def is_stale(
    timestamp: datetime | None,
    now: datetime,
    max_age_days: int = DEFAULT_RETENTION_DAYS,
) -> bool:
    """Check if a record is past the retention horizon.

    A missing timestamp counts as stale, matching the read path.

    Args:
        timestamp: When the record was last written
        now: Current time
        max_age_days: Retention horizon in days

    Returns:
        True if the record is older than `now - max_age_days`
    """
    if timestamp is None:
        return True
    return timestamp < as_aware(now) - timedelta(days=max_age_days)


def _goal_value(data: dict, name: str, default: int) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value) or value <= 0 or value != int(value):
        return default
    return int(value)


def parse_goals(raw: str | None) -> GoalSettings:
    """Parse stored goal settings, falling back to defaults per field.

    Args:
        raw: JSON string as found in the store, or None if absent

    Returns:
        GoalSettings where every missing or invalid field has its default
    """
    if raw is None:
        return GoalSettings()

    try:
        data = json.loads(raw)
    except ValueError:
        return GoalSettings()

    if not isinstance(data, dict):
        return GoalSettings()

    return GoalSettings(
        water_goal=_goal_value(data, "waterGoal", DEFAULT_WATER_GOAL),
        calorie_goal=_goal_value(data, "calorieGoal", DEFAULT_CALORIE_GOAL),
    )


def serialize_goals(goals: GoalSettings) -> str:
    """Serialize goal settings to the stored JSON layout."""
    return goals.model_dump_json(by_alias=True)
