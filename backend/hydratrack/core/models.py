"""Core Data Models - Pydantic models for type safety.

All models are immutable value objects with no behavior beyond validation.
Persisted models use the camelCase field names of the stored JSON records.
"""

from datetime import datetime, timezone
from datetime import date as DateType
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_WATER_GOAL = 8
DEFAULT_CALORIE_GOAL = 2000

# Ranges offered by the goal editor; the store itself only requires positive values
WATER_GOAL_RANGE = (1, 20)
CALORIE_GOAL_RANGE = (1000, 5000)
MEAL_CALORIE_RANGE = (1, 5000)

RECENT_MEALS_LIMIT = 5
MEAL_DESCRIPTION_MAX_LENGTH = 50


class IntakeKind(str, Enum):
    """What an intake amount is counted in."""

    WATER = "water"
    CALORIES = "calories"


class DailyRecord(BaseModel):
    """A day's intake totals as stored under its date key."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    record_date: Optional[DateType] = Field(default=None, alias="date")
    water_intake: int = Field(default=0, alias="waterIntake", description="Glasses of water")
    calorie_intake: int = Field(default=0, alias="calorieIntake", description="Kilocalories")
    timestamp: Optional[datetime] = Field(default=None, description="When the record was last written")

    @field_validator("water_intake", "calorie_intake", mode="before")
    @classmethod
    def _missing_counts_as_zero(cls, value):
        return 0 if value is None else value

    @field_validator("water_intake", "calorie_intake")
    @classmethod
    def _never_negative(cls, value: int) -> int:
        return max(value, 0)

    @field_validator("record_date", mode="before")
    @classmethod
    def _date_part_only(cls, value):
        # Older records stored the full write timestamp here
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _unparseable_timestamp_is_missing(cls, value):
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        if isinstance(value, datetime):
            return value
        return None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class IntakeTotals(BaseModel):
    """Current intake counters for one day."""

    water_intake: int = Field(default=0, ge=0)
    calorie_intake: int = Field(default=0, ge=0)


class GoalSettings(BaseModel):
    """Daily targets, stored once under the goals key."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    water_goal: int = Field(
        default=DEFAULT_WATER_GOAL, gt=0, strict=True, alias="waterGoal",
        description="Glasses of water per day",
    )
    calorie_goal: int = Field(
        default=DEFAULT_CALORIE_GOAL, gt=0, strict=True, alias="calorieGoal",
        description="Kilocalories per day",
    )


class GoalUpdate(BaseModel):
    """Goal values as accepted from the goal editor."""

    water_goal: int = Field(ge=WATER_GOAL_RANGE[0], le=WATER_GOAL_RANGE[1])
    calorie_goal: int = Field(ge=CALORIE_GOAL_RANGE[0], le=CALORIE_GOAL_RANGE[1])

    def to_settings(self) -> GoalSettings:
        return GoalSettings(water_goal=self.water_goal, calorie_goal=self.calorie_goal)


class MealEntry(BaseModel):
    """A meal logged during the current session. Never persisted."""

    description: str = Field(default="Quick add", min_length=1, max_length=MEAL_DESCRIPTION_MAX_LENGTH)
    calories: int = Field(ge=MEAL_CALORIE_RANGE[0], le=MEAL_CALORIE_RANGE[1])
    logged_at: datetime


class Progress(BaseModel):
    """Progress toward a single daily goal."""

    current: int = Field(ge=0)
    target: int = Field(gt=0)
    percentage: float = Field(ge=0, le=100, description="Capped at 100")
    raw_percentage: float = Field(ge=0, description="Uncapped, may exceed 100")
    goal_met: bool


class TrackerSnapshot(BaseModel):
    """Everything the progress view needs for today."""

    log_date: DateType
    totals: IntakeTotals
    goals: GoalSettings
    water: Progress
    calories: Progress
    recent_meals: list[MealEntry] = Field(default_factory=list)
