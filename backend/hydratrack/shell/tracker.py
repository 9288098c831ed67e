"""Health Tracker - Today's counters kept in sync with the record store.

The in-memory counters are the source of truth for the running session and
are written through on every change. A failed write is raised to the caller
but the counters keep their new values.
"""

import logging
from datetime import date
from typing import Mapping

from ..core.models import (
    GoalSettings,
    IntakeKind,
    IntakeTotals,
    MealEntry,
    TrackerSnapshot,
    RECENT_MEALS_LIMIT,
)
from ..core.progress import build_snapshot
from .daily_store import DailyRecordStore, ExpiryWatch
from .store import StorageError


logger = logging.getLogger(__name__)


def _positive_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Intake amount must be a positive integer, got {amount!r}")
    return amount


class HealthTracker:
    """Session state for one tracker: today's totals, goals and recent meals."""

    def __init__(self, records: DailyRecordStore) -> None:
        self.records = records
        self.goals = GoalSettings()
        self.water_intake = 0
        self.calorie_intake = 0
        self.recent_meals: list[MealEntry] = []
        self._day: date | None = None

    def open(self) -> "HealthTracker":
        """Sweep old records, then load goals and today's totals.

        Goals and today's record are written back straight away so both exist
        in the store from the first run. Failures here are only logged.
        """
        self.records.cleanup_stale()
        self.goals = self.records.get_goals()
        self._load_day()

        try:
            self.records.set_goals(self.goals)
            self.records.save_today(self.water_intake, self.calorie_intake)
        except StorageError as e:
            logger.error("Could not persist initial state: %s", str(e))
        return self

    def _load_day(self) -> None:
        totals = self.records.load_today()
        self.water_intake = totals.water_intake
        self.calorie_intake = totals.calorie_intake
        self.recent_meals = []
        self._day = self.records.today()

    def _sync_day(self) -> None:
        if self._day != self.records.today():
            logger.info("New day started, reloading totals")
            self._load_day()

    def _persist(self) -> None:
        self.records.save_today(self.water_intake, self.calorie_intake)

    @property
    def totals(self) -> IntakeTotals:
        return IntakeTotals(water_intake=self.water_intake, calorie_intake=self.calorie_intake)

    # ==================== Intake ====================

    def add_intake(self, kind: IntakeKind | str, amount: int) -> IntakeTotals:
        """Add to one of today's counters and save.

        Args:
            kind: water (glasses) or calories (kcal)
            amount: Positive amount to add

        Returns:
            Updated totals

        Raises:
            ValueError: If kind is unknown or amount is not positive
            StorageError: If the totals could not be saved
        """
        kind = IntakeKind(kind)
        amount = _positive_amount(amount)
        self._sync_day()

        if kind is IntakeKind.WATER:
            self.water_intake += amount
        else:
            self.calorie_intake += amount

        self._persist()
        return self.totals

    def log_meal(self, calories: int, description: str | None = None) -> MealEntry:
        """Add a meal's calories and remember it in the recent meals list.

        Args:
            calories: Kilocalories in the meal (1-5000)
            description: What was eaten, "Quick add" if omitted

        Returns:
            The logged meal

        Raises:
            pydantic.ValidationError: If calories or description are out of range
            StorageError: If the totals could not be saved
        """
        description = (description or "").strip()
        fields = {"description": description} if description else {}
        meal = MealEntry(calories=calories, logged_at=self.records.clock.now(), **fields)

        self._sync_day()
        self.recent_meals = [meal, *self.recent_meals][:RECENT_MEALS_LIMIT]
        self.add_intake(IntakeKind.CALORIES, meal.calories)
        return meal

    def reset_intake(self, kind: IntakeKind | str) -> IntakeTotals:
        """Set one of today's counters back to zero and save."""
        kind = IntakeKind(kind)
        self._sync_day()

        if kind is IntakeKind.WATER:
            self.water_intake = 0
        else:
            self.calorie_intake = 0

        logger.info("Reset %s intake", kind.value)
        self._persist()
        return self.totals

    def _expire(self) -> None:
        self.water_intake = 0
        self.calorie_intake = 0
        self.recent_meals = []

    def start_expiry_watch(self) -> ExpiryWatch:
        """Zero the counters whenever the store finds today's record expired."""
        return self.records.start_expiry_watch(self._expire)

    # ==================== Goals & Snapshot ====================

    def get_goals(self) -> GoalSettings:
        return self.goals

    def set_goals(self, goals: GoalSettings | Mapping) -> GoalSettings:
        self.goals = self.records.set_goals(goals)
        return self.goals

    def get_snapshot(self) -> TrackerSnapshot:
        """Current totals, goals and progress for today."""
        self._sync_day()
        return build_snapshot(self._day, self.totals, self.goals, self.recent_meals)
