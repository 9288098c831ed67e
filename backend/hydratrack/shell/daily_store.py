"""Daily Record Store - Lifecycle of per-day intake records and goals.

Reads and writes today's record, expires it 24 hours after its last write,
sweeps records past the retention horizon and keeps the goal settings.
Read paths never raise; write paths raise StorageError.
"""

import logging
from datetime import date, datetime
from typing import Callable, Mapping

from ..core.models import DailyRecord, GoalSettings, IntakeTotals
from ..core.records import (
    DEFAULT_RETENTION_DAYS,
    ParseError,
    build_record,
    date_key,
    goals_key,
    is_expired,
    is_record_key,
    is_stale,
    parse_goals,
    parse_record,
    record_totals,
    serialize_goals,
    serialize_record,
)
from .clock import Clock, Scheduler, SystemClock, AsyncioScheduler, TimerHandle
from .store import RecordStore, StorageError


logger = logging.getLogger(__name__)

EXPIRY_CHECK_INTERVAL = 60 * 60  # seconds


class ExpiryWatch:
    """Handle for a recurring expiry check.

    Each run reschedules the next one until cancel() is called.
    """

    def __init__(
        self,
        check: Callable[["ExpiryWatch"], None],
        scheduler: Scheduler,
        interval: float,
    ) -> None:
        self._check = check
        self._scheduler = scheduler
        self.interval = interval
        self._handle: TimerHandle | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> "ExpiryWatch":
        self._schedule()
        return self

    def cancel(self) -> None:
        """Stop all future checks and release the pending timer."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self._scheduler.call_later(self.interval, self._run)

    def _run(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        try:
            self._check(self)
        except Exception:
            logger.exception("Expiry check failed")
        if not self._cancelled:
            self._schedule()


class DailyRecordStore:
    """Owns every persisted daily record and the goal settings.

    Key layout:
        health-tracker-YYYY-MM-DD: { waterIntake, calorieIntake, timestamp, date }
        health-tracker-goals: { waterGoal, calorieGoal }
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or AsyncioScheduler()

    def today(self) -> date:
        return self.clock.now().date()

    def today_key(self) -> str:
        return date_key(self.clock.now())

    # ==================== Daily Record Operations ====================

    def load_today(self) -> IntakeTotals:
        """Load today's intake totals.

        Absent, corrupt or expired records all read as zero. Expired records
        are deleted; corrupt ones are left for cleanup_stale.

        Returns:
            IntakeTotals for today
        """
        now = self.clock.now()
        key = date_key(now)

        try:
            raw = self.store.get(key)
        except StorageError as e:
            logger.error("Failed to read %s: %s", key, str(e))
            return IntakeTotals()

        if raw is None:
            logger.debug("No record for %s, starting fresh", key)
            return IntakeTotals()

        try:
            record = parse_record(raw)
        except ParseError as e:
            logger.warning("Ignoring corrupt record %s: %s", key, str(e))
            return IntakeTotals()

        if is_expired(record.timestamp, now):
            logger.info("Record %s is older than 24 hours, starting fresh", key)
            self._remove_quietly(key)
            return IntakeTotals()

        logger.debug("Loaded %s: %d water, %d kcal", key, record.water_intake, record.calorie_intake)
        return record_totals(record)

    def save_today(self, water_intake: int, calorie_intake: int) -> DailyRecord:
        """Write today's totals, replacing any existing record.

        Args:
            water_intake: Glasses of water so far today
            calorie_intake: Kilocalories so far today

        Returns:
            The record as written

        Raises:
            StorageQuotaExceeded: If the store is full
            StorageUnavailable: If the store cannot be written
        """
        record = build_record(water_intake, calorie_intake, self.clock.now())
        key = date_key(record.record_date)

        try:
            self.store.set(key, serialize_record(record))
        except StorageError as e:
            logger.error("Failed to save %s: %s", key, str(e))
            raise

        logger.info("Saved %s: %d water, %d kcal", key, record.water_intake, record.calorie_intake)
        return record

    def cleanup_stale(
        self,
        now: datetime | None = None,
        max_age_days: int = DEFAULT_RETENTION_DAYS,
    ) -> list[str]:
        """Delete daily records past the retention horizon.

        Corrupt records and records without a timestamp are deleted too.
        All keys are scanned before anything is removed.

        Args:
            now: Current time (defaults to the clock)
            max_age_days: Retention horizon in days

        Returns:
            Keys that were removed
        """
        if now is None:
            now = self.clock.now()

        try:
            keys = [k for k in self.store.keys() if is_record_key(k)]
        except StorageError as e:
            logger.error("Failed to list records for cleanup: %s", str(e))
            return []

        to_remove: list[str] = []
        for key in keys:
            try:
                raw = self.store.get(key)
            except StorageError as e:
                logger.error("Failed to read %s during cleanup: %s", key, str(e))
                continue
            if raw is None:
                continue
            try:
                record = parse_record(raw)
            except ParseError:
                logger.warning("Removing corrupt record %s", key)
                to_remove.append(key)
                continue
            if is_stale(record.timestamp, now, max_age_days):
                to_remove.append(key)

        removed = [key for key in to_remove if self._remove_quietly(key)]
        if removed:
            logger.info("Cleaned up %d stale records", len(removed))
        return removed

    def start_expiry_watch(
        self,
        on_expire: Callable[[], None],
        interval: float = EXPIRY_CHECK_INTERVAL,
    ) -> ExpiryWatch:
        """Re-check today's record for expiry at a fixed interval.

        Args:
            on_expire: Called when today's record has expired, before it is deleted
            interval: Seconds between checks

        Returns:
            ExpiryWatch whose cancel() stops all further checks
        """
        watch = ExpiryWatch(
            lambda w: self._check_expiry(w, on_expire),
            self.scheduler,
            interval,
        )
        logger.info("Checking for expired records every %d seconds", interval)
        return watch.start()

    def _check_expiry(self, watch: ExpiryWatch, on_expire: Callable[[], None]) -> None:
        now = self.clock.now()
        key = date_key(now)

        try:
            raw = self.store.get(key)
        except StorageError as e:
            logger.error("Failed to read %s for expiry check: %s", key, str(e))
            return

        if raw is None:
            return

        try:
            record = parse_record(raw)
        except ParseError as e:
            logger.warning("Skipping expiry check of corrupt record %s: %s", key, str(e))
            return

        if not is_expired(record.timestamp, now) or watch.cancelled:
            return

        logger.info("24 hours passed for %s, resetting", key)
        on_expire()
        self._remove_quietly(key)

    def _remove_quietly(self, key: str) -> bool:
        try:
            self.store.remove(key)
            return True
        except StorageError as e:
            logger.error("Failed to remove %s: %s", key, str(e))
            return False

    # ==================== Goal Operations ====================

    def get_goals(self) -> GoalSettings:
        """Fetch goal settings, with defaults for anything missing.

        Returns:
            GoalSettings (defaults if nothing valid is stored)
        """
        try:
            raw = self.store.get(goals_key())
        except StorageError as e:
            logger.error("Failed to read goals: %s", str(e))
            return GoalSettings()
        return parse_goals(raw)

    def set_goals(self, goals: GoalSettings | Mapping) -> GoalSettings:
        """Validate and save goal settings.

        Args:
            goals: GoalSettings, or a mapping with water_goal/calorie_goal

        Returns:
            The saved settings

        Raises:
            pydantic.ValidationError: If a goal is not a positive integer
            StorageError: If the store cannot be written
        """
        if not isinstance(goals, GoalSettings):
            goals = GoalSettings.model_validate(goals)

        try:
            self.store.set(goals_key(), serialize_goals(goals))
        except StorageError as e:
            logger.error("Failed to save goals: %s", str(e))
            raise

        logger.info("Saved goals: %d water, %d kcal", goals.water_goal, goals.calorie_goal)
        return goals
