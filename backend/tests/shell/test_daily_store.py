"""Tests for DailyRecordStore using an in-memory store and a fake clock."""

import json
import pytest
from datetime import datetime, timedelta
from pydantic import ValidationError

from hydratrack.core.models import GoalSettings, IntakeTotals
from hydratrack.core.records import date_key, goals_key, build_record, serialize_record
from hydratrack.shell.daily_store import DailyRecordStore, EXPIRY_CHECK_INTERVAL
from hydratrack.shell.store import (
    InMemoryRecordStore,
    StorageQuotaExceeded,
    StorageUnavailable,
)


def store_record(store, moment, water=0, calories=0):
    """Write a record as if it had been saved at `moment`."""
    store.set(date_key(moment), serialize_record(build_record(water, calories, moment)))


class LocalClock:
    """Clock returning naive local time, like datetime.now()."""

    def now(self):
        return datetime.now()


class FailingStore(InMemoryRecordStore):
    """Store whose every operation fails."""

    def get(self, key):
        raise StorageUnavailable("down")

    def set(self, key, value):
        raise StorageUnavailable("down")

    def remove(self, key):
        raise StorageUnavailable("down")

    def keys(self):
        raise StorageUnavailable("down")


class TestLoadToday:
    """Tests for load_today."""

    def test_nothing_stored(self, records, memory_store):
        """No record reads as zero and nothing is written."""
        assert records.load_today() == IntakeTotals()
        assert memory_store.keys() == []

    def test_round_trip(self, records):
        """Saved totals load back the same day."""
        records.save_today(3, 450)
        assert records.load_today() == IntakeTotals(water_intake=3, calorie_intake=450)

    def test_corrupt_record(self, records, memory_store, clock):
        """Corrupt data reads as zero and is left for the sweep."""
        key = date_key(clock.now())
        memory_store.set(key, "not json at all")

        assert records.load_today() == IntakeTotals()
        assert memory_store.get(key) == "not json at all"

    def test_expired_record_removed(self, records, memory_store, clock):
        """A record saved 24 hours ago is dropped on read."""
        key = date_key(clock.now())
        stale = build_record(5, 1200, clock.now() - timedelta(hours=24, seconds=1))
        memory_store.set(key, serialize_record(stale))

        assert records.load_today() == IntakeTotals()
        assert memory_store.get(key) is None

    def test_not_yet_expired(self, records, memory_store, clock):
        key = date_key(clock.now())
        recent = build_record(2, 300, clock.now() - timedelta(hours=23, minutes=59, seconds=59))
        memory_store.set(key, serialize_record(recent))

        assert records.load_today() == IntakeTotals(water_intake=2, calorie_intake=300)

    def test_missing_timestamp_expires(self, records, memory_store, clock):
        """A record without a timestamp is treated as expired."""
        key = date_key(clock.now())
        memory_store.set(key, json.dumps({"waterIntake": 4, "calorieIntake": 100}))

        assert records.load_today() == IntakeTotals()
        assert memory_store.get(key) is None

    def test_negative_values_clamped(self, records, memory_store, clock):
        key = date_key(clock.now())
        memory_store.set(key, json.dumps({
            "waterIntake": -3,
            "calorieIntake": 200,
            "timestamp": clock.now().isoformat(),
        }))
        assert records.load_today() == IntakeTotals(water_intake=0, calorie_intake=200)

    def test_storage_failure_reads_as_zero(self, clock, scheduler):
        records = DailyRecordStore(FailingStore(), clock, scheduler)
        assert records.load_today() == IntakeTotals()

    def test_naive_clock(self, scheduler):
        """A clock giving naive local times still reads back today's record."""
        records = DailyRecordStore(InMemoryRecordStore(), LocalClock(), scheduler)
        records.save_today(2, 2)
        assert records.load_today() == IntakeTotals(water_intake=2, calorie_intake=2)


class TestSaveToday:
    """Tests for save_today."""

    def test_writes_under_today_key(self, records, memory_store, clock):
        records.save_today(1, 100)
        data = json.loads(memory_store.get(date_key(clock.now())))
        assert data["waterIntake"] == 1
        assert data["calorieIntake"] == 100
        assert "timestamp" in data
        assert data["date"] == clock.now().date().isoformat()

    def test_overwrites(self, records, memory_store):
        records.save_today(1, 100)
        records.save_today(2, 250)
        assert len(memory_store.keys()) == 1
        assert records.load_today() == IntakeTotals(water_intake=2, calorie_intake=250)

    def test_refreshes_timestamp(self, records, clock):
        """Each save restarts the 24 hour window."""
        records.save_today(1, 0)
        clock.advance(hours=20)
        records.save_today(2, 0)
        clock.advance(hours=3, minutes=59)
        assert records.load_today().water_intake == 2

    def test_negative_input_clamped(self, records):
        records.save_today(-5, -10)
        assert records.load_today() == IntakeTotals()

    def test_quota_exceeded_raised(self, clock, scheduler):
        """A full store surfaces as StorageQuotaExceeded."""
        records = DailyRecordStore(InMemoryRecordStore(quota_bytes=10), clock, scheduler)
        with pytest.raises(StorageQuotaExceeded):
            records.save_today(1, 100)

    def test_unavailable_raised(self, clock, scheduler):
        records = DailyRecordStore(FailingStore(), clock, scheduler)
        with pytest.raises(StorageUnavailable):
            records.save_today(1, 100)


class TestCleanupStale:
    """Tests for cleanup_stale."""

    def test_removes_old_keeps_recent(self, records, memory_store, clock):
        """An 8-day-old record is removed, a 6-day-old one kept."""
        now = clock.now()
        store_record(memory_store, now - timedelta(days=8), water=1)
        store_record(memory_store, now - timedelta(days=6), water=2)

        removed = records.cleanup_stale(now)

        assert removed == [date_key(now - timedelta(days=8))]
        assert memory_store.get(date_key(now - timedelta(days=6))) is not None

    def test_idempotent(self, records, memory_store, clock):
        """A second sweep right after the first removes nothing."""
        now = clock.now()
        store_record(memory_store, now - timedelta(days=10))
        store_record(memory_store, now - timedelta(days=1))

        records.cleanup_stale(now)
        keys_after_first = sorted(memory_store.keys())

        assert records.cleanup_stale(now) == []
        assert sorted(memory_store.keys()) == keys_after_first

    def test_removes_corrupt_records(self, records, memory_store, clock):
        key = date_key(clock.now() - timedelta(days=1))
        memory_store.set(key, "{broken")

        assert records.cleanup_stale() == [key]

    def test_removes_records_without_timestamp(self, records, memory_store, clock):
        key = date_key(clock.now() - timedelta(days=1))
        memory_store.set(key, json.dumps({"waterIntake": 1}))

        assert records.cleanup_stale() == [key]

    def test_leaves_goals_and_foreign_keys(self, records, memory_store, clock):
        """Only the per-day record namespace is swept."""
        memory_store.set(goals_key(), "{broken")
        memory_store.set("another-app-setting", "{broken")

        assert records.cleanup_stale(clock.now()) == []
        assert memory_store.get(goals_key()) == "{broken"
        assert memory_store.get("another-app-setting") == "{broken"

    def test_removes_every_stale_record(self, records, memory_store, clock):
        """All stale entries go, not just every other one."""
        now = clock.now()
        for days in range(8, 14):
            store_record(memory_store, now - timedelta(days=days))

        assert len(records.cleanup_stale(now)) == 6
        assert memory_store.keys() == []

    def test_custom_horizon(self, records, memory_store, clock):
        now = clock.now()
        store_record(memory_store, now - timedelta(days=2))

        assert len(records.cleanup_stale(now, max_age_days=1)) == 1

    def test_storage_failure_does_not_raise(self, clock, scheduler):
        records = DailyRecordStore(FailingStore(), clock, scheduler)
        assert records.cleanup_stale() == []

    def test_naive_now(self, records, memory_store):
        """A naive current time is read as local time."""
        now = datetime.now().astimezone()
        store_record(memory_store, now - timedelta(days=30))
        store_record(memory_store, now - timedelta(hours=1))

        removed = records.cleanup_stale(datetime.now())

        assert removed == [date_key(now - timedelta(days=30))]
        assert date_key(now - timedelta(hours=1)) in memory_store.keys()


class TestExpiryWatch:
    """Tests for start_expiry_watch."""

    def test_fires_once_record_expires(self, records, memory_store, scheduler, clock):
        """The hourly check calls back and deletes once the record is 24 hours old."""
        records.save_today(3, 500)
        calls = []
        watch = records.start_expiry_watch(lambda: calls.append(clock.now()))

        scheduler.advance(EXPIRY_CHECK_INTERVAL)
        assert calls == []

        key = date_key(clock.now())
        stale = build_record(3, 500, clock.now() - timedelta(hours=25))
        memory_store.set(key, serialize_record(stale))
        scheduler.advance(EXPIRY_CHECK_INTERVAL)

        assert len(calls) == 1
        assert memory_store.get(key) is None
        watch.cancel()

    def test_checks_repeat_every_hour(self, records, scheduler):
        records.start_expiry_watch(lambda: None)
        assert len(scheduler.pending) == 1

        scheduler.advance(EXPIRY_CHECK_INTERVAL * 3)

        assert len(scheduler.timers) == 4
        assert len(scheduler.pending) == 1

    def test_no_record_no_call(self, records, scheduler):
        calls = []
        records.start_expiry_watch(lambda: calls.append(1))
        scheduler.advance(EXPIRY_CHECK_INTERVAL * 2)
        assert calls == []

    def test_corrupt_record_skipped(self, records, memory_store, scheduler, clock):
        """A corrupt record is not treated as expired by the watch."""
        key = date_key(clock.now())
        memory_store.set(key, "garbage")
        calls = []
        records.start_expiry_watch(lambda: calls.append(1))

        scheduler.advance(EXPIRY_CHECK_INTERVAL)

        assert calls == []
        assert memory_store.get(key) == "garbage"

    def test_cancel_stops_checks(self, records, memory_store, scheduler, clock):
        """After cancel, passing the interval triggers nothing."""
        key = date_key(clock.now())
        memory_store.set(key, serialize_record(build_record(1, 1, clock.now() - timedelta(days=2))))
        calls = []
        watch = records.start_expiry_watch(lambda: calls.append(1))

        watch.cancel()
        scheduler.advance(EXPIRY_CHECK_INTERVAL * 2)

        assert calls == []
        assert watch.cancelled
        assert scheduler.pending == []
        assert memory_store.get(key) is not None

    def test_cancel_during_check(self, records, memory_store, scheduler, clock):
        """Cancelling while a check is reading suppresses the callback."""
        key = date_key(clock.now())
        memory_store.set(key, serialize_record(build_record(1, 1, clock.now() - timedelta(days=2))))
        calls = []
        watch = None
        real_get = memory_store.get

        def get_then_cancel(k):
            watch.cancel()
            return real_get(k)

        watch = records.start_expiry_watch(lambda: calls.append(1))
        memory_store.get = get_then_cancel
        scheduler.advance(EXPIRY_CHECK_INTERVAL)

        assert calls == []
        assert scheduler.pending == []

    def test_failing_callback_keeps_watching(self, records, memory_store, scheduler, clock):
        def explode():
            raise RuntimeError("boom")

        key = date_key(clock.now())
        memory_store.set(key, serialize_record(build_record(1, 1, clock.now() - timedelta(days=2))))
        records.start_expiry_watch(explode)

        scheduler.advance(EXPIRY_CHECK_INTERVAL)

        assert len(scheduler.pending) == 1


class TestGoals:
    """Tests for get_goals and set_goals."""

    def test_defaults_when_missing(self, records):
        assert records.get_goals() == GoalSettings(water_goal=8, calorie_goal=2000)

    def test_partial_goals_merged(self, records, memory_store):
        """A stored water goal without a calorie goal keeps the calorie default."""
        memory_store.set(goals_key(), json.dumps({"waterGoal": 10}))
        assert records.get_goals() == GoalSettings(water_goal=10, calorie_goal=2000)

    def test_corrupt_goals(self, records, memory_store):
        memory_store.set(goals_key(), "oops")
        assert records.get_goals() == GoalSettings()

    def test_set_then_get(self, records, memory_store):
        records.set_goals(GoalSettings(water_goal=12, calorie_goal=2500))
        assert records.get_goals() == GoalSettings(water_goal=12, calorie_goal=2500)
        assert json.loads(memory_store.get(goals_key())) == {"waterGoal": 12, "calorieGoal": 2500}

    def test_set_from_mapping(self, records):
        goals = records.set_goals({"water_goal": 6, "calorie_goal": 1800})
        assert goals == GoalSettings(water_goal=6, calorie_goal=1800)

    def test_non_positive_rejected(self, records, memory_store):
        with pytest.raises(ValidationError):
            records.set_goals({"water_goal": 0, "calorie_goal": 1800})
        assert memory_store.get(goals_key()) is None

    def test_outside_editor_range_accepted(self, records):
        """The store only requires positive goals."""
        goals = records.set_goals(GoalSettings(water_goal=50, calorie_goal=100))
        assert goals.water_goal == 50

    def test_read_failure_gives_defaults(self, clock, scheduler):
        records = DailyRecordStore(FailingStore(), clock, scheduler)
        assert records.get_goals() == GoalSettings()

    def test_write_failure_raised(self, clock, scheduler):
        records = DailyRecordStore(FailingStore(), clock, scheduler)
        with pytest.raises(StorageUnavailable):
            records.set_goals(GoalSettings())
