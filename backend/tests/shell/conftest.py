"""Shared fixtures for shell tests: a settable clock and a manual scheduler."""

import pytest
from datetime import datetime, timedelta, timezone

from hydratrack.shell.daily_store import DailyRecordStore
from hydratrack.shell.store import InMemoryRecordStore


START = datetime(2024, 12, 28, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class ManualTimer:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers fire when advance() moves past them.

    Advancing also moves the paired clock, so checks see the new time.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.elapsed = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(self.elapsed + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and t.due > self.elapsed]

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = sorted(
                (t for t in self.pending if t.due <= target), key=lambda t: t.due
            )
            if not due:
                break
            timer = due[0]
            self.clock.advance(seconds=timer.due - self.elapsed)
            self.elapsed = timer.due
            timer.cancelled = True
            timer.callback()
        self.clock.advance(seconds=target - self.elapsed)
        self.elapsed = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def records(memory_store, clock, scheduler):
    return DailyRecordStore(memory_store, clock, scheduler)
