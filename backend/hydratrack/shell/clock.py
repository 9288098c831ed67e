"""Clock and Scheduler - Wall-clock time and timers.

Injected wherever the current time or a delayed callback is needed, so the
expiry and cleanup rules can be driven deterministically.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass
class SystemClock:
    """Wall clock in a fixed timezone, or the system local zone if none.

    Always returns timezone-aware datetimes.
    """

    tz: tzinfo | None = None

    def now(self) -> datetime:
        if self.tz is not None:
            return datetime.now(self.tz)
        return datetime.now().astimezone()


def load_timezone(name: str | None) -> tzinfo | None:
    """Resolve an IANA timezone name. Empty means system local time.

    Raises:
        zoneinfo.ZoneInfoNotFoundError: If the name is unknown
    """
    if not name:
        return None
    return ZoneInfo(name)


class AsyncioScheduler:
    """Runs callbacks on an asyncio event loop.

    Without an explicit loop, the loop running at scheduling time is used,
    so this can be created before the server starts.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)
