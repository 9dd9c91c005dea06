"""
Timers driving the engine's background work.

- PeriodicTask: fixed-period loop (queue poll, media reaper)
- DailyTask:    self-rescheduling loop aligned to a local wall-clock time
                (reminder producer); the delay is recomputed after every run
                so variable run durations and DST shifts never drift it

Both run on the event loop and sleep through an injectable Clock, so tests can
drive them without real sleeps. ``start()`` returns a TimerHandle whose
``cancel()`` stops the loop.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Awaitable, Callable, Optional

logger = structlog.get_logger()

Job = Callable[[], Awaitable[Any]]


class Clock:
    """Wall-clock time and sleeping; swapped out in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


def seconds_until_next(now: datetime, at: time, tz: tzinfo) -> float:
    """Seconds from ``now`` to the next strictly-later local ``at`` in ``tz``."""
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    # Compare in UTC: same-tzinfo subtraction ignores offset changes.
    return (candidate.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class TimerHandle:
    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()
            logger.info("timer_cancelled", timer=self.name)

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class _BaseTask:
    def __init__(self, name: str, fn: Job, clock: Optional[Clock] = None, run_immediately: bool = False):
        self.name = name
        self.fn = fn
        self.clock = clock or Clock()
        self.run_immediately = run_immediately
        self.runs = 0
        self._handle: Optional[TimerHandle] = None

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self.fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("timer_run_failed", timer=self.name, error=str(e))

    async def _loop(self) -> None:
        raise NotImplementedError

    def start(self) -> TimerHandle:
        if self._handle is not None and not self._handle.done:
            return self._handle
        task = asyncio.create_task(self._loop(), name=self.name)
        self._handle = TimerHandle(self.name, task)
        return self._handle

    def cancel(self) -> None:
        if self._handle:
            self._handle.cancel()


class PeriodicTask(_BaseTask):
    def __init__(self, name: str, interval_s: float, fn: Job,
                 clock: Optional[Clock] = None, run_immediately: bool = False):
        super().__init__(name, fn, clock, run_immediately)
        self.interval_s = interval_s

    async def _loop(self) -> None:
        logger.info("timer_started", timer=self.name, interval_s=self.interval_s)
        if self.run_immediately:
            await self._run_once()
        while True:
            await self.clock.sleep(self.interval_s)
            await self._run_once()


class DailyTask(_BaseTask):
    def __init__(self, name: str, at: time, tz: tzinfo, fn: Job,
                 clock: Optional[Clock] = None, run_immediately: bool = False):
        super().__init__(name, fn, clock, run_immediately)
        self.at = at
        self.tz = tz

    def next_delay(self) -> float:
        return seconds_until_next(self.clock.now(), self.at, self.tz)

    async def _loop(self) -> None:
        if self.run_immediately:
            await self._run_once()
        while True:
            delay = self.next_delay()
            next_run = (self.clock.now() + timedelta(seconds=delay)).astimezone(self.tz)
            logger.info("daily_timer_scheduled", timer=self.name,
                        next_run=next_run.isoformat(), minutes=round(delay / 60))
            await self.clock.sleep(delay)
            await self._run_once()
