"""Tests for the observer bus and the timer abstractions."""
import asyncio
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import FakeClock
from core.events import EventBus
from core.timers import DailyTask, PeriodicTask, seconds_until_next

COLOMBO = ZoneInfo("Asia/Colombo")


async def _spin(n: int = 20):
    for _ in range(n):
        await asyncio.sleep(0)


# ──────────────────────────────────────────────────────────────
#  EventBus
# ──────────────────────────────────────────────────────────────

class TestEventBus:
    def test_sync_observer_receives_payload(self):
        bus = EventBus()
        seen = []
        bus.subscribe(lambda name, payload: seen.append((name, payload)))
        bus.emit("queue:update", size=3)
        assert seen == [("queue:update", {"size": 3})]

    def test_failing_observer_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(name, payload):
            raise RuntimeError("observer down")

        bus.subscribe(broken)
        bus.subscribe(lambda name, payload: seen.append(name))
        bus.emit("queue:item", id="j1", status="sent")
        assert seen == ["queue:item"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(lambda name, payload: seen.append(name))
        unsubscribe()
        unsubscribe()
        bus.emit("queue:update", size=0)
        assert seen == []

    @pytest.mark.asyncio
    async def test_async_observer_scheduled(self):
        bus = EventBus()
        seen = []

        async def observer(name, payload):
            seen.append(payload)

        bus.subscribe(observer)
        bus.emit("transport:state", state="connected")
        await _spin()
        assert seen == [{"state": "connected"}]


# ──────────────────────────────────────────────────────────────
#  Timers
# ──────────────────────────────────────────────────────────────

class TestSecondsUntilNext:
    def test_later_today(self):
        now = datetime(2024, 5, 1, 4, 30, tzinfo=timezone.utc)       # 10:00 local
        assert seconds_until_next(now, time(11, 0), COLOMBO) == 3600

    def test_rolls_to_tomorrow(self):
        now = datetime(2024, 5, 1, 4, 30, tzinfo=timezone.utc)       # 10:00 local
        expected = 14 * 3600 + 5                                      # to 00:00:05
        assert seconds_until_next(now, time(0, 0, 5), COLOMBO) == expected

    def test_exact_instant_means_next_day(self):
        now = datetime(2024, 5, 1, 18, 30, 5, tzinfo=timezone.utc)   # 00:00:05 local
        assert seconds_until_next(now, time(0, 0, 5), COLOMBO) == 86400

    def test_dst_transition_uses_real_elapsed_time(self):
        # New York springs forward on 2024-03-10: that local day is 23 hours long
        ny = ZoneInfo("America/New_York")
        now = datetime(2024, 3, 9, 17, 0, tzinfo=timezone.utc)        # 12:00 EST
        assert seconds_until_next(now, time(12, 0), ny) == 23 * 3600


class TestPeriodicTask:
    @pytest.mark.asyncio
    async def test_runs_every_interval(self):
        clock = FakeClock()
        calls = []

        async def job():
            calls.append(clock.now())

        task = PeriodicTask("poll", 10, job, clock)
        handle = task.start()
        await _spin()
        handle.cancel()
        await handle.wait()

        assert len(calls) >= 2
        assert set(clock.sleeps) == {10}
        assert (calls[1] - calls[0]).total_seconds() == 10
        assert handle.done

    @pytest.mark.asyncio
    async def test_run_immediately(self):
        clock = FakeClock()
        calls = []

        async def job():
            calls.append(len(clock.sleeps))

        handle = PeriodicTask("reap", 60, job, clock, run_immediately=True).start()
        await _spin(3)
        handle.cancel()
        await handle.wait()
        assert calls[0] == 0

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_timer(self):
        clock = FakeClock()
        task_runs = []

        async def flaky():
            task_runs.append(1)
            raise RuntimeError("store down")

        task = PeriodicTask("poll", 10, flaky, clock)
        handle = task.start()
        await _spin()
        handle.cancel()
        await handle.wait()
        assert len(task_runs) >= 2
        assert task.runs == len(task_runs)

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_handle(self):
        clock = FakeClock()

        async def job():
            pass

        task = PeriodicTask("poll", 10, job, clock)
        first = task.start()
        assert task.start() is first
        task.cancel()
        await first.wait()


class TestDailyTask:
    @pytest.mark.asyncio
    async def test_sleeps_until_trigger_then_a_day(self):
        clock = FakeClock(datetime(2024, 5, 1, 4, 30, tzinfo=timezone.utc))  # 10:00 local
        fired = []

        async def job():
            fired.append(clock.now().astimezone(COLOMBO))

        task = DailyTask("reminders", time(0, 0, 5), COLOMBO, job, clock)
        handle = task.start()
        await _spin()
        handle.cancel()
        await handle.wait()

        assert clock.sleeps[0] == 14 * 3600 + 5
        assert clock.sleeps[1] == 86400
        assert fired[0] == datetime(2024, 5, 2, 0, 0, 5, tzinfo=COLOMBO)
        assert fired[1] == datetime(2024, 5, 3, 0, 0, 5, tzinfo=COLOMBO)

    def test_next_delay(self):
        clock = FakeClock(datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc))  # 23:30 local
        task = DailyTask("reminders", time(0, 0, 5), COLOMBO, lambda: None, clock)
        assert task.next_delay() == 30 * 60 + 5
