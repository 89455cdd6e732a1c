from __future__ import annotations

import asyncio
import threading

import pytest

from tradebook.alerts.alert_engine import TickReport
from tradebook.alerts.alert_models import AlertCondition, AlertStatus, PriceAlert
from tradebook.alerts.scheduler import PollingScheduler


class RecordingTick:
    def __init__(self, block: threading.Event | None = None, fail: bool = False):
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.block = block
        self.started = threading.Event()
        self.fail = fail
        self._lock = threading.Lock()

    def __call__(self, now=None) -> TickReport:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.block is not None:
                self.block.wait(timeout=5)
            if self.fail:
                raise RuntimeError("boom")
            return TickReport(evaluated=1)
        finally:
            with self._lock:
                self.active -= 1


class TestPollingScheduler:

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PollingScheduler(RecordingTick(), interval=0)

    def test_default_interval_from_config(self):
        assert PollingScheduler(RecordingTick()).interval == 5.0

    @pytest.mark.asyncio
    async def test_run_once(self):
        tick = RecordingTick()
        scheduler = PollingScheduler(tick, interval=1)
        report = await scheduler.run_once()
        assert report.evaluated == 1
        assert scheduler.tick_count == 1
        assert scheduler.last_report is report

    @pytest.mark.asyncio
    async def test_run_once_skipped_while_in_flight(self):
        release = threading.Event()
        tick = RecordingTick(block=release)
        scheduler = PollingScheduler(tick, interval=1)

        first = asyncio.create_task(scheduler.run_once())
        await asyncio.to_thread(tick.started.wait, 5)
        assert scheduler.in_flight
        assert await scheduler.run_once() is None

        release.set()
        assert (await first).evaluated == 1
        assert tick.calls == 1
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_loop_ticks_without_overlap(self):
        tick = RecordingTick()
        scheduler = PollingScheduler(tick, interval=0.01)
        await scheduler.start()
        assert scheduler.is_running
        for _ in range(200):
            if tick.calls >= 3:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert tick.calls >= 3
        assert tick.max_active == 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self):
        release = threading.Event()
        tick = RecordingTick(block=release)
        scheduler = PollingScheduler(tick, interval=10)
        await scheduler.start()
        await asyncio.to_thread(tick.started.wait, 5)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        release.set()
        await stopping
        assert tick.calls == 1
        assert scheduler.tick_count == 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_failed_tick_is_logged_and_loop_continues(self):
        tick = RecordingTick(fail=True)
        scheduler = PollingScheduler(tick, interval=0.01)
        await scheduler.start()
        for _ in range(200):
            if tick.calls >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert tick.calls >= 2
        assert scheduler.last_error == "boom"

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        scheduler = PollingScheduler(RecordingTick(), interval=10)
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await PollingScheduler(RecordingTick(), interval=1).stop()


@pytest.mark.asyncio
async def test_drives_engine_ticks(engine, alert_repo, price_feed):
    alert = alert_repo.add(PriceAlert(symbol="EURUSD", condition=AlertCondition.CROSSES_ABOVE, target_price=1.1))
    price_feed.set_price("EURUSD", 1.2)
    scheduler = PollingScheduler(engine.tick, interval=1)
    report = await scheduler.run_once()
    assert report.triggered == [alert.id]
    assert alert_repo.get(alert.id).status == AlertStatus.TRIGGERED
