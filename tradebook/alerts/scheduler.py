from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

from tradebook.alerts.alert_engine import TickReport
from tradebook.utils.config import get_settings
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)


class PollingScheduler:
    """
    Drives a synchronous tick function on a fixed interval.

    The next tick is scheduled only after the previous one returns, and a
    run_once() issued while a tick is in flight is skipped. stop() lets the
    in-flight tick finish before the task is released.
    """

    def __init__(self, tick: Callable[[Optional[datetime]], TickReport],
                 interval: Optional[float] = None) -> None:
        self._tick = tick
        self._interval = interval if interval is not None else get_settings().alert_poll_interval
        if self._interval <= 0:
            raise ValueError("interval must be positive")
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._in_flight = False
        self.tick_count = 0
        self.last_report: Optional[TickReport] = None
        self.last_error: Optional[str] = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("alert_scheduler_started", interval=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        # the loop exits on its own once the current tick returns
        await self._task
        self._task = None
        logger.info("alert_scheduler_stopped", ticks=self.tick_count)

    async def run_once(self, now: Optional[datetime] = None) -> Optional[TickReport]:
        """One tick now. Returns None when a tick is already running."""
        if self._in_flight:
            logger.debug("alert_tick_skipped")
            return None
        self._in_flight = True
        try:
            report = await asyncio.to_thread(self._tick, now)
        finally:
            self._in_flight = False
        self.tick_count += 1
        self.last_report = report
        return report

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
                self.last_error = None
            except Exception as e:
                self.last_error = str(e)
                logger.error("alert_tick_failed", error=str(e))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
