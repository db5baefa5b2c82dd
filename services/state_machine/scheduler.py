"""
Session scheduler.

Wakes on every wall-clock minute boundary: blocked machines get their one
retry for the minute, and at 00:00 in the exchange timezone the finished day
is archived before every machine is reset for the new day.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytz

from core.config.settings import Settings
from core.logging import get_error_logger_safe, get_trading_logger_safe
from core.schemas.events import BroadcastEvent
from core.trading.interfaces import Broadcaster
from services.history.archiver import HistoryArchiver
from services.instrument_data.registry import InstrumentRegistry
from .manager import StateMachineManager


class SessionScheduler:
    def __init__(
        self,
        settings: Settings,
        manager: StateMachineManager,
        archiver: HistoryArchiver,
        instruments: InstrumentRegistry,
        broadcaster: Optional[Broadcaster] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.manager = manager
        self.archiver = archiver
        self.instruments = instruments
        self.broadcaster = broadcaster
        self.daily_reset_enabled = settings.trading.daily_reset_enabled
        self.timezone = pytz.timezone(settings.trading.timezone)
        self._clock = clock or (lambda: datetime.now(self.timezone))
        self._task: Optional[asyncio.Task] = None
        self.logger = get_trading_logger_safe("scheduler")
        self.error_logger = get_error_logger_safe("scheduler_errors")

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="session-scheduler")
            self.logger.info("Session scheduler started", timezone=str(self.timezone))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            self.logger.info("Session scheduler stopped")

    async def _run(self) -> None:
        handled: Optional[datetime] = None
        while True:
            boundary = self.next_boundary(self._clock(), handled)
            await self.wait_until(boundary)
            handled = boundary
            try:
                await self.on_minute(boundary)
            except Exception as e:
                self.error_logger.error("Minute tick failed", error=str(e), exc_info=True)

    @staticmethod
    def next_boundary(now: datetime, handled: Optional[datetime] = None) -> datetime:
        """First minute boundary after ``now`` that was not handled yet."""
        boundary = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        if handled is not None and boundary <= handled:
            boundary = handled + timedelta(minutes=1)
        return boundary

    async def wait_until(self, boundary: datetime) -> None:
        # Sleep runs on the loop's monotonic clock; wake-ups are checked against the wall clock
        while True:
            remaining = (boundary - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def on_minute(self, now: datetime) -> None:
        for token, _ in self.manager.minute_retry():
            await self._emit(BroadcastEvent.FSM, self.manager.snapshot_payload(token))

        if self.daily_reset_enabled and now.hour == 0 and now.minute == 0:
            await self.rollover(now)

    async def rollover(self, now: datetime) -> None:
        """Archive the day that just ended, then start the new one."""
        trading_day = (now - timedelta(minutes=1)).date()
        self.logger.info("Midnight rollover", trading_day=trading_day.isoformat())
        await self.archiver.archive(trading_day, self.instruments.all(), self.manager)
        await self.manager.daily_reset()

        for token in self.manager.tokens:
            await self._emit(BroadcastEvent.FSM, self.manager.snapshot_payload(token))
            await self._emit(BroadcastEvent.SIGNALS, self.manager.signals_payload(token))

    async def _emit(self, event: BroadcastEvent, payload) -> None:
        if self.broadcaster is not None:
            await self.broadcaster.emit(event.value, payload)
