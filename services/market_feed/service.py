"""
Market feed: KiteTicker subscription for every configured instrument.

The ticker is authenticated with the primary account. Its callbacks run on
the ticker's own thread; ticks are formatted there and handed to the event
loop through a bounded queue, so every state machine mutation happens on
the loop in arrival order.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from kiteconnect import KiteTicker

from core.config.settings import Settings
from core.events.hub import EventHub
from core.logging import get_error_logger_safe, get_market_data_logger_safe
from core.schemas.events import BroadcastEvent, MarketTick, PrimaryAccountChanged, utc_now
from core.trading.interfaces import Broadcaster
from services.accounts.registry import AccountRegistry
from services.instrument_data.registry import InstrumentRegistry
from services.state_machine.manager import StateMachineManager
from .formatter import TickFormatter
from .models import ConnectionStats

TickerFactory = Callable[[str, str], Any]


def kite_ticker_factory(api_key: str, access_token: str) -> KiteTicker:
    return KiteTicker(api_key, access_token)


class MarketFeedService:
    def __init__(
        self,
        settings: Settings,
        registry: AccountRegistry,
        instruments: InstrumentRegistry,
        manager: StateMachineManager,
        event_hub: EventHub,
        broadcaster: Optional[Broadcaster] = None,
        ticker_factory: TickerFactory = kite_ticker_factory,
    ):
        self.mode = settings.market_feed.mode
        self.reconnect_delay = settings.market_feed.reconnect_delay_seconds
        self.registry = registry
        self.instruments = instruments
        self.manager = manager
        self.event_hub = event_hub
        self.broadcaster = broadcaster
        self._ticker_factory = ticker_factory
        self.formatter = TickFormatter(settings.trading.timezone)

        self.kws = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._tick_queue: "asyncio.Queue[MarketTick]" = asyncio.Queue(maxsize=10000)
        self._processor_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._last_ticks: Dict[int, MarketTick] = {}
        self.stats = ConnectionStats()

        self.logger = get_market_data_logger_safe("market_feed")
        self.error_logger = get_error_logger_safe("market_feed_errors")

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        self.loop = asyncio.get_running_loop()
        self._running = True
        self.event_hub.subscribe(PrimaryAccountChanged, self._on_primary_changed)
        self._processor_task = asyncio.create_task(self._tick_processor(), name="tick-processor")
        self.connect()

    async def stop(self) -> None:
        self._running = False
        self.event_hub.unsubscribe(PrimaryAccountChanged, self._on_primary_changed)
        for task in (self._reconnect_task, self._processor_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._disconnect("Service shutting down")
        self.logger.info("Market feed stopped")

    def connect(self) -> bool:
        """Open a ticker for the primary account; degraded (not fatal) without one."""
        primary = self.registry.get_primary_account()
        if primary is None:
            self.stats.current_status = "degraded"
            self.logger.warning("No enabled account with credentials; market feed not started. "
                                "Add an account and complete the Zerodha login.")
            return False
        tokens = self.instruments.tokens()
        if not tokens:
            self.stats.current_status = "degraded"
            self.logger.warning("No instruments to subscribe; market feed not started")
            return False

        self.logger.info("Connecting market feed", account=primary.name, instruments=len(tokens))
        self.stats.account = primary.name
        self.stats.connection_attempts += 1
        try:
            self.kws = self._ticker_factory(primary.api_key, primary.access_token)
            self._assign_callbacks()
            self.kws.connect(threaded=True)
        except Exception as e:
            self.stats.current_status = "disconnected"
            self.error_logger.error("Market feed connection failed", account=primary.name, error=str(e))
            return False
        return True

    async def reconnect(self) -> bool:
        self.logger.info("Reconnecting market feed with updated credentials")
        self._disconnect("Reconnecting")
        await asyncio.sleep(self.reconnect_delay)
        if not self._running:
            return False
        return self.connect()

    def _disconnect(self, reason: str) -> None:
        if self.kws is None:
            return
        try:
            self.kws.close(1000, reason)
        except Exception as e:
            self.logger.warning("Ticker close failed", error=str(e))
        self.kws = None
        self.stats.current_status = "disconnected"

    def _on_primary_changed(self, event: PrimaryAccountChanged) -> None:
        # May be published from any thread
        if self.loop is None or not self._running:
            return
        self.logger.info("Primary account credentials changed", account=event.name)
        self.loop.call_soon_threadsafe(self._schedule_reconnect)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = asyncio.create_task(self.reconnect(), name="market-feed-reconnect")

    # ------------------------------------------------------------------ ticker callbacks (ticker thread)

    def _assign_callbacks(self) -> None:
        self.kws.on_ticks = self._on_ticks
        self.kws.on_connect = self._on_connect
        self.kws.on_close = self._on_close
        self.kws.on_error = self._on_error

    def _on_connect(self, ws, response) -> None:
        tokens = self.instruments.tokens()
        ws.subscribe(tokens)
        ws.set_mode(self.mode, tokens)
        self.stats.current_status = "connected"
        self.stats.successful_connections += 1
        self.stats.last_connection_time = utc_now()
        self.stats.instruments_subscribed = len(tokens)
        self.logger.info("Ticker connected, subscribed", instruments=len(tokens), mode=self.mode)

    def _on_ticks(self, ws, ticks: List[Dict[str, Any]]) -> None:
        if not self._running or self.loop is None:
            return
        self.stats.ticks_received += len(ticks)
        for raw in ticks:
            try:
                instrument = self.instruments.get(int(raw.get("instrument_token", -1)))
                if instrument is None:
                    continue
                tick = self.formatter.format_tick(raw, instrument)
            except (KeyError, TypeError, ValueError) as e:
                self.error_logger.error("Malformed tick dropped", error=str(e))
                continue
            self.loop.call_soon_threadsafe(self._enqueue, tick)

    def _enqueue(self, tick: MarketTick) -> None:
        try:
            self._tick_queue.put_nowait(tick)
        except asyncio.QueueFull:
            self.stats.ticks_dropped += 1
            self.logger.warning("Tick queue full, dropping tick", dropped=self.stats.ticks_dropped)

    def _on_close(self, ws, code, reason) -> None:
        self.stats.current_status = "disconnected"
        self.stats.disconnections += 1
        self.stats.last_disconnection_time = utc_now()
        self.logger.warning("Ticker closed", code=code, reason=reason)

    def _on_error(self, ws, code, reason) -> None:
        self.error_logger.error("Ticker error", code=code, reason=reason)

    # ------------------------------------------------------------------ loop side

    async def _tick_processor(self) -> None:
        while True:
            tick = await self._tick_queue.get()
            try:
                await self.process_tick(tick)
            except Exception as e:
                self.error_logger.error("Tick processing failed", token=tick.token, error=str(e), exc_info=True)
            finally:
                self._tick_queue.task_done()

    async def process_tick(self, tick: MarketTick) -> None:
        """Route one tick to its machine and broadcast the result."""
        self._last_ticks[tick.token] = tick
        snapshot = self.manager.handle_tick(tick.token, tick)
        self.stats.ticks_processed += 1
        if self.broadcaster is None:
            return
        await self.broadcaster.emit(BroadcastEvent.TICK.value, tick.model_dump(mode="json"))
        if snapshot is not None:
            await self.broadcaster.emit(BroadcastEvent.FSM.value, self.manager.snapshot_payload(tick.token))

    def get_last_tick(self, token: int) -> Optional[MarketTick]:
        return self._last_ticks.get(token)

    @property
    def is_connected(self) -> bool:
        return self.stats.current_status == "connected"
