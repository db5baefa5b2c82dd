"""
Per-instrument trading state machine.

States: NOSIGNAL -> NOPOSITION_SIGNAL -> BUYPOSITION or NOPOSITION_BLOCKED.

A BUY signal arms a threshold (the signal's stop price). The first LTP above
the threshold opens a long position; an LTP at or below it either blocks the
entry (until the next minute retry or a higher tick) or, once in a position,
exits at a stop loss. A SELL signal always disarms the machine.

Paper P&L is tracked for every instrument. When live trading is engaged the
machine also tracks a live leg and announces its opening and closing as
``PositionOpened`` / ``PositionClosed`` events through the injected sink; it
never talks to brokers itself.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Optional, Union

from core.logging import get_trading_logger_safe
from core.schemas.events import MarketTick, PositionClosed, PositionOpened, SignalIntent, TradeSignal, utc_now
from .models import (
    ARMED_STATES,
    ExitReason,
    FsmEvent,
    FsmSnapshot,
    StateLogEntry,
    TradeRecord,
    TradingState,
)

logger = get_trading_logger_safe("state_machine")

EventSink = Callable[[Union[PositionOpened, PositionClosed]], None]


class InstrumentStateMachine:
    """Threshold-crossing entry/exit machine for a single instrument."""

    def __init__(
        self,
        symbol: Optional[str],
        lot: int = 1,
        token: int = 0,
        event_sink: Optional[EventSink] = None,
        state_log_capacity: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token = token
        self.symbol = symbol
        self.lot = lot
        self._event_sink = event_sink
        self._clock = clock

        self.state = TradingState.NOSIGNAL
        self.threshold: Optional[float] = None
        self.ltp: Optional[float] = None
        self.blocked_at: Optional[datetime] = None
        self.last_checked_at: Optional[datetime] = None

        # Paper track
        self.entry_price: Optional[float] = None
        self.entry_time: Optional[datetime] = None
        self.realized_pnl = 0.0
        self.cumulative_pnl = 0.0
        self.paper_trades: list[TradeRecord] = []

        # Live track
        self.live_active = False
        self.live_entry_price: Optional[float] = None
        self.live_entry_time: Optional[datetime] = None
        self.live_realized_pnl = 0.0
        self.live_cumulative_pnl = 0.0
        self.live_trades: list[TradeRecord] = []

        self.state_log: Deque[StateLogEntry] = deque(maxlen=state_log_capacity)

    # ------------------------------------------------------------------ P&L

    @property
    def unrealized_pnl(self) -> float:
        if self.entry_price is None or self.ltp is None:
            return 0.0
        return (self.ltp - self.entry_price) * self.lot

    @property
    def live_unrealized_pnl(self) -> float:
        if self.live_entry_price is None or self.ltp is None:
            return 0.0
        return (self.ltp - self.live_entry_price) * self.lot

    @property
    def has_live_position(self) -> bool:
        return self.live_entry_price is not None

    # ------------------------------------------------------------------ inputs

    def handle_signal(self, signal: TradeSignal) -> FsmSnapshot:
        if signal.intent == SignalIntent.BUY and signal.stoppx is not None:
            prev_state = self.state
            self.threshold = float(signal.stoppx)
            self.blocked_at = None
            # An open position keeps running with the re-armed stop
            if prev_state != TradingState.BUYPOSITION:
                self.state = TradingState.NOPOSITION_SIGNAL
            self._log(FsmEvent.BUY_SIGNAL, prev_state=prev_state, stoppx=self.threshold)

            if self.ltp is not None:
                self.evaluate("SIGNAL_EVAL")
        elif signal.intent == SignalIntent.SELL:
            prev_state = self.state
            was_in_position = prev_state == TradingState.BUYPOSITION
            exit_price = self.ltp if was_in_position else None
            if was_in_position:
                self._close_positions(ExitReason.SELL_SIGNAL)
            self.state = TradingState.NOSIGNAL
            self.threshold = None
            self.blocked_at = None
            self.entry_price = None
            self._log(
                FsmEvent.SELL_EXIT if was_in_position else FsmEvent.SELL_SIGNAL,
                prev_state=prev_state,
                exit_price=exit_price,
            )
        else:
            logger.warning("Ignoring signal without actionable intent", symbol=self.symbol,
                           intent=signal.intent.value, stoppx=signal.stoppx)
        return self.get_snapshot()

    def handle_tick(self, tick: Union[MarketTick, Dict[str, Any]]) -> FsmSnapshot:
        if isinstance(tick, dict):
            tick = MarketTick.model_validate(tick)
        self.ltp = float(tick.ltp)
        if tick.symbol:
            self.symbol = tick.symbol

        if self.state != TradingState.NOSIGNAL:
            self.evaluate("TICK")
        return self.get_snapshot()

    def evaluate(self, trigger: str = "UNKNOWN") -> None:
        if self.state == TradingState.NOSIGNAL:
            return
        if self.ltp is None or self.threshold is None:
            return

        prev_state = self.state

        if self.ltp > self.threshold:
            if self.state != TradingState.BUYPOSITION:
                self.state = TradingState.BUYPOSITION
                self.blocked_at = None
                self._open_positions()
                self._log(FsmEvent.ENTRY, trigger=trigger, prev_state=prev_state,
                          entry_price=self.entry_price)
        elif self.state == TradingState.BUYPOSITION:
            exit_price = self.ltp
            self._close_positions(ExitReason.STOP_LOSS)
            self.state = TradingState.NOSIGNAL
            self.threshold = None
            self._log(FsmEvent.STOP_LOSS, trigger=trigger, prev_state=prev_state, exit_price=exit_price)
        else:
            # NOPOSITION_SIGNAL or already NOPOSITION_BLOCKED
            if self.state != TradingState.NOPOSITION_BLOCKED:
                self.state = TradingState.NOPOSITION_BLOCKED
                self.blocked_at = self._clock()
                self._log(FsmEvent.BLOCKED, trigger=trigger, prev_state=prev_state)

    def minute_retry(self) -> bool:
        """One re-evaluation per minute boundary while blocked."""
        if self.state != TradingState.NOPOSITION_BLOCKED:
            return False

        self.last_checked_at = self._clock()
        self._log(FsmEvent.MINUTE_RETRY, prev_state=self.state)
        self.evaluate("MINUTE_RETRY")
        return True

    def reset(self) -> None:
        if self.has_live_position:
            logger.warning("Reset dropped an open live leg; broker position is left to the operator",
                           symbol=self.symbol, live_entry_price=self.live_entry_price)
        prev_state = self.state
        self.state = TradingState.NOSIGNAL
        self.threshold = None
        self.blocked_at = None
        self.last_checked_at = None
        self.entry_price = None
        self.entry_time = None
        self.live_entry_price = None
        self.live_entry_time = None
        self._log(FsmEvent.RESET, prev_state=prev_state)

    def clear_day(self) -> None:
        """Start a new trading day: drop trade lists and day P&L."""
        self.paper_trades = []
        self.live_trades = []
        self.realized_pnl = 0.0
        self.cumulative_pnl = 0.0
        self.live_realized_pnl = 0.0
        self.live_cumulative_pnl = 0.0

    # ------------------------------------------------------------------ operator actions

    def activate_live(self) -> FsmSnapshot:
        """Engage live trading; the next ENTRY opens a live leg."""
        if not self.live_active:
            self.live_active = True
            self._log(FsmEvent.LIVE_ON, prev_state=self.state)
        return self.get_snapshot()

    def deactivate_live(self) -> FsmSnapshot:
        """Disengage live trading, flattening an open live leg at the LTP."""
        if not self.live_active and not self.has_live_position:
            return self.get_snapshot()
        exit_price = None
        if self.has_live_position:
            exit_price = self.ltp
            self._close_live(ExitReason.MANUAL, self._clock())
        self.live_active = False
        self._log(FsmEvent.LIVE_OFF, prev_state=self.state, exit_price=exit_price)
        return self.get_snapshot()

    def manual_exit(self) -> FsmSnapshot:
        """Close an open position at the LTP and disarm the machine."""
        if self.state != TradingState.BUYPOSITION:
            return self.get_snapshot()
        prev_state = self.state
        exit_price = self.ltp
        self._close_positions(ExitReason.MANUAL)
        self.state = TradingState.NOSIGNAL
        self.threshold = None
        self.blocked_at = None
        self._log(FsmEvent.MANUAL_EXIT, prev_state=prev_state, exit_price=exit_price)
        return self.get_snapshot()

    # ------------------------------------------------------------------ positions

    def _open_positions(self) -> None:
        now = self._clock()
        self.entry_price = self.ltp
        self.entry_time = now
        if self.live_active:
            self.live_entry_price = self.ltp
            self.live_entry_time = now
            self._emit(PositionOpened(
                token=self.token,
                symbol=self.symbol or "",
                quantity=self.lot,
                price=self.ltp,
                timestamp=now,
            ))

    def _close_positions(self, reason: ExitReason) -> Optional[TradeRecord]:
        now = self._clock()
        trade = None
        if self.entry_price is not None and self.ltp is not None:
            trade = self._record_trade(self.entry_price, self.entry_time, reason, now)
            self.paper_trades.append(trade)
            self.realized_pnl += trade.pnl
            self.cumulative_pnl += trade.pnl
        self.entry_price = None
        self.entry_time = None
        if self.has_live_position:
            self._close_live(reason, now)
        return trade

    def _close_live(self, reason: ExitReason, now: datetime) -> None:
        entry_price = self.live_entry_price
        if self.ltp is not None:
            trade = self._record_trade(entry_price, self.live_entry_time, reason, now)
            self.live_trades.append(trade)
            self.live_realized_pnl += trade.pnl
            self.live_cumulative_pnl += trade.pnl
        self.live_entry_price = None
        self.live_entry_time = None
        self._emit(PositionClosed(
            token=self.token,
            symbol=self.symbol or "",
            quantity=self.lot,
            entry_price=entry_price,
            exit_price=self.ltp if self.ltp is not None else entry_price,
            reason=reason.value,
            timestamp=now,
        ))

    def _record_trade(self, entry_price: float, entry_time: Optional[datetime],
                      reason: ExitReason, now: datetime) -> TradeRecord:
        return TradeRecord(
            entry_price=entry_price,
            exit_price=self.ltp,
            pnl=(self.ltp - entry_price) * self.lot,
            lot=self.lot,
            reason=reason,
            entry_time=entry_time,
            exit_time=now,
        )

    def _emit(self, event) -> None:
        if self._event_sink is None:
            logger.warning("Live position event has no sink", symbol=self.symbol, event_type=type(event).__name__)
            return
        try:
            self._event_sink(event)
        except Exception as e:
            # Trading state is already committed; execution is downstream
            logger.error("Live position event sink failed", symbol=self.symbol,
                         event_type=type(event).__name__, error=str(e), exc_info=True)

    # ------------------------------------------------------------------ log

    def _log(self, event: FsmEvent, **details) -> None:
        entry = StateLogEntry(
            timestamp=self._clock(),
            event=event,
            state=self.state,
            ltp=self.ltp,
            threshold=self.threshold,
            **details,
        )
        self.state_log.appendleft(entry)
        logger.info(f"FSM {event.value}", symbol=self.symbol, state=self.state.value,
                    ltp=self.ltp, threshold=self.threshold)

    # ------------------------------------------------------------------ snapshots

    def get_snapshot(self, log_limit: Optional[int] = None) -> FsmSnapshot:
        state_log = list(self.state_log)
        if log_limit is not None:
            state_log = state_log[:log_limit]
        return FsmSnapshot(
            symbol=self.symbol,
            lot=self.lot,
            state=self.state,
            ltp=self.ltp,
            threshold=self.threshold,
            blocked_at=self.blocked_at,
            last_checked_at=self.last_checked_at,
            entry_price=self.entry_price,
            entry_time=self.entry_time,
            unrealized_pnl=self.unrealized_pnl,
            realized_pnl=self.realized_pnl,
            cumulative_pnl=self.cumulative_pnl,
            paper_trades=list(self.paper_trades),
            live_active=self.live_active,
            live_entry_price=self.live_entry_price,
            live_entry_time=self.live_entry_time,
            live_unrealized_pnl=self.live_unrealized_pnl,
            live_realized_pnl=self.live_realized_pnl,
            live_cumulative_pnl=self.live_cumulative_pnl,
            live_trades=list(self.live_trades),
            state_log=state_log,
        )

    def serialize(self) -> Dict[str, Any]:
        return self.get_snapshot().model_dump(mode="json")

    def restore(self, data: Dict[str, Any]) -> None:
        """Rebuild from ``serialize()`` output; absent or bad fields keep initial values."""
        snapshot, rejected = FsmSnapshot.from_partial(data)
        if rejected:
            logger.warning("Snapshot fields reset to defaults", symbol=self.symbol, fields=rejected)
        provided = set(data) - set(rejected) if isinstance(data, dict) else set()

        # Symbol and lot come from instrument config; the snapshot only fills a missing symbol
        if "symbol" in provided and snapshot.symbol and not self.symbol:
            self.symbol = snapshot.symbol
        if "lot" in provided and snapshot.lot != self.lot:
            logger.warning("Saved lot differs from configured lot; keeping configured", symbol=self.symbol,
                           saved_lot=snapshot.lot, configured_lot=self.lot)
        self.state = snapshot.state
        self.ltp = snapshot.ltp
        self.threshold = snapshot.threshold
        self.blocked_at = snapshot.blocked_at
        self.last_checked_at = snapshot.last_checked_at
        self.entry_price = snapshot.entry_price
        self.entry_time = snapshot.entry_time
        self.realized_pnl = snapshot.realized_pnl
        self.cumulative_pnl = snapshot.cumulative_pnl
        self.paper_trades = list(snapshot.paper_trades)
        self.live_active = snapshot.live_active
        self.live_entry_price = snapshot.live_entry_price
        self.live_entry_time = snapshot.live_entry_time
        self.live_realized_pnl = snapshot.live_realized_pnl
        self.live_cumulative_pnl = snapshot.live_cumulative_pnl
        self.live_trades = list(snapshot.live_trades)
        self.state_log = deque(snapshot.state_log, maxlen=self.state_log.maxlen)

        self._repair_invariants()

    def _repair_invariants(self) -> None:
        if self.state in ARMED_STATES and self.threshold is None:
            logger.warning("Restored armed state without threshold; disarming", symbol=self.symbol,
                           state=self.state.value)
            self.state = TradingState.NOSIGNAL
        if self.state == TradingState.NOSIGNAL:
            self.threshold = None
        if self.state != TradingState.NOPOSITION_BLOCKED:
            self.blocked_at = None
        elif self.blocked_at is None:
            self.blocked_at = self._clock()
        if self.state != TradingState.BUYPOSITION:
            self.entry_price = None
            self.entry_time = None
