"""
State machine manager.

Owns the token -> machine and token -> signal history tables for the fixed
instrument set, routes every tick and signal, and persists the whole table
periodically from a task tied to its own start/stop lifecycle.
"""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core.config.settings import Settings
from core.events.hub import EventHub
from core.logging import get_error_logger_safe, get_trading_logger_safe
from core.schemas.events import Instrument, MarketTick, TradeSignal, utc_now
from core.trading.models import FsmSnapshot
from core.trading.state_machine import InstrumentStateMachine
from core.utils.exceptions import PersistenceError
from .persistence import SnapshotStore


class StateMachineManager:
    def __init__(self, settings: Settings, snapshot_store: SnapshotStore,
                 event_hub: Optional[EventHub] = None):
        self.trading = settings.trading
        self.save_interval = settings.persistence.save_interval_seconds
        self.snapshot_store = snapshot_store
        self.event_hub = event_hub

        self._machines: Dict[int, InstrumentStateMachine] = {}
        self._instruments: Dict[int, Instrument] = {}
        self._signals: Dict[int, Deque[TradeSignal]] = {}
        self._save_task: Optional[asyncio.Task] = None
        self._save_lock = asyncio.Lock()

        self.logger = get_trading_logger_safe("fsm_manager")
        self.error_logger = get_error_logger_safe("fsm_manager_errors")

    # ------------------------------------------------------------------ lifecycle

    def init(self, instruments: Iterable[Instrument]) -> int:
        """Create one machine per instrument, then restore any saved state."""
        sink = self.event_hub.publish if self.event_hub is not None else None
        for instrument in instruments:
            if instrument.token in self._machines:
                continue
            self._instruments[instrument.token] = instrument
            self._machines[instrument.token] = InstrumentStateMachine(
                symbol=instrument.tradingsymbol,
                lot=instrument.lot,
                token=instrument.token,
                event_sink=sink,
                state_log_capacity=self.trading.state_log_capacity,
            )
            self._signals[instrument.token] = deque(maxlen=self.trading.signal_history_capacity)
        self.logger.info("State machines initialized", count=len(self._machines))

        self.load_state()
        return len(self._machines)

    async def start(self) -> None:
        if self._save_task is None or self._save_task.done():
            self._save_task = asyncio.create_task(self._save_loop(), name="fsm-state-save")
            self.logger.info("Periodic state save started", interval_seconds=self.save_interval)

    async def stop(self) -> None:
        if self._save_task is not None:
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass
            self._save_task = None
        await self.save_state()
        self.logger.info("State machine manager stopped")

    async def _save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.save_interval)
            await self.save_state()

    # ------------------------------------------------------------------ lookups

    @property
    def tokens(self) -> List[int]:
        return list(self._machines)

    @property
    def exchanges(self) -> List[str]:
        return sorted({i.exchange for i in self._instruments.values()})

    def get_machine(self, token: int) -> Optional[InstrumentStateMachine]:
        return self._machines.get(token)

    def get_instrument(self, token: int) -> Optional[Instrument]:
        return self._instruments.get(token)

    def get_signals(self, token: int) -> List[TradeSignal]:
        return list(self._signals.get(token, ()))

    def get_snapshot(self, token: int, log_limit: Optional[int] = None) -> Optional[FsmSnapshot]:
        machine = self._machines.get(token)
        if machine is None:
            return None
        if log_limit is None:
            log_limit = self.trading.snapshot_log_limit
        return machine.get_snapshot(log_limit)

    def snapshot_payload(self, token: int) -> Optional[Dict[str, Any]]:
        """Broadcast form of a snapshot: the snapshot fields plus the token."""
        snapshot = self.get_snapshot(token)
        if snapshot is None:
            return None
        return {"token": token, **snapshot.model_dump(mode="json")}

    def signals_payload(self, token: int) -> Dict[str, Any]:
        return {"token": token, "signals": [s.model_dump(mode="json") for s in self.get_signals(token)]}

    # ------------------------------------------------------------------ routing

    def handle_tick(self, token: int, tick: MarketTick) -> Optional[FsmSnapshot]:
        machine = self._machines.get(token)
        if machine is None:
            return None
        return machine.handle_tick(tick)

    def handle_signal(self, token: int, signal: TradeSignal) -> Optional[FsmSnapshot]:
        machine = self._machines.get(token)
        if machine is None:
            self.logger.warning("Signal for unknown token ignored", token=token)
            return None
        self.add_signal(token, signal)
        return machine.handle_signal(signal)

    def add_signal(self, token: int, signal: TradeSignal) -> None:
        signals = self._signals.get(token)
        if signals is not None:
            signals.appendleft(signal)

    def minute_retry(self) -> List[Tuple[int, FsmSnapshot]]:
        """Retry every blocked machine; returns only the ones that retried."""
        retried = []
        for token, machine in self._machines.items():
            if machine.minute_retry():
                retried.append((token, machine.get_snapshot(self.trading.snapshot_log_limit)))
        if retried:
            self.logger.info("Minute retry", retried=[t for t, _ in retried])
        return retried

    def set_live(self, token: int, active: bool) -> Optional[FsmSnapshot]:
        machine = self._machines.get(token)
        if machine is None:
            return None
        if active:
            machine.activate_live()
        else:
            machine.deactivate_live()
        return machine.get_snapshot(self.trading.snapshot_log_limit)

    def manual_exit(self, token: int) -> Optional[FsmSnapshot]:
        machine = self._machines.get(token)
        if machine is None:
            return None
        machine.manual_exit()
        return machine.get_snapshot(self.trading.snapshot_log_limit)

    # ------------------------------------------------------------------ resets

    async def daily_reset(self) -> None:
        """Start a fresh trading day for every instrument and persist at once."""
        for token, machine in self._machines.items():
            machine.reset()
            machine.clear_day()
            self._signals[token].clear()
        self.logger.info("Daily reset complete", count=len(self._machines))
        await self.save_state()

    async def reset_by_exchange(self, exchanges: Iterable[str]) -> int:
        wanted = {e.upper() for e in exchanges}
        count = 0
        for token, instrument in self._instruments.items():
            if instrument.exchange.upper() in wanted:
                self._machines[token].reset()
                self._signals[token].clear()
                count += 1
        self.logger.info("Reset by exchange", exchanges=sorted(wanted), count=count)
        if count:
            await self.save_state()
        return count

    # ------------------------------------------------------------------ persistence

    def state_payload(self) -> Dict[str, Any]:
        return {
            "saved_at": utc_now().isoformat(),
            "instruments": {
                str(token): {
                    "fsm": machine.serialize(),
                    "signals": [s.model_dump(mode="json") for s in self._signals[token]],
                }
                for token, machine in self._machines.items()
            },
        }

    async def save_state(self) -> bool:
        """Persist every machine; failures are logged and in-memory state continues.

        Saves are serialized: the payload is built and written under one lock so
        an older payload can never land on disk after a newer one.
        """
        async with self._save_lock:
            payload = self.state_payload()
            try:
                await asyncio.to_thread(self.snapshot_store.write, payload)
            except PersistenceError as e:
                self.error_logger.error("State save failed", path=e.path, error=e.message)
                return False
        return True

    def load_state(self) -> int:
        """Restore machines found in the snapshot file; returns how many were restored."""
        try:
            data = self.snapshot_store.read()
        except PersistenceError as e:
            self.error_logger.error("State load failed, starting fresh", path=e.path, error=e.message)
            return 0
        if not data:
            self.logger.info("No saved state, starting fresh")
            return 0

        instruments = data.get("instruments")
        if not isinstance(instruments, dict):
            self.error_logger.error("Saved state has no instrument table, starting fresh")
            return 0

        restored = 0
        for key, entry in instruments.items():
            try:
                token = int(key)
            except (TypeError, ValueError):
                continue
            machine = self._machines.get(token)
            if machine is None or not isinstance(entry, dict):
                continue
            machine.restore(entry.get("fsm") or {})
            self._restore_signals(token, entry.get("signals") or [])
            restored += 1

        self.logger.info("State restored", restored=restored, saved_at=data.get("saved_at"))
        return restored

    def _restore_signals(self, token: int, items: List[Any]) -> None:
        signals = self._signals[token]
        signals.clear()
        # newest first; keep the newest entries when the file holds more than fit
        for item in list(items)[: signals.maxlen]:
            try:
                signals.append(TradeSignal.model_validate(item))
            except ValidationError:
                self.logger.warning("Skipping malformed saved signal", token=token)
