"""Snapshot serialization and tolerant restore of instrument state machines."""

import json

import pytest

from core.schemas.events import MarketTick, SignalIntent, TradeSignal
from core.trading.models import FsmSnapshot, TradingState
from core.trading.state_machine import InstrumentStateMachine


def _traded_machine(clock):
    machine = InstrumentStateMachine("NIFTY24JANFUT", lot=50, token=101, event_sink=lambda e: None, clock=clock)
    machine.activate_live()
    machine.handle_signal(TradeSignal(symbol="NIFTY1!", intent=SignalIntent.BUY, stoppx=100.0))
    machine.handle_tick(MarketTick(token=101, symbol="NIFTY24JANFUT", ltp=101.0))
    machine.handle_tick(MarketTick(token=101, symbol="NIFTY24JANFUT", ltp=99.0))
    machine.handle_signal(TradeSignal(symbol="NIFTY1!", intent=SignalIntent.BUY, stoppx=98.0))
    return machine


def test_serialize_is_json_safe(clock):
    machine = _traded_machine(clock)
    data = machine.serialize()

    assert json.loads(json.dumps(data)) == data
    assert data["state"] == "BUYPOSITION"
    assert data["live_trades"][0]["reason"] == "STOP_LOSS"


def test_restore_reproduces_snapshot(clock):
    original = _traded_machine(clock)
    data = json.loads(json.dumps(original.serialize()))

    restored = InstrumentStateMachine("NIFTY24JANFUT", lot=50, token=101, clock=clock)
    restored.restore(data)

    assert restored.get_snapshot() == original.get_snapshot()


def test_restore_with_missing_fields_uses_defaults(clock):
    machine = InstrumentStateMachine("NIFTY24JANFUT", lot=50, token=101, clock=clock)
    machine.restore({"realized_pnl": 250.0})

    assert machine.state == TradingState.NOSIGNAL
    assert machine.realized_pnl == 250.0
    assert machine.lot == 50
    assert machine.symbol == "NIFTY24JANFUT"
    assert machine.paper_trades == []


def test_restore_skips_invalid_fields(clock):
    machine = InstrumentStateMachine("NIFTY24JANFUT", lot=50, token=101, clock=clock)
    machine.restore({
        "state": "NOPOSITION_SIGNAL",
        "threshold": 100.0,
        "realized_pnl": "not-a-number",
        "paper_trades": "garbage",
        "state_log": [{"event": "NOT_AN_EVENT"}],
    })

    assert machine.state == TradingState.NOPOSITION_SIGNAL
    assert machine.threshold == 100.0
    assert machine.realized_pnl == 0.0
    assert machine.paper_trades == []
    assert len(machine.state_log) == 0


def test_restore_armed_state_without_threshold_disarms(clock):
    machine = InstrumentStateMachine("X", clock=clock)
    machine.restore({"state": "NOPOSITION_BLOCKED", "threshold": None})

    assert machine.state == TradingState.NOSIGNAL
    assert machine.blocked_at is None


def test_restore_clears_entry_outside_position(clock):
    machine = InstrumentStateMachine("X", clock=clock)
    machine.restore({"state": "NOPOSITION_SIGNAL", "threshold": 100.0, "entry_price": 101.0})

    assert machine.entry_price is None


def test_restore_non_dict_is_ignored(clock):
    machine = InstrumentStateMachine("X", lot=3, clock=clock)
    machine.restore(["not", "a", "snapshot"])

    assert machine.state == TradingState.NOSIGNAL
    assert machine.lot == 3


def test_from_partial_reports_rejected_fields():
    snapshot, rejected = FsmSnapshot.from_partial({"lot": 0, "ltp": "abc", "threshold": 12.5})

    assert snapshot.threshold == 12.5
    assert snapshot.ltp is None
    assert set(rejected) == {"ltp"}


@pytest.mark.parametrize("blocked_at", [None, "2024-01-15T09:20:00+00:00"])
def test_restore_blocked_keeps_a_block_time(clock, blocked_at):
    machine = InstrumentStateMachine("X", clock=clock)
    machine.restore({"state": "NOPOSITION_BLOCKED", "threshold": 100.0, "blocked_at": blocked_at})

    assert machine.state == TradingState.NOPOSITION_BLOCKED
    assert machine.blocked_at is not None


def test_restore_keeps_configured_lot_and_symbol(clock):
    saved = _traded_machine(clock).serialize()

    revised = InstrumentStateMachine("NIFTY24FEBFUT", lot=75, token=101, clock=clock)
    revised.restore(saved)

    assert revised.lot == 75
    assert revised.symbol == "NIFTY24FEBFUT"
    assert revised.state == TradingState.BUYPOSITION
    revised.handle_tick(MarketTick(token=101, symbol="NIFTY24FEBFUT", ltp=97.0))
    assert revised.paper_trades[-1].lot == 75


def test_restore_fills_missing_symbol(clock):
    machine = InstrumentStateMachine(None, lot=50, clock=clock)
    machine.restore({"symbol": "NIFTY24JANFUT"})

    assert machine.symbol == "NIFTY24JANFUT"
