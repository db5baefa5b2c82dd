"""State machine manager: routing, signal history, resets and persistence."""

import asyncio
import json
import threading

import pytest

from core.schemas.events import MarketTick, PositionOpened, SignalIntent, TradeSignal
from core.trading.models import TradingState
from services.state_machine.manager import StateMachineManager
from services.state_machine.persistence import SnapshotStore


def buy(stoppx, symbol="NIFTY1!"):
    return TradeSignal(symbol=symbol, intent=SignalIntent.BUY, stoppx=stoppx)


def tick(token, ltp):
    return MarketTick(token=token, symbol="SYM", ltp=ltp)


class TestRouting:

    def test_one_machine_per_instrument(self, manager):
        assert sorted(manager.tokens) == [101, 202, 303]
        assert manager.exchanges == ["BSE", "NFO"]
        assert manager.get_machine(303).lot == 10

    def test_init_is_idempotent(self, manager, sample_instruments):
        machine = manager.get_machine(101)
        assert manager.init(sample_instruments) == 3
        assert manager.get_machine(101) is machine

    def test_unknown_token_is_ignored(self, manager):
        assert manager.handle_tick(999, tick(999, 1.0)) is None
        assert manager.handle_signal(999, buy(1.0)) is None
        assert manager.get_snapshot(999) is None
        assert manager.snapshot_payload(999) is None

    def test_tick_and_signal_reach_only_their_machine(self, manager):
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 101.0))

        assert manager.get_machine(101).state == TradingState.BUYPOSITION
        assert manager.get_machine(202).state == TradingState.NOSIGNAL

    def test_snapshot_payload_carries_token_and_capped_log(self, manager):
        for i in range(15):
            manager.handle_signal(101, buy(100.0 + i))

        payload = manager.snapshot_payload(101)
        assert payload["token"] == 101
        assert payload["state"] == "NOPOSITION_SIGNAL"
        assert len(payload["state_log"]) == 10

    def test_live_entry_is_published_on_the_hub(self, manager, event_hub):
        received = []
        event_hub.subscribe(PositionOpened, received.append)
        manager.set_live(101, True)
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 100.5))

        assert len(received) == 1
        assert received[0].token == 101
        assert received[0].quantity == 50

    def test_minute_retry_returns_only_blocked(self, manager):
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 99.0))
        manager.handle_signal(202, buy(200.0))

        retried = manager.minute_retry()
        assert [token for token, _ in retried] == [101]
        assert retried[0][1].state == TradingState.NOPOSITION_BLOCKED

    def test_manual_exit_and_set_live_unknown_token(self, manager):
        assert manager.manual_exit(999) is None
        assert manager.set_live(999, True) is None


class TestSignalHistory:

    def test_newest_first(self, manager):
        manager.handle_signal(101, buy(100.0))
        manager.handle_signal(101, buy(101.0))

        signals = manager.get_signals(101)
        assert [s.stoppx for s in signals] == [101.0, 100.0]
        assert manager.signals_payload(101)["signals"][0]["stoppx"] == 101.0

    def test_capped_at_capacity(self, manager):
        for i in range(105):
            manager.handle_signal(101, buy(float(i + 1)))

        signals = manager.get_signals(101)
        assert len(signals) == 100
        assert signals[0].stoppx == 105.0


class TestResets:

    async def test_reset_by_exchange_only_touches_that_exchange(self, manager):
        for token in (101, 202, 303):
            manager.handle_signal(token, buy(100.0))

        count = await manager.reset_by_exchange(["nfo"])

        assert count == 2
        assert manager.get_machine(101).state == TradingState.NOSIGNAL
        assert manager.get_machine(202).state == TradingState.NOSIGNAL
        assert manager.get_machine(303).state == TradingState.NOPOSITION_SIGNAL
        assert manager.get_signals(101) == []
        assert len(manager.get_signals(303)) == 1

    async def test_reset_unknown_exchange_resets_nothing(self, manager, snapshot_store):
        assert await manager.reset_by_exchange(["MCX"]) == 0
        assert snapshot_store.read() is None

    async def test_daily_reset_clears_day_and_persists(self, manager, snapshot_store):
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 101.0))
        manager.handle_signal(101, TradeSignal(symbol="NIFTY1!", intent=SignalIntent.SELL))

        await manager.daily_reset()

        machine = manager.get_machine(101)
        assert machine.state == TradingState.NOSIGNAL
        assert machine.paper_trades == []
        assert machine.realized_pnl == 0.0
        assert manager.get_signals(101) == []

        saved = snapshot_store.read()
        assert saved["instruments"]["101"]["fsm"]["paper_trades"] == []


class TestPersistence:

    async def test_save_and_load_round_trip(self, test_settings, snapshot_store, event_hub, sample_instruments,
                                            manager):
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 99.0))
        manager.handle_signal(303, buy(50.0))
        assert await manager.save_state() is True

        fresh = StateMachineManager(test_settings, snapshot_store, event_hub)
        fresh.init(sample_instruments)

        assert fresh.get_machine(101).state == TradingState.NOPOSITION_BLOCKED
        assert fresh.get_machine(101).threshold == 100.0
        assert fresh.get_snapshot(101) == manager.get_snapshot(101)
        assert [s.stoppx for s in fresh.get_signals(303)] == [50.0]

    async def test_saved_document_shape(self, manager, snapshot_store):
        await manager.save_state()
        data = json.loads(snapshot_store.path.read_text())

        assert "saved_at" in data
        assert set(data["instruments"]) == {"101", "202", "303"}
        assert set(data["instruments"]["101"]) == {"fsm", "signals"}

    def test_load_tolerates_unknown_tokens_and_corrupt_entries(self, test_settings, snapshot_store, event_hub,
                                                               sample_instruments):
        snapshot_store.write({
            "saved_at": "2024-01-15T10:00:00+00:00",
            "instruments": {
                "101": {"fsm": {"state": "NOPOSITION_SIGNAL", "threshold": 100.0},
                        "signals": [{"symbol": "NIFTY1!", "intent": "BUY", "stoppx": 100.0}, {"intent": 42}]},
                "999": {"fsm": {"state": "BUYPOSITION"}},
                "abc": {},
                "202": "garbage",
            },
        })

        manager = StateMachineManager(test_settings, snapshot_store, event_hub)
        manager.init(sample_instruments)

        assert manager.get_machine(101).state == TradingState.NOPOSITION_SIGNAL
        assert len(manager.get_signals(101)) == 1
        assert manager.get_machine(202).state == TradingState.NOSIGNAL

    def test_corrupt_file_starts_fresh(self, test_settings, snapshot_store, event_hub, sample_instruments):
        snapshot_store.path.parent.mkdir(parents=True, exist_ok=True)
        snapshot_store.path.write_text("{not json")

        manager = StateMachineManager(test_settings, snapshot_store, event_hub)
        manager.init(sample_instruments)

        assert manager.get_machine(101).state == TradingState.NOSIGNAL

    async def test_save_failure_is_reported_not_raised(self, test_settings, event_hub, sample_instruments, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        store = SnapshotStore(blocker / "state.json")
        manager = StateMachineManager(test_settings, store, event_hub)
        manager.init(sample_instruments)

        assert await manager.save_state() is False

    async def test_stop_flushes_state(self, manager, snapshot_store):
        await manager.start()
        manager.handle_signal(202, buy(10.0, symbol="BANKNIFTY1!"))
        await manager.stop()

        saved = snapshot_store.read()
        assert saved["instruments"]["202"]["fsm"]["threshold"] == 10.0

    async def test_reset_save_is_not_overwritten_by_an_earlier_save(self, test_settings, event_hub,
                                                                   sample_instruments, tmp_path):
        store = HeldSnapshotStore(tmp_path / "held" / "state.json")
        manager = StateMachineManager(test_settings, store, event_hub)
        manager.init(sample_instruments)
        manager.handle_signal(101, buy(100.0))
        manager.handle_tick(101, tick(101, 101.0))

        periodic = asyncio.create_task(manager.save_state())
        assert await asyncio.to_thread(store.first_write_started.wait, 5)
        reset = asyncio.create_task(manager.daily_reset())
        await asyncio.sleep(0.05)
        store.release.set()
        await asyncio.gather(periodic, reset)

        assert manager.get_machine(101).state == TradingState.NOSIGNAL
        assert store.read()["instruments"]["101"]["fsm"]["state"] == "NOSIGNAL"


class HeldSnapshotStore(SnapshotStore):
    """Holds the first write open until released."""

    def __init__(self, path):
        super().__init__(path)
        self.first_write_started = threading.Event()
        self.release = threading.Event()
        self.writes = 0

    def write(self, payload):
        self.writes += 1
        if self.writes == 1:
            self.first_write_started.set()
            self.release.wait(5)
        super().write(payload)


def test_snapshot_store_rejects_non_object(snapshot_store):
    from core.utils.exceptions import PersistenceError

    snapshot_store.path.parent.mkdir(parents=True, exist_ok=True)
    snapshot_store.path.write_text("[1, 2]")
    with pytest.raises(PersistenceError):
        snapshot_store.read()
