"""Minute-boundary retries and the midnight rollover."""

from datetime import datetime

import asyncio

import pytest
import pytz

from core.schemas.events import MarketTick, SignalIntent, TradeSignal
from core.trading.models import TradingState
from services.history.archiver import HistoryArchiver
from services.state_machine.scheduler import SessionScheduler

IST = pytz.timezone("Asia/Kolkata")


@pytest.fixture
def archiver(test_settings):
    return HistoryArchiver(test_settings.persistence.history_path)


@pytest.fixture
def scheduler(test_settings, manager, archiver, instrument_registry, broadcaster):
    return SessionScheduler(test_settings, manager, archiver, instrument_registry, broadcaster)


def block(manager, token=101):
    manager.handle_signal(token, TradeSignal(symbol="NIFTY1!", intent=SignalIntent.BUY, stoppx=100.0))
    manager.handle_tick(token, MarketTick(token=token, symbol="NIFTY24JANFUT", ltp=99.0))


async def test_minute_broadcasts_retried_machines(scheduler, manager, broadcaster):
    block(manager)

    await scheduler.on_minute(IST.localize(datetime(2024, 1, 15, 10, 31)))

    assert [p["token"] for p in broadcaster.named("fsm")] == [101]
    assert manager.get_machine(101).last_checked_at is not None


async def test_quiet_minute_broadcasts_nothing(scheduler, broadcaster):
    await scheduler.on_minute(IST.localize(datetime(2024, 1, 15, 10, 31)))
    assert broadcaster.events == []


async def test_midnight_archives_previous_day_then_resets(scheduler, manager, archiver, broadcaster):
    block(manager)

    await scheduler.on_minute(IST.localize(datetime(2024, 1, 16, 0, 0)))

    day = archiver.get_by_date("2024-01-15")
    assert day is not None
    assert len(day.instruments["NIFTY24JANFUT"].signals) == 1
    assert manager.get_machine(101).state == TradingState.NOSIGNAL
    assert manager.get_signals(101) == []
    assert len(broadcaster.named("signals")) == 3


async def test_rollover_disabled(test_settings, manager, archiver, instrument_registry):
    settings = test_settings.model_copy(
        update={"trading": test_settings.trading.model_copy(update={"daily_reset_enabled": False})}
    )
    scheduler = SessionScheduler(settings, manager, archiver, instrument_registry)
    block(manager)

    await scheduler.on_minute(IST.localize(datetime(2024, 1, 16, 0, 0)))

    assert archiver.list_dates() == []
    assert manager.get_machine(101).state == TradingState.NOPOSITION_BLOCKED


async def test_start_stop(scheduler):
    await scheduler.start()
    await scheduler.stop()
    assert scheduler._task is None


def at(*parts):
    return IST.localize(datetime(*parts))


def test_next_boundary():
    assert SessionScheduler.next_boundary(at(2024, 1, 15, 10, 30, 12)) == at(2024, 1, 15, 10, 31)
    assert SessionScheduler.next_boundary(at(2024, 1, 15, 23, 59, 59, 900000)) == at(2024, 1, 16, 0, 0)


def test_next_boundary_skips_a_handled_minute():
    early = at(2024, 1, 15, 10, 30, 59, 990000)

    assert SessionScheduler.next_boundary(early, handled=at(2024, 1, 15, 10, 31)) == at(2024, 1, 15, 10, 32)


class ScriptedClock:
    """Returns the scripted readings in order, then keeps the last one."""

    def __init__(self, *readings):
        self.readings = list(readings)

    def __call__(self):
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


async def test_wait_until_rechecks_an_early_wake(test_settings, manager, archiver, instrument_registry):
    clock = ScriptedClock(at(2024, 1, 15, 10, 30, 59, 990000), at(2024, 1, 15, 10, 31, 0, 1000))
    scheduler = SessionScheduler(test_settings, manager, archiver, instrument_registry, clock=clock)

    await scheduler.wait_until(at(2024, 1, 15, 10, 31))

    assert clock.readings == [at(2024, 1, 15, 10, 31, 0, 1000)]


async def test_early_wake_before_midnight_still_rolls_over_once(test_settings, manager, archiver,
                                                                instrument_registry, broadcaster):
    clock = ScriptedClock(
        at(2024, 1, 15, 23, 59, 59, 980000),
        at(2024, 1, 15, 23, 59, 59, 990000),
        at(2024, 1, 16, 0, 0, 0, 1000),
    )
    scheduler = SessionScheduler(test_settings, manager, archiver, instrument_registry, broadcaster, clock=clock)
    block(manager)

    await scheduler.start()
    for _ in range(100):
        if len(broadcaster.named("signals")) == 3:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert [d.date for d in archiver.list_dates()] == ["2024-01-15"]
    assert len(broadcaster.named("signals")) == 3
    assert manager.get_machine(101).state == TradingState.NOSIGNAL
