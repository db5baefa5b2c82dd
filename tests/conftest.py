"""
Pytest configuration and shared fixtures for the trading desk tests.
"""
import json
from typing import Dict, List

import pytest

from core.config.settings import (
    Environment,
    LoggingSettings,
    PersistenceSettings,
    Settings,
    TradingSettings,
)
from core.events.hub import EventHub
from core.schemas.events import Instrument
from services.accounts.registry import AccountRegistry
from services.accounts.store import AccountStore
from services.instrument_data.registry import InstrumentRegistry
from services.state_machine.manager import StateMachineManager
from services.state_machine.persistence import SnapshotStore
from tests.fixtures.instruments import SAMPLE_INSTRUMENTS
from tests.mocks.mock_zerodha_api import MockKiteConnect
from tests.mocks.recorders import ManualClock, RecordingBroadcaster


@pytest.fixture
def test_settings(tmp_path):
    """Test settings: everything on disk lives under tmp_path."""
    return Settings(
        environment=Environment.TESTING,
        logging=LoggingSettings(
            level="WARNING",
            file_enabled=False,
            multi_channel_enabled=False,
            console_enabled=False,
            logs_dir=str(tmp_path / "logs"),
        ),
        persistence=PersistenceSettings(
            data_dir=str(tmp_path / "data"),
            save_interval_seconds=3600,
        ),
        trading=TradingSettings(timezone="Asia/Kolkata"),
        instruments_data=json.dumps(SAMPLE_INSTRUMENTS),
    )


@pytest.fixture
def sample_instruments() -> List[Instrument]:
    return [Instrument.model_validate(item) for item in SAMPLE_INSTRUMENTS]


@pytest.fixture
def instrument_registry(sample_instruments) -> InstrumentRegistry:
    return InstrumentRegistry(sample_instruments)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def event_hub() -> EventHub:
    return EventHub()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def snapshot_store(test_settings) -> SnapshotStore:
    return SnapshotStore(test_settings.persistence.state_path)


@pytest.fixture
def manager(test_settings, snapshot_store, event_hub, sample_instruments) -> StateMachineManager:
    manager = StateMachineManager(test_settings, snapshot_store, event_hub)
    manager.init(sample_instruments)
    return manager


@pytest.fixture
def kite_clients() -> Dict[str, MockKiteConnect]:
    """Fake clients keyed by API key; handed out by the registry's client factory"""
    return {}


@pytest.fixture
def account_registry(test_settings, event_hub, kite_clients) -> AccountRegistry:
    def factory(api_key: str, access_token: str) -> MockKiteConnect:
        client = kite_clients.setdefault(api_key, MockKiteConnect())
        client.set_access_token(access_token)
        return client

    store = AccountStore(test_settings.persistence.accounts_path)
    return AccountRegistry(store, event_hub=event_hub, client_factory=factory)
