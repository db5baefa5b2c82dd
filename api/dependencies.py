from fastapi import Depends
from dependency_injector.wiring import inject, Provide

from app.containers import AppContainer
from api.services.realtime_service import ConnectionManager
from core.config.settings import Settings
from services.accounts.registry import AccountRegistry
from services.auth.service import AuthService
from services.history.archiver import HistoryArchiver
from services.instrument_data.registry import InstrumentRegistry
from services.market_feed.service import MarketFeedService
from services.signals.service import SignalService
from services.state_machine.manager import StateMachineManager


@inject
def get_settings(
    settings: Settings = Depends(Provide[AppContainer.settings])
) -> Settings:
    return settings


@inject
def get_instrument_registry(
    registry: InstrumentRegistry = Depends(Provide[AppContainer.instrument_registry])
) -> InstrumentRegistry:
    return registry


@inject
def get_state_machine_manager(
    manager: StateMachineManager = Depends(Provide[AppContainer.state_machine_manager])
) -> StateMachineManager:
    return manager


@inject
def get_account_registry(
    registry: AccountRegistry = Depends(Provide[AppContainer.account_registry])
) -> AccountRegistry:
    return registry


@inject
def get_auth_service(
    auth_service: AuthService = Depends(Provide[AppContainer.auth_service])
) -> AuthService:
    return auth_service


@inject
def get_history_archiver(
    archiver: HistoryArchiver = Depends(Provide[AppContainer.history_archiver])
) -> HistoryArchiver:
    return archiver


@inject
def get_signal_service(
    signal_service: SignalService = Depends(Provide[AppContainer.signal_service])
) -> SignalService:
    return signal_service


@inject
def get_market_feed_service(
    market_feed: MarketFeedService = Depends(Provide[AppContainer.market_feed_service])
) -> MarketFeedService:
    return market_feed


@inject
def get_broadcaster(
    broadcaster: ConnectionManager = Depends(Provide[AppContainer.broadcaster])
) -> ConnectionManager:
    return broadcaster
