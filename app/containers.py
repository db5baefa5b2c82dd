# Application DI container
from dependency_injector import containers, providers

from core.config.settings import Settings
from core.events.hub import EventHub
from api.services.realtime_service import ConnectionManager
from services.accounts.registry import AccountRegistry
from services.accounts.store import AccountStore
from services.auth.service import AuthService
from services.history.archiver import HistoryArchiver
from services.instrument_data.registry import InstrumentRegistry
from services.live_trading.service import LiveTradingService
from services.market_feed.service import MarketFeedService
from services.order_dispatch.dispatcher import OrderDispatcher
from services.signals.service import SignalService
from services.state_machine.manager import StateMachineManager
from services.state_machine.persistence import SnapshotStore
from services.state_machine.scheduler import SessionScheduler


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # In-process plumbing
    event_hub = providers.Singleton(EventHub)
    broadcaster = providers.Singleton(ConnectionManager)

    # Static reference data
    instrument_registry = providers.Singleton(
        InstrumentRegistry.from_settings,
        settings=settings,
    )

    # Credentials and order execution
    account_store = providers.Singleton(
        AccountStore,
        path=settings.provided.persistence.accounts_path,
    )
    account_registry = providers.Singleton(
        AccountRegistry,
        store=account_store,
        event_hub=event_hub,
    )
    order_dispatcher = providers.Singleton(
        OrderDispatcher,
        registry=account_registry,
        settings=settings,
    )

    # Trading state
    snapshot_store = providers.Singleton(
        SnapshotStore,
        path=settings.provided.persistence.state_path,
    )
    history_archiver = providers.Singleton(
        HistoryArchiver,
        path=settings.provided.persistence.history_path,
    )
    state_machine_manager = providers.Singleton(
        StateMachineManager,
        settings=settings,
        snapshot_store=snapshot_store,
        event_hub=event_hub,
    )

    # Services
    live_trading_service = providers.Singleton(
        LiveTradingService,
        event_hub=event_hub,
        dispatcher=order_dispatcher,
        instruments=instrument_registry,
        broadcaster=broadcaster,
    )
    signal_service = providers.Singleton(
        SignalService,
        instruments=instrument_registry,
        manager=state_machine_manager,
        broadcaster=broadcaster,
    )
    auth_service = providers.Singleton(
        AuthService,
        settings=settings,
        registry=account_registry,
    )
    market_feed_service = providers.Singleton(
        MarketFeedService,
        settings=settings,
        registry=account_registry,
        instruments=instrument_registry,
        manager=state_machine_manager,
        event_hub=event_hub,
        broadcaster=broadcaster,
    )
    session_scheduler = providers.Singleton(
        SessionScheduler,
        settings=settings,
        manager=state_machine_manager,
        archiver=history_archiver,
        instruments=instrument_registry,
        broadcaster=broadcaster,
    )
