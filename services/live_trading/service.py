"""
Live trading execution.

Turns live position events published by the state machines into multi-
account market orders. The machines have already committed their state when
an event arrives; an order failure here is reported, never rolled back.
"""

from typing import Optional, Union

from core.events.hub import EventHub
from core.logging import get_audit_logger_safe, get_error_logger_safe, get_trading_logger_safe
from core.schemas.events import BroadcastEvent, PositionClosed, PositionOpened
from core.trading.interfaces import Broadcaster
from services.instrument_data.registry import InstrumentRegistry
from services.order_dispatch.dispatcher import OrderDispatcher
from services.order_dispatch.models import DispatchResult


class LiveTradingService:
    def __init__(self, event_hub: EventHub, dispatcher: OrderDispatcher,
                 instruments: InstrumentRegistry, broadcaster: Optional[Broadcaster] = None):
        self.event_hub = event_hub
        self.dispatcher = dispatcher
        self.instruments = instruments
        self.broadcaster = broadcaster
        self.logger = get_trading_logger_safe("live_trading")
        self.audit_logger = get_audit_logger_safe("live_trading_audit")
        self.error_logger = get_error_logger_safe("live_trading_errors")

    async def start(self) -> None:
        self.event_hub.subscribe(PositionOpened, self.on_position_event)
        self.event_hub.subscribe(PositionClosed, self.on_position_event)
        self.logger.info("Live trading subscribed to position events")

    async def stop(self) -> None:
        self.event_hub.unsubscribe(PositionOpened, self.on_position_event)
        self.event_hub.unsubscribe(PositionClosed, self.on_position_event)
        # let in-flight orders settle before shutdown
        await self.event_hub.drain()

    async def on_position_event(self, event: Union[PositionOpened, PositionClosed]) -> Optional[DispatchResult]:
        instrument = self.instruments.get(event.token)
        if instrument is None:
            self.error_logger.error("Live position event for unknown instrument",
                                    token=event.token, symbol=event.symbol)
            return None

        self.audit_logger.info(f"Live {event.side.value} triggered", token=event.token,
                               symbol=instrument.tradingsymbol, quantity=instrument.lot,
                               reason=getattr(event, "reason", None))
        result = await self.dispatcher.dispatch(instrument, event.side)
        self.audit_logger.info(f"Live {event.side.value} result", symbol=instrument.tradingsymbol,
                               success=result.success, success_count=result.success_count,
                               fail_count=result.fail_count, message=result.message)

        if self.broadcaster is not None:
            await self.broadcaster.emit(BroadcastEvent.ORDERS.value, {
                "token": event.token,
                **result.model_dump(mode="json"),
            })
        return result
