from typing import Any, Mapping, Optional, Tuple, Union

from core.logging import get_trading_logger_safe
from core.schemas.events import BroadcastEvent, TradeSignal, utc_now
from core.trading.interfaces import Broadcaster
from core.trading.models import FsmSnapshot
from core.utils.exceptions import UnknownInstrumentError
from services.instrument_data.registry import InstrumentRegistry
from services.state_machine.manager import StateMachineManager
from .parser import parse_signal


class SignalService:
    """Resolves webhook signals to instruments and routes them to the machines."""

    def __init__(self, instruments: InstrumentRegistry, manager: StateMachineManager,
                 broadcaster: Optional[Broadcaster] = None):
        self.instruments = instruments
        self.manager = manager
        self.broadcaster = broadcaster
        self.logger = get_trading_logger_safe("signals")

    async def ingest(self, body: Union[Mapping[str, Any], str, bytes]) -> Tuple[TradeSignal, FsmSnapshot]:
        parsed = parse_signal(body)
        instrument = self.instruments.find_by_tradingview(parsed.symbol)
        if instrument is None:
            self.logger.warning("Webhook: unknown symbol", symbol=parsed.symbol)
            raise UnknownInstrumentError(symbol=parsed.symbol)

        signal = parsed.model_copy(update={
            "token": instrument.token,
            "zerodha": instrument.tradingsymbol,
            "timestamp": utc_now(),
        })
        self.logger.info("Webhook signal received", symbol=signal.symbol, intent=signal.intent.value,
                         stoppx=signal.stoppx, token=signal.token)

        snapshot = self.manager.handle_signal(instrument.token, signal)

        if self.broadcaster is not None:
            await self.broadcaster.emit(BroadcastEvent.SIGNAL.value, signal.model_dump(mode="json"))
            await self.broadcaster.emit(BroadcastEvent.FSM.value, self.manager.snapshot_payload(instrument.token))
        return signal, snapshot
