# Standardized event and data models shared by every service

from pydantic import BaseModel, Field, ConfigDict, AliasChoices
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeskBaseModel(BaseModel):
    """Base model for all desk schemas (Pydantic v2)."""

    model_config = ConfigDict(populate_by_name=True)


class SignalIntent(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    UNKNOWN = "UNKNOWN"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class BroadcastEvent(str, Enum):
    """Event names pushed to observers over the broadcast channel"""
    TICK = "tick"
    SIGNAL = "signal"
    FSM = "fsm"
    SIGNALS = "signals"
    INSTRUMENTS = "instruments"
    ORDERS = "orders"


class Instrument(DeskBaseModel):
    """Static reference data for one tradable contract"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    token: int
    exchange: str
    tradingsymbol: str = Field(
        validation_alias=AliasChoices("tradingsymbol", "zerodha"),
        serialization_alias="zerodha",
    )
    tradingview: Optional[str] = None
    lot: int = Field(default=1, ge=1)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class MarketTick(DeskBaseModel):
    """Normalized tick handed to the state machines"""
    token: int
    symbol: str
    ltp: float
    change: Optional[float] = None
    volume: Optional[int] = None
    timestamp: datetime = Field(default_factory=utc_now)


class TradeSignal(DeskBaseModel):
    """Externally generated trade signal after normalization"""
    symbol: Optional[str] = None
    intent: SignalIntent = SignalIntent.UNKNOWN
    stoppx: Optional[float] = None
    token: Optional[int] = None
    zerodha: Optional[str] = None
    timestamp: Optional[datetime] = None


# --- In-process events published on the event hub ---

class PositionOpened(DeskBaseModel):
    """A live position was opened by a state machine; buy on every account"""
    token: int
    symbol: str
    quantity: int
    price: float
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY


class PositionClosed(DeskBaseModel):
    """A live position was closed by a state machine; sell on every account"""
    token: int
    symbol: str
    quantity: int
    entry_price: float
    exit_price: float
    reason: str
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def side(self) -> OrderSide:
        return OrderSide.SELL


class PrimaryAccountChanged(DeskBaseModel):
    """Credentials of the market-data (primary) account changed"""
    account_id: str
    name: str
    timestamp: datetime = Field(default_factory=utc_now)
