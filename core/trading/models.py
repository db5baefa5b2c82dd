from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.schemas.events import utc_now


class TradingState(str, Enum):
    NOSIGNAL = "NOSIGNAL"
    NOPOSITION_SIGNAL = "NOPOSITION_SIGNAL"
    BUYPOSITION = "BUYPOSITION"
    NOPOSITION_BLOCKED = "NOPOSITION_BLOCKED"


# States in which an armed threshold must be present
ARMED_STATES = frozenset({
    TradingState.NOPOSITION_SIGNAL,
    TradingState.BUYPOSITION,
    TradingState.NOPOSITION_BLOCKED,
})


class FsmEvent(str, Enum):
    BUY_SIGNAL = "BUY_SIGNAL"
    SELL_SIGNAL = "SELL_SIGNAL"
    SELL_EXIT = "SELL_EXIT"
    ENTRY = "ENTRY"
    STOP_LOSS = "STOP_LOSS"
    BLOCKED = "BLOCKED"
    MINUTE_RETRY = "MINUTE_RETRY"
    RESET = "RESET"
    MANUAL_EXIT = "MANUAL_EXIT"
    LIVE_ON = "LIVE_ON"
    LIVE_OFF = "LIVE_OFF"


class ExitReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    SELL_SIGNAL = "SELL_SIGNAL"
    MANUAL = "MANUAL"


class TradeRecord(BaseModel):
    """One completed round trip"""
    model_config = ConfigDict(frozen=True)

    entry_price: float
    exit_price: float
    pnl: float
    lot: int
    reason: ExitReason
    entry_time: Optional[datetime] = None
    exit_time: datetime = Field(default_factory=utc_now)


class StateLogEntry(BaseModel):
    """One state machine transition as shown to operators"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    event: FsmEvent
    state: TradingState
    ltp: Optional[float] = None
    threshold: Optional[float] = None
    prev_state: Optional[TradingState] = None
    trigger: Optional[str] = None
    stoppx: Optional[float] = None
    entry_price: Optional[float] = None
    exit_price: Optional[float] = None


class FsmSnapshot(BaseModel):
    """Complete state of one instrument machine; wire and disk format."""

    symbol: Optional[str] = None
    lot: int = 1
    state: TradingState = TradingState.NOSIGNAL
    ltp: Optional[float] = None
    threshold: Optional[float] = None
    blocked_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None

    # Paper track
    entry_price: Optional[float] = None
    entry_time: Optional[datetime] = None
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    cumulative_pnl: float = 0.0
    paper_trades: List[TradeRecord] = Field(default_factory=list)

    # Live track
    live_active: bool = False
    live_entry_price: Optional[float] = None
    live_entry_time: Optional[datetime] = None
    live_unrealized_pnl: float = 0.0
    live_realized_pnl: float = 0.0
    live_cumulative_pnl: float = 0.0
    live_trades: List[TradeRecord] = Field(default_factory=list)

    state_log: List[StateLogEntry] = Field(default_factory=list)

    @classmethod
    def from_partial(cls, data: Dict[str, Any]) -> tuple["FsmSnapshot", List[str]]:
        """Build a snapshot field by field.

        Missing or invalid fields fall back to their defaults instead of
        rejecting the whole snapshot. Returns the snapshot and the names of
        the fields that were defaulted because their stored value was invalid.
        """
        values: Dict[str, Any] = {}
        rejected: List[str] = []
        if not isinstance(data, dict):
            return cls(), ["<root>"]
        for name, field in cls.model_fields.items():
            if name not in data:
                continue
            try:
                values[name] = TypeAdapter(field.annotation).validate_python(data[name])
            except ValidationError:
                rejected.append(name)
        return cls.model_validate(values), rejected
