from datetime import datetime
from typing import Dict, List

from pydantic import Field

from core.schemas.events import DeskBaseModel, TradeSignal, utc_now
from core.trading.models import StateLogEntry, TradeRecord


class InstrumentDayRecord(DeskBaseModel):
    """Full, uncapped trading record of one instrument for one day"""
    token: int
    exchange: str
    lot: int
    paper_realized_pnl: float = 0.0
    live_realized_pnl: float = 0.0
    paper_cumulative_pnl: float = 0.0
    live_cumulative_pnl: float = 0.0
    paper_trades: List[TradeRecord] = Field(default_factory=list)
    live_trades: List[TradeRecord] = Field(default_factory=list)
    state_log: List[StateLogEntry] = Field(default_factory=list)
    signals: List[TradeSignal] = Field(default_factory=list)


class DayRecord(DeskBaseModel):
    """Archive entry keyed by calendar date (YYYY-MM-DD)"""
    date: str
    saved_at: datetime = Field(default_factory=utc_now)
    # keyed by broker tradingsymbol
    instruments: Dict[str, InstrumentDayRecord] = Field(default_factory=dict)


class DaySummary(DeskBaseModel):
    date: str
    saved_at: datetime
