# Tick formatting for KiteTicker market data
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytz

from core.schemas.events import Instrument, MarketTick


class TickFormatter:
    """Formats raw KiteTicker ticks into the desk's ``MarketTick``"""

    def __init__(self, exchange_timezone: str = "Asia/Kolkata"):
        # Kite sends exchange timestamps as naive local times
        self.exchange_timezone = pytz.timezone(exchange_timezone)

    def format_tick(self, raw_tick: Dict[str, Any], instrument: Instrument) -> MarketTick:
        volume = raw_tick.get("volume_traded", raw_tick.get("volume"))
        change = raw_tick.get("change")
        return MarketTick(
            token=int(raw_tick["instrument_token"]),
            symbol=instrument.tradingsymbol,
            ltp=float(raw_tick["last_price"]),
            change=float(change) if change is not None else None,
            volume=int(volume) if volume is not None else None,
            timestamp=self._format_timestamp(raw_tick),
        )

    def _format_timestamp(self, raw_tick: Dict[str, Any]) -> datetime:
        """Exchange timestamp when present, otherwise receipt time (UTC)"""
        return self._normalize_to_utc(raw_tick.get("exchange_timestamp") or raw_tick.get("last_trade_time"))

    def _normalize_to_utc(self, dt_value: Optional[Any]) -> datetime:
        if isinstance(dt_value, str):
            try:
                dt_value = datetime.fromisoformat(dt_value)
            except ValueError:
                dt_value = None

        if isinstance(dt_value, datetime):
            if dt_value.tzinfo is None:
                dt_value = self.exchange_timezone.localize(dt_value)
            return dt_value.astimezone(timezone.utc)

        return datetime.now(timezone.utc)
