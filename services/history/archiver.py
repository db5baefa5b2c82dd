"""
Daily history archive.

A single JSON document ``{"days": [...]}`` with the newest day first.
Archiving a date that is already present replaces that day's record.
"""

import asyncio
import threading
from datetime import date as date_type
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from core.logging import get_error_logger_safe, get_trading_logger_safe
from core.schemas.events import Instrument
from core.utils.exceptions import PersistenceError
from core.utils.files import atomic_write_json, read_json
from .models import DayRecord, DaySummary, InstrumentDayRecord


class HistoryArchiver:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.logger = get_trading_logger_safe("history")
        self.error_logger = get_error_logger_safe("history_errors")

    async def archive(self, day: Union[str, date_type], instruments: Iterable[Instrument],
                      manager) -> DayRecord:
        """Record every instrument's trades, state log and signals under ``day``."""
        record = self.build_day(day, instruments, manager)
        try:
            await asyncio.to_thread(self._store_day, record)
        except PersistenceError as e:
            self.error_logger.error("History save failed", date=record.date, error=e.message)
            return record
        self.logger.info("Day archived", date=record.date, instruments=len(record.instruments))
        return record

    def build_day(self, day: Union[str, date_type], instruments: Iterable[Instrument], manager) -> DayRecord:
        day = day.isoformat() if isinstance(day, date_type) else str(day)
        entries: Dict[str, InstrumentDayRecord] = {}
        for instrument in instruments:
            machine = manager.get_machine(instrument.token)
            if machine is None:
                continue
            entries[instrument.tradingsymbol] = InstrumentDayRecord(
                token=instrument.token,
                exchange=instrument.exchange,
                lot=instrument.lot,
                paper_realized_pnl=machine.realized_pnl,
                live_realized_pnl=machine.live_realized_pnl,
                paper_cumulative_pnl=machine.cumulative_pnl,
                live_cumulative_pnl=machine.live_cumulative_pnl,
                paper_trades=list(machine.paper_trades),
                live_trades=list(machine.live_trades),
                state_log=list(machine.state_log),
                signals=manager.get_signals(instrument.token),
            )
        return DayRecord(date=day, instruments=entries)

    def _store_day(self, record: DayRecord) -> None:
        with self._lock:
            days = [d for d in self._load_days() if d.get("date") != record.date]
            days.insert(0, record.model_dump(mode="json"))
            days.sort(key=lambda d: str(d.get("date", "")), reverse=True)
            try:
                atomic_write_json(self.path, {"days": days})
            except (OSError, TypeError) as e:
                raise PersistenceError(f"Failed to write history: {e}", path=str(self.path)) from e

    def _load_days(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            self.error_logger.error("Failed to load history", path=str(self.path), error=str(e))
            return []
        days = data.get("days") if isinstance(data, dict) else None
        if not isinstance(days, list):
            return []
        return [d for d in days if isinstance(d, dict)]

    def get_history(self) -> Dict[str, Any]:
        return {"days": self._load_days()}

    def list_dates(self) -> List[DaySummary]:
        summaries = []
        for day in self._load_days():
            try:
                summaries.append(DaySummary.model_validate(day))
            except ValidationError:
                continue
        return summaries

    def get_by_date(self, day: Union[str, date_type]) -> Optional[DayRecord]:
        day = day.isoformat() if isinstance(day, date_type) else str(day)
        for item in self._load_days():
            if item.get("date") == day:
                try:
                    return DayRecord.model_validate(item)
                except ValidationError as e:
                    self.error_logger.error("Archived day is malformed", date=day, error=str(e))
                    return None
        return None
