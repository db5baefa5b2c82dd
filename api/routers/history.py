from datetime import datetime
from typing import Any, Dict, List

import pytz
from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import (
    get_history_archiver,
    get_instrument_registry,
    get_settings,
    get_state_machine_manager,
)
from core.config.settings import Settings
from services.history.archiver import HistoryArchiver
from services.instrument_data.registry import InstrumentRegistry
from services.state_machine.manager import StateMachineManager

router = APIRouter(prefix="/api/history", tags=["History"])


@router.get("")
async def list_dates(
    archiver: HistoryArchiver = Depends(get_history_archiver),
) -> List[Dict[str, Any]]:
    return [d.model_dump(mode="json") for d in archiver.list_dates()]


@router.post("/save")
async def save_today(
    settings: Settings = Depends(get_settings),
    archiver: HistoryArchiver = Depends(get_history_archiver),
    instruments: InstrumentRegistry = Depends(get_instrument_registry),
    manager: StateMachineManager = Depends(get_state_machine_manager),
) -> Dict[str, Any]:
    """Archive the current trading day now (replaces an earlier save of the same day)"""
    today = datetime.now(pytz.timezone(settings.trading.timezone)).date()
    record = await archiver.archive(today, instruments.all(), manager)
    return {"date": record.date, "saved_at": record.saved_at.isoformat(),
            "instruments": len(record.instruments)}


@router.get("/{day}")
async def get_day(
    day: str,
    archiver: HistoryArchiver = Depends(get_history_archiver),
) -> Dict[str, Any]:
    record = archiver.get_by_date(day)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No history for {day}")
    return record.model_dump(mode="json")
