from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.dependencies import get_broadcaster, get_market_feed_service, get_state_machine_manager
from api.services.realtime_service import ConnectionManager
from core.schemas.events import BroadcastEvent
from services.market_feed.service import MarketFeedService
from services.state_machine.manager import StateMachineManager

router = APIRouter(prefix="/api/fsm", tags=["State machines"])


class LiveToggleRequest(BaseModel):
    active: bool


class ResetRequest(BaseModel):
    # Empty or missing means every instrument
    exchanges: Optional[List[str]] = None


def _require(manager: StateMachineManager, token: int) -> None:
    if manager.get_machine(token) is None:
        raise HTTPException(status_code=404, detail=f"Unknown instrument token: {token}")


@router.get("")
async def list_snapshots(
    manager: StateMachineManager = Depends(get_state_machine_manager),
) -> List[Dict[str, Any]]:
    return [manager.snapshot_payload(token) for token in manager.tokens]


@router.get("/{token}")
async def get_snapshot(
    token: int,
    manager: StateMachineManager = Depends(get_state_machine_manager),
    market_feed: MarketFeedService = Depends(get_market_feed_service),
) -> Dict[str, Any]:
    _require(manager, token)
    tick = market_feed.get_last_tick(token)
    return {
        "fsm": manager.snapshot_payload(token),
        "signals": manager.signals_payload(token)["signals"],
        "tick": tick.model_dump(mode="json") if tick else None,
    }


@router.post("/{token}/live")
async def set_live(
    token: int,
    request: LiveToggleRequest,
    manager: StateMachineManager = Depends(get_state_machine_manager),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
) -> Dict[str, Any]:
    """Engage or disengage live order placement for one instrument"""
    _require(manager, token)
    manager.set_live(token, request.active)
    payload = manager.snapshot_payload(token)
    await broadcaster.emit(BroadcastEvent.FSM.value, payload)
    return payload


@router.post("/{token}/exit")
async def manual_exit(
    token: int,
    manager: StateMachineManager = Depends(get_state_machine_manager),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
) -> Dict[str, Any]:
    _require(manager, token)
    manager.manual_exit(token)
    payload = manager.snapshot_payload(token)
    await broadcaster.emit(BroadcastEvent.FSM.value, payload)
    return payload


@router.post("/reset")
async def reset(
    request: Optional[ResetRequest] = None,
    manager: StateMachineManager = Depends(get_state_machine_manager),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
) -> Dict[str, Any]:
    """Reset machines on the given exchanges (contract rollover), or all of them"""
    exchanges = (request.exchanges if request else None) or manager.exchanges
    count = await manager.reset_by_exchange(exchanges)

    for token in manager.tokens:
        await broadcaster.emit(BroadcastEvent.FSM.value, manager.snapshot_payload(token))
        await broadcaster.emit(BroadcastEvent.SIGNALS.value, manager.signals_payload(token))
    return {"reset": count, "exchanges": sorted(exchanges)}
