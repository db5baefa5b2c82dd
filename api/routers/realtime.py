from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from dependency_injector.wiring import inject, Provide

from app.containers import AppContainer
from api.services.realtime_service import ConnectionManager
from core.logging import get_api_logger_safe
from core.schemas.events import BroadcastEvent
from services.instrument_data.registry import InstrumentRegistry
from services.market_feed.service import MarketFeedService
from services.state_machine.manager import StateMachineManager

router = APIRouter(tags=["Real-time"])
logger = get_api_logger_safe("api.realtime")


@router.websocket("/ws")
@inject
async def websocket_endpoint(
    websocket: WebSocket,
    connection_manager: ConnectionManager = Depends(Provide[AppContainer.broadcaster]),
    instruments: InstrumentRegistry = Depends(Provide[AppContainer.instrument_registry]),
    manager: StateMachineManager = Depends(Provide[AppContainer.state_machine_manager]),
    market_feed: MarketFeedService = Depends(Provide[AppContainer.market_feed_service]),
):
    """Broadcast channel. Clients send ``{"event": "selectInstrument", "data": <token>}``
    to receive the last tick, snapshot and signal history of one instrument."""
    await connection_manager.connect(websocket)
    await connection_manager.send(websocket, BroadcastEvent.INSTRUMENTS.value, instruments.payload())

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict) or message.get("event") != "selectInstrument":
                continue
            try:
                token = int(message.get("data"))
            except (TypeError, ValueError):
                continue

            tick = market_feed.get_last_tick(token)
            if tick is not None:
                await connection_manager.send(websocket, BroadcastEvent.TICK.value, tick.model_dump(mode="json"))
            payload = manager.snapshot_payload(token)
            if payload is not None:
                await connection_manager.send(websocket, BroadcastEvent.FSM.value, payload)
                await connection_manager.send(websocket, BroadcastEvent.SIGNALS.value,
                                              manager.signals_payload(token))
    except WebSocketDisconnect:
        connection_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error", error=str(e))
        connection_manager.disconnect(websocket)
