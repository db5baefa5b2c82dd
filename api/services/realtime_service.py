from typing import Any, Dict, Set

from fastapi import WebSocket

from core.logging import get_api_logger_safe

logger = get_api_logger_safe("api.realtime")


class ConnectionManager:
    """Manages WebSocket observers and fans named events out to them.

    Every message has the shape ``{"event": <name>, "data": <payload>}``.
    Delivery is best effort: a socket that fails a send is dropped.
    """

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        """Accept and manage new WebSocket connection"""
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info("WebSocket connection established", total_connections=len(self.active_connections))

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection"""
        if websocket in self.active_connections:
            self.active_connections.discard(websocket)
            logger.info("WebSocket connection closed", total_connections=len(self.active_connections))

    async def send(self, websocket: WebSocket, event: str, payload: Any):
        """Send one event to a specific WebSocket"""
        try:
            await websocket.send_json(_message(event, payload))
        except Exception as e:
            logger.error("Failed to send WebSocket message", event_type=event, error=str(e))
            self.disconnect(websocket)

    async def emit(self, event: str, payload: Any):
        """Broadcast one event to all connected WebSockets"""
        message = _message(event, payload)
        disconnected = set()

        for websocket in list(self.active_connections):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.error("Failed to broadcast to WebSocket", event_type=event, error=str(e))
                disconnected.add(websocket)

        for websocket in disconnected:
            self.disconnect(websocket)

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)


def _message(event: str, payload: Any) -> Dict[str, Any]:
    return {"event": event, "data": payload}
