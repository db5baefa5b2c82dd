import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_signal_service
from core.logging import get_api_logger_safe
from services.signals.service import SignalService

router = APIRouter(tags=["Signals"])
logger = get_api_logger_safe("api.webhook")


@router.post("/webhook")
async def webhook(
    request: Request,
    signal_service: SignalService = Depends(get_signal_service),
) -> Dict[str, Any]:
    """Charting alert intake; accepts a JSON object or the plain-text alert format"""
    raw = await request.body()
    body: Any = raw.decode("utf-8", errors="replace")
    if "json" in request.headers.get("content-type", ""):
        try:
            body = json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON, parsing as text")

    signal, snapshot = await signal_service.ingest(body)
    return {
        "status": "ok",
        "received": signal.model_dump(mode="json"),
        "fsm": snapshot.model_dump(mode="json") if snapshot else None,
    }
