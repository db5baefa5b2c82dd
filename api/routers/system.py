from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from api.dependencies import (
    get_account_registry,
    get_instrument_registry,
    get_market_feed_service,
    get_settings,
)
from core.config.settings import Settings
from core.logging import get_statistics
from services.accounts.registry import AccountRegistry
from services.instrument_data.registry import InstrumentRegistry
from services.market_feed.service import MarketFeedService

router = APIRouter(prefix="/api", tags=["System"])


@router.get("/health")
async def health(
    settings: Settings = Depends(get_settings),
    instruments: InstrumentRegistry = Depends(get_instrument_registry),
    accounts: AccountRegistry = Depends(get_account_registry),
    market_feed: MarketFeedService = Depends(get_market_feed_service),
) -> Dict[str, Any]:
    """Liveness plus a short summary of what the desk can currently do"""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.version,
        "instruments": len(instruments),
        "accounts": accounts.handle_count,
        "enabled_accounts": len(accounts.get_enabled_accounts()),
        "market_feed": market_feed.stats.model_dump(mode="json"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/instruments")
async def list_instruments(
    instruments: InstrumentRegistry = Depends(get_instrument_registry),
) -> List[Dict[str, Any]]:
    return instruments.payload()


@router.get("/logging")
async def logging_statistics() -> Dict[str, Any]:
    return get_statistics()
