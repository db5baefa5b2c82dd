# Market feed service models
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ConnectionStats(BaseModel):
    """KiteTicker connection and throughput counters"""
    account: Optional[str] = None
    current_status: str = "disconnected"  # connected, disconnected, degraded
    connection_attempts: int = 0
    successful_connections: int = 0
    disconnections: int = 0
    last_connection_time: Optional[datetime] = None
    last_disconnection_time: Optional[datetime] = None
    ticks_received: int = 0
    ticks_processed: int = 0
    ticks_dropped: int = 0
    instruments_subscribed: int = 0
