from typing import List, Optional

from pydantic import Field

from core.schemas.events import DeskBaseModel, OrderSide


class AccountOrderResult(DeskBaseModel):
    """Outcome of one account's order placement"""
    account_id: str
    account: str
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    message: str = ""


class DispatchResult(DeskBaseModel):
    """Aggregate of one fan-out; ``success`` is true if any account filled"""
    success: bool
    side: OrderSide
    symbol: Optional[str] = None
    total: int = 0
    success_count: int = 0
    fail_count: int = 0
    total_duration_ms: float = 0.0
    results: List[AccountOrderResult] = Field(default_factory=list)
    message: str = ""
