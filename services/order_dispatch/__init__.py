from .dispatcher import OrderDispatcher
from .models import AccountOrderResult, DispatchResult

__all__ = ["AccountOrderResult", "DispatchResult", "OrderDispatcher"]
