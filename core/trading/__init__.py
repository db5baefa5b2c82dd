"""
Trading core: the per-instrument state machine, its value types, and the
broker-facing interfaces the services depend on.
"""

from .models import ExitReason, FsmEvent, FsmSnapshot, StateLogEntry, TradeRecord, TradingState
from .state_machine import InstrumentStateMachine

__all__ = [
    "ExitReason",
    "FsmEvent",
    "FsmSnapshot",
    "InstrumentStateMachine",
    "StateLogEntry",
    "TradeRecord",
    "TradingState",
]
