from .parser import parse_signal
from .service import SignalService

__all__ = ["SignalService", "parse_signal"]
