from .registry import InstrumentRegistry

__all__ = ["InstrumentRegistry"]
