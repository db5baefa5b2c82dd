from .service import LiveTradingService

__all__ = ["LiveTradingService"]
