# Structured exception hierarchy for the threshold trading desk

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class TradingDeskException(Exception):
    """Base exception for all trading desk specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)


class TransientError(TradingDeskException):
    """Errors that may clear on their own (network, broker hiccups)"""
    pass


class PermanentError(TradingDeskException):
    """Errors that will not clear without operator action"""
    pass


# Account management errors
class AccountError(PermanentError):
    """Base class for account registry errors surfaced to operators"""
    pass


class AccountNotFoundError(AccountError):
    """No account matches the given id or API key"""

    def __init__(self, message: str = "Account not found", **kwargs):
        super().__init__(message, **kwargs)


class AccountStoreError(AccountError):
    """The credential store could not be written; previous state is kept"""
    pass


# Broker integration errors
class BrokerError(TransientError):
    """Base class for broker integration errors"""

    def __init__(self, message: str, broker: str = "zerodha", **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker


class TokenExchangeError(BrokerError):
    """OAuth request token could not be exchanged for an access token"""
    pass


# Persistence errors
class PersistenceError(TransientError):
    """Snapshot or history file could not be read or written"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


# Inbound event errors
class UnknownInstrumentError(PermanentError):
    """Signal or tick references an instrument that is not configured"""

    def __init__(self, message: str = "Unknown symbol", symbol: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol


class SignalValidationError(PermanentError):
    """Signal payload could not be normalized"""
    pass
