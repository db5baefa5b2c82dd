"""
Mock Zerodha API for Testing
Stand-ins for KiteConnect and KiteTicker that record calls instead of
talking to the broker.
"""

from typing import Any, Dict, List, Optional


class MockKiteConnect:
    """Records orders like ``KiteConnect.place_order``; optionally fails"""

    def __init__(self, order_id: str = "230115000000001", error: Optional[Exception] = None,
                 session: Optional[Dict[str, Any]] = None):
        self.order_id = order_id
        self.error = error
        self.session = session if session is not None else {"access_token": "fresh-access-token"}
        self.orders: List[Dict[str, Any]] = []
        self.sessions: List[Dict[str, Any]] = []
        self.access_token: Optional[str] = None

    def set_access_token(self, access_token: str) -> None:
        self.access_token = access_token

    def place_order(self, variety: str, **params) -> str:
        self.orders.append({"variety": variety, **params})
        if self.error is not None:
            raise self.error
        return self.order_id

    def generate_session(self, request_token: str, api_secret: str = None) -> Dict[str, Any]:
        self.sessions.append({"request_token": request_token, "api_secret": api_secret})
        if self.error is not None:
            raise self.error
        return self.session


class MockKiteTicker:
    """Captures subscriptions and lets tests drive the ticker callbacks"""

    def __init__(self, api_key: str, access_token: str):
        self.api_key = api_key
        self.access_token = access_token
        self.connected = False
        self.closed_with: Optional[tuple] = None
        self.subscribed: List[int] = []
        self.modes: List[tuple] = []
        self.on_ticks = None
        self.on_connect = None
        self.on_close = None
        self.on_error = None

    def connect(self, threaded: bool = False) -> None:
        self.connected = True

    def subscribe(self, tokens: List[int]) -> None:
        self.subscribed.extend(tokens)

    def set_mode(self, mode: str, tokens: List[int]) -> None:
        self.modes.append((mode, list(tokens)))

    def close(self, code: int = None, reason: str = None) -> None:
        self.connected = False
        self.closed_with = (code, reason)
