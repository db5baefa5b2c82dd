from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class BrokerOrderClient(Protocol):
    """Synchronous order client of one broker account.

    Matches the subset of ``kiteconnect.KiteConnect`` the desk relies on.
    Calls block on network I/O and must be run off the event loop.
    """

    def place_order(self, variety: str, **params: Any) -> Any:
        ...

    def set_access_token(self, access_token: str) -> None:
        ...


@runtime_checkable
class Broadcaster(Protocol):
    """Fan-out of named events to observers (UI connections)."""

    async def emit(self, event: str, payload: Any) -> None:
        ...


@runtime_checkable
class TokenExchanger(Protocol):
    """Exchanges an OAuth request token for a session."""

    def generate_session(self, request_token: str, api_secret: Optional[str] = None) -> Dict[str, Any]:
        ...
