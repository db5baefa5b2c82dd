"""
Zerodha OAuth login completion.

Kite redirects the operator back to ``/zerodha/callback`` with a one-time
request token. The account is identified by its API key; its stored API
secret turns the request token into an access token, which is written to the
account registry (hot-reloaded, no restart).
"""

import asyncio
from typing import Any, Callable, Dict, List
from urllib.parse import urlencode

from kiteconnect import KiteConnect

from core.config.settings import Settings
from core.logging import get_api_logger_safe, get_audit_logger_safe
from core.trading.interfaces import TokenExchanger
from core.utils.exceptions import AccountError, AccountNotFoundError, TokenExchangeError
from services.accounts.models import Account
from services.accounts.registry import AccountRegistry

SessionFactory = Callable[[str], TokenExchanger]


def kite_session_factory(api_key: str) -> KiteConnect:
    return KiteConnect(api_key=api_key)


class AuthService:
    def __init__(self, settings: Settings, registry: AccountRegistry,
                 session_factory: SessionFactory = kite_session_factory):
        self.login_base_url = settings.zerodha.login_url
        self.registry = registry
        self._session_factory = session_factory
        self.logger = get_api_logger_safe("auth")
        self.audit_logger = get_audit_logger_safe("auth_audit")

    async def complete_login(self, request_token: str, api_key: str) -> Account:
        """Exchange ``request_token`` for an access token and store it."""
        account = self.registry.find_by_api_key(api_key)
        if account is None:
            raise AccountNotFoundError(f"No account found with API key: {api_key}")
        if not account.api_secret:
            raise AccountError(f'Account "{account.name}" has no API secret configured',
                               details={"account_id": account.id})

        kite = self._session_factory(api_key)
        try:
            session: Dict[str, Any] = await asyncio.to_thread(
                kite.generate_session, request_token, api_secret=account.api_secret
            )
        except Exception as e:
            self.logger.error("Session generation failed", account=account.name, error=str(e))
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        access_token = str((session or {}).get("access_token") or "")
        if not access_token:
            raise TokenExchangeError("generate_session returned no access_token")

        updated = self.registry.update_access_token_by_api_key(api_key, access_token)
        self.audit_logger.info("Zerodha login completed", account_id=updated.id, account=updated.name)
        return updated

    def login_url(self, api_key: str) -> str:
        return f"{self.login_base_url}?{urlencode({'v': 3, 'api_key': api_key})}"

    def login_urls(self, callback_url: str) -> Dict[str, Any]:
        accounts: List[Dict[str, Any]] = []
        for view in self.registry.list_accounts():
            accounts.append({
                "id": view.id,
                "name": view.name,
                "login_url": self.login_url(view.api_key) if view.api_key else None,
                "has_api_key": bool(view.api_key),
                "has_credentials": view.has_credentials,
            })
        return {"callback_url": callback_url, "accounts": accounts}
