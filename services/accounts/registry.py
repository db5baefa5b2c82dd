"""
Account registry: the single source of truth for brokerage credentials.

Every mutation is a serialized read-modify-write of the whole credential
file followed by a synchronous reload of the client handles, so changes are
visible to the next dispatch without a restart.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Union

from kiteconnect import KiteConnect

from core.events.hub import EventHub
from core.logging import get_audit_logger_safe
from core.schemas.events import PrimaryAccountChanged, utc_now
from core.utils.exceptions import AccountNotFoundError, AccountStoreError
from .models import Account, AccountCreate, AccountHandle, AccountUpdate, AccountView
from .store import AccountStore

ClientFactory = Callable[[str, str], Any]


def kite_client_factory(api_key: str, access_token: str) -> KiteConnect:
    kite = KiteConnect(api_key=api_key)
    kite.set_access_token(access_token)
    return kite


class AccountRegistry:
    def __init__(
        self,
        store: AccountStore,
        event_hub: Optional[EventHub] = None,
        client_factory: ClientFactory = kite_client_factory,
    ):
        self.store = store
        self.event_hub = event_hub
        self._client_factory = client_factory
        self._lock = threading.RLock()
        self._handles: List[AccountHandle] = []
        self.logger = get_audit_logger_safe("accounts")

    # ------------------------------------------------------------------ persistence

    def load(self) -> List[Account]:
        return self.store.load()

    def save(self, accounts: List[Account]) -> bool:
        return self.store.save(accounts)

    # ------------------------------------------------------------------ handles

    def init(self) -> int:
        """Build client handles for every fully credentialed account."""
        with self._lock:
            handles = []
            for account in self.load():
                if not account.has_credentials:
                    self.logger.warning("Account missing credentials, skipping",
                                        account_id=account.id, account=account.name)
                    continue
                try:
                    client = self._client_factory(account.api_key, account.access_token)
                except Exception as e:
                    self.logger.error("Failed to initialize account client",
                                      account_id=account.id, account=account.name, error=str(e))
                    continue
                handles.append(AccountHandle(
                    id=account.id,
                    name=account.name,
                    api_key=account.api_key,
                    enabled=account.enabled,
                    client=client,
                ))
            self._handles = handles

        self.logger.info("Account handles initialized",
                         total=len(handles), enabled=sum(1 for h in handles if h.enabled))
        return len(handles)

    def reload(self) -> int:
        self.logger.info("Reloading accounts")
        return self.init()

    def get_enabled_accounts(self) -> List[AccountHandle]:
        with self._lock:
            return [h for h in self._handles if h.enabled]

    @property
    def handle_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def get_primary_account(self) -> Optional[Account]:
        """First enabled, fully credentialed account in file order, if any."""
        for account in self.load():
            if account.is_primary_candidate:
                return account
        return None

    # ------------------------------------------------------------------ queries

    def list_accounts(self) -> List[AccountView]:
        return [a.to_view() for a in self.load()]

    def get_account(self, account_id: str) -> Account:
        for account in self.load():
            if account.id == account_id:
                return account
        raise AccountNotFoundError(details={"account_id": account_id})

    def find_by_api_key(self, api_key: str) -> Optional[Account]:
        for account in self.load():
            if account.api_key == api_key:
                return account
        return None

    # ------------------------------------------------------------------ mutations

    def _mutate(self, change: Callable[[List[Account]], Any]) -> Any:
        with self._lock:
            accounts = self.store.load(strict=True)
            result = change(accounts)
            self.store.write(accounts)
            self.reload()
            return result

    def add_account(self, data: Union[AccountCreate, Dict[str, Any]]) -> Account:
        if isinstance(data, dict):
            data = AccountCreate.model_validate(data)
        account = Account(
            name=data.name or "New Account",
            api_key=data.api_key or "",
            api_secret=data.api_secret or "",
            access_token=data.access_token or "",
        )

        def change(accounts: List[Account]) -> Account:
            accounts.append(account)
            return account

        self._mutate(change)
        self.logger.info("Account added", account_id=account.id, account=account.name)
        return account

    def update_account(self, account_id: str, updates: Union[AccountUpdate, Dict[str, Any]]) -> Account:
        if isinstance(updates, dict):
            updates = AccountUpdate.model_validate(updates)

        def change(accounts: List[Account]) -> Account:
            index = _index_of(accounts, lambda a: a.id == account_id)
            fields = {
                name: value
                for name, value in updates.model_dump(exclude={"enabled"}).items()
                if value
            }
            if isinstance(updates.enabled, bool):
                fields["enabled"] = updates.enabled
            accounts[index] = accounts[index].model_copy(update=fields)
            return accounts[index]

        account = self._mutate(change)
        self.logger.info("Account updated", account_id=account_id,
                         fields=sorted(updates.model_dump(exclude_none=True)))
        return account

    def delete_account(self, account_id: str) -> None:
        def change(accounts: List[Account]) -> None:
            index = _index_of(accounts, lambda a: a.id == account_id)
            del accounts[index]

        self._mutate(change)
        self.logger.info("Account deleted", account_id=account_id)

    def update_access_token_by_api_key(self, api_key: str, access_token: str) -> Account:
        """Store a fresh access token; announces it when the primary account changed."""

        def change(accounts: List[Account]) -> Account:
            index = _index_of(accounts, lambda a: a.api_key == api_key,
                              "Account not found for this API key")
            accounts[index] = accounts[index].model_copy(update={
                "access_token": access_token,
                "last_token_update": utc_now(),
            })
            return accounts[index]

        account = self._mutate(change)
        self.logger.info("Access token updated", account_id=account.id, account=account.name)

        primary = self.get_primary_account()
        if primary is not None and primary.api_key == api_key and self.event_hub is not None:
            self.logger.info("Primary account token updated", account=primary.name)
            self.event_hub.publish(PrimaryAccountChanged(account_id=primary.id, name=primary.name))
        return account

    def update_last_order(self, account_id: str) -> None:
        """Stamp the last successful order; failures here never affect trading."""
        with self._lock:
            try:
                accounts = self.store.load(strict=True)
            except AccountStoreError as e:
                self.logger.error("Last order not recorded", account_id=account_id, error=e.message)
                return
            for i, account in enumerate(accounts):
                if account.id == account_id:
                    accounts[i] = account.model_copy(update={"last_order": utc_now()})
                    self.save(accounts)
                    return


def _index_of(accounts: List[Account], match: Callable[[Account], bool],
              message: str = "Account not found") -> int:
    for i, account in enumerate(accounts):
        if match(account):
            return i
    raise AccountNotFoundError(message)
