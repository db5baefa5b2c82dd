from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import Field

from core.schemas.events import DeskBaseModel, utc_now
from core.trading.interfaces import BrokerOrderClient
from core.utils.ids import generate_account_id


class Account(DeskBaseModel):
    """Stored brokerage credentials for one account (contains secrets)."""

    id: str = Field(default_factory=generate_account_id)
    name: str = "New Account"
    api_key: str = ""
    api_secret: str = ""
    access_token: str = ""
    enabled: bool = True
    last_order: Optional[datetime] = None
    last_token_update: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.access_token)

    @property
    def is_primary_candidate(self) -> bool:
        return self.enabled and self.has_credentials

    def to_view(self) -> "AccountView":
        return AccountView(
            id=self.id,
            name=self.name,
            api_key=self.api_key,
            enabled=self.enabled,
            has_credentials=self.has_credentials,
            has_api_secret=bool(self.api_secret),
            last_order=self.last_order,
            last_token_update=self.last_token_update,
            created_at=self.created_at,
        )


class AccountView(DeskBaseModel):
    """Redacted projection for operators; never carries the secret or token.

    The API key stays visible because the login URL is built from it.
    """

    id: str
    name: str
    api_key: str
    enabled: bool
    has_credentials: bool
    has_api_secret: bool
    last_order: Optional[datetime] = None
    last_token_update: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AccountCreate(DeskBaseModel):
    name: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None


class AccountUpdate(DeskBaseModel):
    """Partial update; empty or missing fields leave stored values untouched."""

    name: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None
    enabled: Optional[bool] = None


@dataclass
class AccountHandle:
    """A ready-to-trade client for one credentialed account."""

    id: str
    name: str
    api_key: str
    enabled: bool
    client: BrokerOrderClient
