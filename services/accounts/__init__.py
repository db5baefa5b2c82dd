from .models import Account, AccountHandle, AccountView
from .registry import AccountRegistry
from .store import AccountStore

__all__ = ["Account", "AccountHandle", "AccountRegistry", "AccountStore", "AccountView"]
