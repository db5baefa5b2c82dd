"""
JSON file store for brokerage credentials.

The whole account list is one document, readable by its owner only. Writes
atomically replace the previous document, so a failed write never leaves a
truncated credential file behind.
"""

from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from core.logging import get_audit_logger_safe
from core.utils.exceptions import AccountStoreError
from core.utils.files import atomic_write_json, read_json
from .models import Account

logger = get_audit_logger_safe("accounts")

ACCOUNTS_FILE_MODE = 0o600


class AccountStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self, strict: bool = False) -> List[Account]:
        """Read all accounts.

        An absent file is an empty list. An unreadable file or a malformed
        record is logged and skipped, unless ``strict`` is set: then it raises
        ``AccountStoreError`` so a caller about to rewrite the file keeps the
        existing document untouched.
        """
        if not self.path.exists():
            logger.info("No accounts file, starting with no accounts", path=str(self.path))
            return []
        try:
            raw = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.error("Failed to load accounts", path=str(self.path), error=str(e))
            if strict:
                raise AccountStoreError(f"Accounts file is unreadable: {e}",
                                        details={"path": str(self.path)}) from e
            return []
        if not isinstance(raw, list):
            logger.error("Accounts file is not a list", path=str(self.path))
            if strict:
                raise AccountStoreError("Accounts file is not a list", details={"path": str(self.path)})
            return []

        accounts = []
        for item in raw:
            try:
                accounts.append(Account.model_validate(item))
            except ValidationError as e:
                account_id = item.get("id") if isinstance(item, dict) else None
                logger.warning("Skipping malformed account record", account_id=account_id, error=str(e))
                if strict:
                    raise AccountStoreError("Accounts file holds a malformed record",
                                            details={"path": str(self.path), "account_id": account_id}) from e
        return accounts

    def write(self, accounts: List[Account]) -> None:
        """Persist the full list atomically; raises ``AccountStoreError`` on failure."""
        try:
            atomic_write_json(self.path, [a.model_dump(mode="json") for a in accounts],
                              mode=ACCOUNTS_FILE_MODE)
        except OSError as e:
            raise AccountStoreError(f"Failed to save accounts: {e}", details={"path": str(self.path)}) from e

    def save(self, accounts: List[Account]) -> bool:
        """Persist the full list; failure is logged and reported as ``False``."""
        try:
            self.write(accounts)
        except AccountStoreError as e:
            logger.error("Failed to save accounts", path=str(self.path), error=e.message)
            return False
        logger.info("Accounts saved", count=len(accounts))
        return True
