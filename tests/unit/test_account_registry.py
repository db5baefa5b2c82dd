"""Account registry: credential file, partial updates, hot reload and primary changes."""

import json
import os
import stat

import pytest

from core.schemas.events import PrimaryAccountChanged
from core.utils.exceptions import AccountNotFoundError, AccountStoreError
from services.accounts.models import AccountUpdate
from services.accounts.store import AccountStore


def stored(registry):
    return json.loads(registry.store.path.read_text())


class TestAccountStore:

    def test_missing_file_is_empty(self, tmp_path):
        assert AccountStore(tmp_path / "accounts.json").load() == []

    def test_file_is_owner_only(self, account_registry):
        account_registry.add_account({"name": "Main", "api_key": "k1"})

        mode = stat.S_IMODE(os.stat(account_registry.store.path).st_mode)
        assert mode == 0o600

    def test_malformed_records_are_skipped(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text(json.dumps([
            {"id": "acc_1", "name": "Good", "api_key": "k"},
            {"id": "acc_2", "enabled": "not-a-bool"},
            "garbage",
        ]))

        accounts = AccountStore(path).load()
        assert [a.id for a in accounts] == ["acc_1"]

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text("{broken")
        assert AccountStore(path).load() == []

    def test_write_failure_raises_and_keeps_previous(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = AccountStore(blocker / "accounts.json")

        with pytest.raises(AccountStoreError):
            store.write([])
        assert store.save([]) is False


class TestRegistryQueries:

    def test_list_never_exposes_secrets(self, account_registry):
        account_registry.add_account({"name": "Main", "api_key": "k1", "api_secret": "s1", "access_token": "t1"})

        views = [v.model_dump() for v in account_registry.list_accounts()]
        assert "api_secret" not in views[0]
        assert "access_token" not in views[0]
        assert views[0]["has_api_secret"] is True
        assert views[0]["has_credentials"] is True

    def test_get_account_unknown(self, account_registry):
        with pytest.raises(AccountNotFoundError):
            account_registry.get_account("acc_missing")

    def test_primary_is_first_enabled_with_credentials(self, account_registry):
        account_registry.add_account({"name": "NoToken", "api_key": "k0"})
        second = account_registry.add_account({"name": "Ready", "api_key": "k1", "access_token": "t1"})
        account_registry.add_account({"name": "AlsoReady", "api_key": "k2", "access_token": "t2"})

        assert account_registry.get_primary_account().id == second.id

        account_registry.update_account(second.id, {"enabled": False})
        assert account_registry.get_primary_account().name == "AlsoReady"

    def test_no_primary_without_credentials(self, account_registry):
        account_registry.add_account({"name": "Empty"})
        assert account_registry.get_primary_account() is None


class TestRegistryMutations:

    def test_add_defaults(self, account_registry):
        account = account_registry.add_account({})

        assert account.name == "New Account"
        assert account.enabled is True
        assert account.id.startswith("acc_")
        assert stored(account_registry)[0]["id"] == account.id

    def test_handles_reloaded_after_mutation(self, account_registry, kite_clients):
        assert account_registry.init() == 0
        account = account_registry.add_account({"name": "Main", "api_key": "k1", "access_token": "t1"})

        handles = account_registry.get_enabled_accounts()
        assert [h.id for h in handles] == [account.id]
        assert handles[0].client is kite_clients["k1"]
        assert kite_clients["k1"].access_token == "t1"

    def test_accounts_without_credentials_get_no_handle(self, account_registry):
        account_registry.add_account({"name": "Half", "api_key": "k1"})
        assert account_registry.handle_count == 0

    def test_partial_update_keeps_secret(self, account_registry):
        account = account_registry.add_account({"name": "Main", "api_key": "k1", "api_secret": "s1"})

        account_registry.update_account(account.id, AccountUpdate(name="Renamed", api_secret=""))

        record = stored(account_registry)[0]
        assert record["name"] == "Renamed"
        assert record["api_secret"] == "s1"
        assert record["api_key"] == "k1"

    def test_update_enabled_false(self, account_registry):
        account = account_registry.add_account({"name": "Main", "api_key": "k1", "access_token": "t1"})

        account_registry.update_account(account.id, {"enabled": False})

        assert account_registry.get_account(account.id).enabled is False
        assert account_registry.get_enabled_accounts() == []

    def test_update_unknown_account(self, account_registry):
        with pytest.raises(AccountNotFoundError):
            account_registry.update_account("acc_missing", {"name": "x"})

    def test_delete(self, account_registry):
        keep = account_registry.add_account({"name": "Keep"})
        drop = account_registry.add_account({"name": "Drop"})

        account_registry.delete_account(drop.id)

        assert [a.id for a in account_registry.list_accounts()] == [keep.id]
        with pytest.raises(AccountNotFoundError):
            account_registry.delete_account(drop.id)

    def test_update_last_order_never_raises(self, account_registry):
        account = account_registry.add_account({"name": "Main"})
        account_registry.update_last_order(account.id)
        account_registry.update_last_order("acc_missing")

        assert account_registry.get_account(account.id).last_order is not None

    def test_unreadable_file_is_never_overwritten(self, account_registry):
        path = account_registry.store.path
        path.parent.mkdir(parents=True, exist_ok=True)
        truncated = '[{"id": "acc_1", "name": "Main", "api_key": "k1", "api_secret": "s1"'
        path.write_text(truncated)

        with pytest.raises(AccountStoreError):
            account_registry.add_account({"name": "Second"})
        with pytest.raises(AccountStoreError):
            account_registry.update_access_token_by_api_key("k1", "t1")
        account_registry.update_last_order("acc_1")

        assert path.read_text() == truncated

    def test_malformed_record_blocks_mutation(self, account_registry):
        path = account_registry.store.path
        path.parent.mkdir(parents=True, exist_ok=True)
        records = [{"id": "acc_1", "name": "Main", "api_key": "k1", "api_secret": "s1"},
                   {"id": "acc_2", "enabled": "not-a-bool"}]
        path.write_text(json.dumps(records))

        with pytest.raises(AccountStoreError):
            account_registry.delete_account("acc_1")

        assert json.loads(path.read_text()) == records
        assert [a.id for a in account_registry.list_accounts()] == ["acc_1"]


class TestAccessTokens:

    def test_token_update_by_api_key(self, account_registry):
        account_registry.add_account({"name": "Main", "api_key": "k1", "api_secret": "s1"})

        updated = account_registry.update_access_token_by_api_key("k1", "new-token")

        assert updated.access_token == "new-token"
        assert updated.last_token_update is not None
        assert account_registry.handle_count == 1

    def test_unknown_api_key(self, account_registry):
        with pytest.raises(AccountNotFoundError):
            account_registry.update_access_token_by_api_key("nope", "tok")

    def test_primary_token_change_is_published(self, account_registry, event_hub):
        received = []
        event_hub.subscribe(PrimaryAccountChanged, received.append)
        account = account_registry.add_account({"name": "Primary", "api_key": "k1", "api_secret": "s1"})

        account_registry.update_access_token_by_api_key("k1", "tok")

        assert len(received) == 1
        assert received[0].account_id == account.id

    def test_secondary_token_change_is_not_published(self, account_registry, event_hub):
        received = []
        event_hub.subscribe(PrimaryAccountChanged, received.append)
        account_registry.add_account({"name": "Primary", "api_key": "k1", "access_token": "t1"})
        account_registry.add_account({"name": "Second", "api_key": "k2", "api_secret": "s2"})

        account_registry.update_access_token_by_api_key("k2", "tok")

        assert received == []
