"""
Tests for role-scoped read views
"""

import pytest
from decimal import Decimal

from transactchain.accounts import Role
from transactchain.config import TransactChainConfig
from transactchain.errors import NotFound, RoleForbidden
from transactchain.security import SecretHasher
from transactchain.system import LedgerSystem, create_storage
from transactchain.storage import InMemoryStorage, SQLiteStorage
from transactchain.views import CallerContext


class TestLedgerViews:

    def setup_method(self):
        config = TransactChainConfig(storage_backend="memory")
        self.system = LedgerSystem(config=config, hasher=SecretHasher(n=1024))
        self.views = self.system.views
        register = self.system.lifecycle.register

        self.alice = register("alice", "alice@example.com", "pw", "customer", "USA")
        self.bob = register("Bob", "bob@example.com", "pw", "customer", "India")
        self.bank = register("acme", "acme@example.com", "pw", "bank", "UK")
        self.admin = register("root", "root@example.com", "pw", "admin", "USA")

        self.tx = self.system.transfer_engine.execute(self.alice.id, self.bob.address, "10.00")

    def _as(self, account):
        return CallerContext(account_id=account.id)

    def test_dashboard(self):
        view = self.views.dashboard(self._as(self.alice))

        assert view.account.id == self.alice.id
        assert view.account.balance.amount == Decimal('9989.82')
        assert [t.id for t in view.transactions] == [self.tx.id]

    def test_dashboard_unknown_caller(self):
        with pytest.raises(NotFound):
            self.views.dashboard(CallerContext(account_id="ghost"))

    def test_recipients_exclude_self_and_admins(self):
        recipients = self.views.recipients(self._as(self.alice))
        assert [a.username for a in recipients] == ["acme", "Bob"]

    def test_admin_has_no_recipients(self):
        with pytest.raises(RoleForbidden):
            self.views.recipients(self._as(self.admin))

    def test_bank_sees_customers_only(self):
        customers = self.views.customer_accounts(self._as(self.bank))
        assert {a.id for a in customers} == {self.alice.id, self.bob.id}

        with pytest.raises(RoleForbidden):
            self.views.customer_accounts(self._as(self.alice))

    def test_admin_sees_everything(self):
        accounts = self.views.all_accounts(self._as(self.admin))
        assert len(accounts) == 4
        assert accounts[0].created_at >= accounts[-1].created_at

        transactions = self.views.all_transactions(self._as(self.admin))
        assert [t.id for t in transactions] == [self.tx.id]

    def test_non_admin_cannot_audit(self):
        for account in (self.alice, self.bank):
            with pytest.raises(RoleForbidden):
                self.views.all_transactions(self._as(account))
            with pytest.raises(RoleForbidden):
                self.views.all_accounts(self._as(account))

    def test_visible_accounts_by_role(self):
        assert [a.id for a in self.views.visible_accounts(self._as(self.alice))] == [self.alice.id]
        assert len(self.views.visible_accounts(self._as(self.bank))) == 2
        assert len(self.views.visible_accounts(self._as(self.admin))) == 4

    def test_visible_transactions_by_role(self):
        assert len(self.views.visible_transactions(self._as(self.bob))) == 1
        assert self.views.visible_transactions(self._as(self.bank)) == []
        assert len(self.views.visible_transactions(self._as(self.admin))) == 1


class TestLedgerSystem:

    def test_memory_backend(self):
        config = TransactChainConfig(storage_backend="memory", enable_audit_logging=False)
        system = LedgerSystem(config=config)

        assert isinstance(system.storage, InMemoryStorage)
        assert system.audit_trail is None
        system.close()

    def test_sqlite_backend(self, tmp_path):
        config = TransactChainConfig(storage_backend="sqlite", sqlite_path=str(tmp_path / "l.db"))
        storage = create_storage(config)
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage(TransactChainConfig(storage_backend="postgres"))

    def test_config_drives_business_rules(self):
        config = TransactChainConfig(
            storage_backend="memory",
            starting_balance="500.00",
            default_fee_rate="4.0",
            fee_rates={"Mars": "6.0"},
            lock_timeout_seconds=1.5
        )
        system = LedgerSystem(config=config, hasher=SecretHasher(n=1024))

        assert system.lock_manager.timeout == 1.5
        assert system.fee_schedule.rate("Mars") == Decimal('6.0')
        assert system.fee_schedule.rate("Venus") == Decimal('4.0')

        account = system.lifecycle.register("m", "m@example.com", "pw", "customer", "Mars")
        assert account.balance.amount == Decimal('500.00')

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("TRANSACTCHAIN_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("TRANSACTCHAIN_LOCK_TIMEOUT_SECONDS", "0.5")

        config = TransactChainConfig()

        assert config.storage_backend == "memory"
        assert config.lock_timeout_seconds == 0.5
