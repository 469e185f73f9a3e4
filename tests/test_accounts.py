"""
Test suite for the account store

Covers index maintenance, conflict detection, atomic balance mutation and
address retirement on deletion.
"""

import pytest
import uuid
from decimal import Decimal
from datetime import datetime, timezone

from transactchain.accounts import Account, AccountStore, Role, generate_address
from transactchain.currency import Money, Currency
from transactchain.errors import Conflict, InsufficientFunds, NotFound, TryAgain
from transactchain.storage import InMemoryStorage, WriteOp


def make_account(email=None, role=Role.CUSTOMER, country="USA",
                 balance="10000.00", address=None, username="alice") -> Account:
    now = datetime.now(timezone.utc)
    return Account(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        username=username,
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
        credential_hash="scrypt$1024$salt$hash",
        role=role,
        country=country,
        address=address or generate_address(),
        balance=Money(Decimal(balance), Currency.USD)
    )


class TestAccount:

    def test_address_format(self):
        address = generate_address()
        assert address.startswith("0x")
        assert len(address) == 34
        int(address[2:], 16)

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            make_account(balance="-0.01")

    def test_admin_cannot_transfer(self):
        assert not make_account(role=Role.ADMIN).can_transfer
        assert make_account(role=Role.BANK).can_transfer

    def test_public_dict_has_no_hashes(self):
        public = make_account().to_public_dict()
        assert "credential_hash" not in public
        assert "deletion_secret_hash" not in public
        assert public["balance"] == "10000.00"


class TestAccountStore:
    """Test account store functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = AccountStore(self.storage)

    def test_create_and_lookup(self):
        account = self.store.create(make_account(email="Alice@Example.com"))

        assert self.store.get(account.id) == account
        assert self.store.get_by_address(account.address).id == account.id
        assert self.store.get_by_email("alice@example.com").id == account.id
        assert self.store.exists(account.id)
        assert self.store.count() == 1

    def test_lookup_missing(self):
        with pytest.raises(NotFound):
            self.store.get("missing")
        with pytest.raises(NotFound):
            self.store.get_by_address("0xdeadbeef")
        with pytest.raises(NotFound):
            self.store.get_by_email("nobody@example.com")

    def test_duplicate_email_conflict(self):
        self.store.create(make_account(email="bob@example.com"))

        with pytest.raises(Conflict) as exc_info:
            self.store.create(make_account(email="BOB@example.com"))

        assert exc_info.value.details["field"] == "email"
        assert self.store.count() == 1

    def test_duplicate_address_conflict_writes_nothing(self):
        first = self.store.create(make_account())
        clash = make_account(address=first.address)

        with pytest.raises(Conflict) as exc_info:
            self.store.create(clash)

        assert exc_info.value.details["field"] == "address"
        assert not self.store.exists(clash.id)
        with pytest.raises(NotFound):
            self.store.get_by_email(clash.email)

    def test_list_accounts_by_role(self):
        self.store.create(make_account(role=Role.CUSTOMER))
        self.store.create(make_account(role=Role.CUSTOMER))
        self.store.create(make_account(role=Role.BANK))
        self.store.create(make_account(role=Role.ADMIN, balance="0"))

        assert len(self.store.list_accounts()) == 4
        assert len(self.store.list_accounts(role=Role.CUSTOMER)) == 2
        assert len(self.store.list_accounts(role=Role.ADMIN)) == 1

    def test_mutate_balances(self):
        a = self.store.create(make_account(balance="100.00"))
        b = self.store.create(make_account(balance="50.00"))

        updated = self.store.mutate_balances({
            a.id: Money(Decimal('-30.00'), Currency.USD),
            b.id: Decimal('30.00'),
        })

        assert updated[a.id].balance.amount == Decimal('70.00')
        assert self.store.get(a.id).balance.amount == Decimal('70.00')
        assert self.store.get(b.id).balance.amount == Decimal('80.00')
        assert self.store.get(a.id).version == 2
        assert self.store.total_balance().amount == Decimal('150.00')

    def test_mutate_balances_rejects_negative_result(self):
        a = self.store.create(make_account(balance="10.00"))
        b = self.store.create(make_account(balance="0.00"))

        with pytest.raises(InsufficientFunds):
            self.store.mutate_balances({a.id: Decimal('-10.01'), b.id: Decimal('10.01')})

        assert self.store.get(a.id).balance.amount == Decimal('10.00')
        assert self.store.get(b.id).balance.amount == Decimal('0.00')
        assert self.store.get(a.id).version == 1

    def test_mutate_balances_includes_extra_writes(self):
        a = self.store.create(make_account(balance="10.00"))

        self.store.mutate_balances(
            {a.id: Decimal('-1.00')},
            extra_writes=[WriteOp("side_table", "rec-1", {"id": "rec-1"}, must_not_exist=True)]
        )

        assert self.storage.exists("side_table", "rec-1")

    def test_failed_extra_write_rolls_back_balances(self):
        a = self.store.create(make_account(balance="10.00"))
        self.storage.save("side_table", "rec-1", {"id": "rec-1"})

        with pytest.raises(Conflict):
            self.store.mutate_balances(
                {a.id: Decimal('-1.00')},
                extra_writes=[WriteOp("side_table", "rec-1", {"id": "rec-1"},
                                      must_not_exist=True)]
            )

        assert self.store.get(a.id).balance.amount == Decimal('10.00')

    def test_stale_snapshot_raises_try_again(self):
        a = self.store.create(make_account(balance="10.00"))
        stale = self.store.get(a.id)

        # Another writer moves the record on
        self.store.mutate_balances({a.id: Decimal('-5.00')})

        with pytest.raises(TryAgain):
            self.store.commit_mutation({a.id: stale}, {a.id: Decimal('-5.00')})

        assert self.store.get(a.id).balance.amount == Decimal('5.00')

    def test_delete_retires_address(self):
        account = self.store.create(make_account(email="carol@example.com"))

        deleted = self.store.delete(account.id)

        assert deleted.id == account.id
        assert not self.store.exists(account.id)
        with pytest.raises(NotFound):
            self.store.get_by_address(account.address)
        assert self.store.address_is_known(account.address)

        # The email is free again; the address is not
        self.store.create(make_account(email="carol@example.com"))
        with pytest.raises(Conflict) as exc_info:
            self.store.create(make_account(address=account.address))
        assert exc_info.value.details["field"] == "address"

    def test_delete_missing_account(self):
        with pytest.raises(NotFound):
            self.store.delete("missing")

    def test_round_trip_through_storage(self):
        account = make_account(role=Role.BANK, country="India", balance="1.23")
        account.deletion_secret_hash = "scrypt$1024$s$h"
        self.store.create(account)

        loaded = self.store.get(account.id)
        assert loaded.role == Role.BANK
        assert loaded.balance == account.balance
        assert loaded.deletion_secret_hash == "scrypt$1024$s$h"
        assert loaded.created_at == account.created_at
