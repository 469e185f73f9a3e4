"""
Account Store Module

Durable mapping from account id, public address and email to account
records. Balances change only through mutate_balances()/commit_mutation(),
which write every touched account (and any extra staged records) as one
atomic batch guarded by per-account locks and per-record version checks.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Union
from contextlib import contextmanager
from enum import Enum
import uuid

from .currency import Money, Currency
from .errors import Conflict, InsufficientFunds, NotFound, TryAgain
from .locks import KeyedLockManager
from .logging_config import get_logger
from .storage import (
    StorageInterface, StorageRecord, WriteOp, RecordExistsError, StaleRecordError
)


class Role(Enum):
    """Account roles; fixed at registration"""
    CUSTOMER = "customer"
    BANK = "bank"
    ADMIN = "admin"


def generate_address() -> str:
    """New public address: 0x followed by 32 hex digits"""
    return "0x" + uuid.uuid4().hex


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class Account(StorageRecord):
    """
    Ledger account owned by a registered party
    """
    username: str
    email: str
    credential_hash: str
    role: Role
    country: str
    address: str
    balance: Money
    deletion_secret_hash: Optional[str] = None
    spare_sentence: str = ""  # Free text kept with the account, never shown in listings
    version: int = 1

    def __post_init__(self):
        if self.balance.is_negative():
            raise ValueError(f"Account {self.id} balance cannot be negative")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def can_transfer(self) -> bool:
        """Admins neither send nor receive transfers"""
        return self.role != Role.ADMIN

    @property
    def has_deletion_secret(self) -> bool:
        return bool(self.deletion_secret_hash)

    def to_public_dict(self) -> Dict:
        """Account fields safe to show outside the core (no hashes)"""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "country": self.country,
            "address": self.address,
            "balance": str(self.balance.amount),
            "currency": self.balance.currency.code,
            "created_at": self.created_at.isoformat(),
        }


class AccountStore:
    """
    Account records plus the address and email indexes that point at them
    """

    def __init__(
        self,
        storage: StorageInterface,
        currency: Currency = Currency.USD,
        lock_manager: Optional[KeyedLockManager] = None
    ):
        self.storage = storage
        self.currency = currency
        self.lock_manager = lock_manager or KeyedLockManager()
        self.accounts_table = "accounts"
        self.address_index_table = "account_addresses"
        self.email_index_table = "account_emails"
        self.logger = get_logger("transactchain.accounts")

    # Reads

    def get(self, account_id: str) -> Account:
        """Get account by ID; NotFound if absent"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if not account_dict:
            raise NotFound(f"Account {account_id} not found")
        return self._account_from_dict(account_dict)

    def exists(self, account_id: str) -> bool:
        return self.storage.exists(self.accounts_table, account_id)

    def get_by_address(self, address: str) -> Account:
        """Get account by public address; retired addresses are NotFound"""
        entry = self.storage.load(self.address_index_table, address)
        if not entry or entry.get('retired'):
            raise NotFound(f"No account at address {address}")
        account_dict = self.storage.load(self.accounts_table, entry['account_id'])
        if not account_dict:
            raise NotFound(f"No account at address {address}")
        return self._account_from_dict(account_dict)

    def get_by_email(self, email: str) -> Account:
        entry = self.storage.load(self.email_index_table, normalize_email(email))
        if not entry:
            raise NotFound(f"No account registered with {email}")
        account_dict = self.storage.load(self.accounts_table, entry['account_id'])
        if not account_dict:
            raise NotFound(f"No account registered with {email}")
        return self._account_from_dict(account_dict)

    def address_is_known(self, address: str) -> bool:
        """True for live and retired addresses alike"""
        return self.storage.exists(self.address_index_table, address)

    def list_accounts(self, role: Optional[Role] = None) -> List[Account]:
        """All accounts, optionally restricted to one role"""
        if role:
            data = self.storage.find(self.accounts_table, {"role": role.value})
        else:
            data = self.storage.load_all(self.accounts_table)
        return [self._account_from_dict(d) for d in data]

    def count(self) -> int:
        return self.storage.count(self.accounts_table)

    def total_balance(self) -> Money:
        """Sum of all balances, read from one consistent snapshot"""
        total = Money.zero(self.currency)
        for data in self.storage.load_all(self.accounts_table):
            total = total + Money(Decimal(data['balance']), self.currency)
        return total

    # Writes

    def create(self, account: Account) -> Account:
        """
        Store a new account with its address and email index entries.

        Raises:
            Conflict: id, address or email already taken; nothing is written
        """
        email = normalize_email(account.email)
        ops = [
            WriteOp(self.accounts_table, account.id,
                    self._account_to_dict(account), must_not_exist=True),
            WriteOp(self.address_index_table, account.address,
                    {"account_id": account.id, "retired": False}, must_not_exist=True),
            WriteOp(self.email_index_table, email,
                    {"account_id": account.id}, must_not_exist=True),
        ]
        try:
            self.storage.save_batch(ops)
        except RecordExistsError as e:
            field = {
                self.accounts_table: "id",
                self.address_index_table: "address",
                self.email_index_table: "email",
            }.get(e.table, e.table)
            raise Conflict(f"An account with this {field} already exists", details={"field": field})

        self.logger.info(f"Account created: {account.id} ({account.role.value})")
        return account

    @contextmanager
    def locked(self, account_ids: Iterable[str]):
        """Hold the per-account locks for account_ids (sorted, with timeout)"""
        with self.lock_manager.hold(account_ids) as held:
            yield held

    def mutate_balances(
        self,
        deltas: Mapping[str, Union[Money, Decimal]],
        extra_writes: Iterable[WriteOp] = ()
    ) -> Dict[str, Account]:
        """
        Apply every delta as one atomic unit, or none.

        Takes the per-account locks itself; callers already holding them
        should use commit_mutation() instead.
        """
        with self.locked(deltas.keys()):
            snapshots = {account_id: self.get(account_id) for account_id in deltas}
            return self.commit_mutation(snapshots, deltas, extra_writes)

    def commit_mutation(
        self,
        snapshots: Mapping[str, Account],
        deltas: Mapping[str, Union[Money, Decimal]],
        extra_writes: Iterable[WriteOp] = ()
    ) -> Dict[str, Account]:
        """
        Write new balances computed from snapshots read under the caller's locks.

        Every account write is conditional on the snapshot's version, so a
        record changed behind our back (another process) fails the whole batch
        with TryAgain instead of losing an update.

        Raises:
            InsufficientFunds: a delta would drive a balance negative
            TryAgain: a record changed since its snapshot was read
            StorageUnavailable: the store failed; nothing was written
        """
        now = datetime.now(timezone.utc)
        updated: Dict[str, Account] = {}
        ops: List[WriteOp] = []

        for account_id, delta in deltas.items():
            if not isinstance(delta, Money):
                delta = Money(Decimal(str(delta)), self.currency)
            account = snapshots[account_id]
            new_balance = account.balance + delta
            if new_balance.is_negative():
                raise InsufficientFunds(
                    f"Account {account_id} cannot cover {(-delta).to_string()}",
                    details={"account_id": account_id}
                )
            changed = replace(account, balance=new_balance,
                              version=account.version + 1, updated_at=now)
            ops.append(WriteOp(
                self.accounts_table, account_id, self._account_to_dict(changed),
                expected_version=account.version
            ))
            updated[account_id] = changed

        ops.extend(extra_writes)
        self._save_batch(ops)
        return updated

    def delete(self, account_id: str) -> Account:
        """
        Remove the account and its email index entry.

        The address index entry is kept, marked retired, so the address is
        never handed out again.
        """
        with self.locked([account_id]):
            account = self.get(account_id)
            self._save_batch([
                WriteOp(self.accounts_table, account.id, None,
                        expected_version=account.version),
                WriteOp(self.email_index_table, normalize_email(account.email), None),
                WriteOp(self.address_index_table, account.address,
                        {"account_id": account.id, "retired": True}),
            ])

        self.logger.info(f"Account deleted: {account.id}")
        return account

    def _save_batch(self, ops: List[WriteOp]) -> None:
        try:
            self.storage.save_batch(ops)
        except StaleRecordError as e:
            self.logger.warning(f"Concurrent modification of {e.table}/{e.record_id}")
            raise TryAgain(
                "Account changed concurrently, try again",
                details={"record_id": e.record_id}
            )
        except RecordExistsError as e:
            raise Conflict(f"Record {e.record_id} already exists", details={"table": e.table})

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['role'] = account.role.value
        result['balance'] = str(account.balance.amount)
        result['currency'] = account.balance.currency.code
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data.get('currency', self.currency.code)]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            username=data['username'],
            email=data['email'],
            credential_hash=data['credential_hash'],
            role=Role(data['role']),
            country=data['country'],
            address=data['address'],
            balance=Money(Decimal(data['balance']), currency),
            deletion_secret_hash=data.get('deletion_secret_hash'),
            spare_sentence=data.get('spare_sentence', ""),
            version=data.get('version', 1)
        )
