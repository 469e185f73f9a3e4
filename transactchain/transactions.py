"""
Transaction Log Module

Append-only record of completed transfers. Records are written with
insert-only WriteOps and never updated or deleted, so readers need no locking
beyond the store's own per-record atomicity. Records reference accounts by
address only; deleting an account leaves its history intact.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional
import uuid

from .currency import Money, Currency
from .errors import Conflict, NotFound
from .logging_config import get_logger
from .storage import StorageInterface, StorageRecord, WriteOp, RecordExistsError


@dataclass
class Transaction(StorageRecord):
    """
    Completed value transfer between two addresses
    """
    sequence: int
    from_address: str
    from_country: str
    to_address: str
    to_country: str
    amount: Money
    fee: Money
    cross_border: bool
    note: str = ""

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")
        if self.fee.is_negative():
            raise ValueError("Transaction fee cannot be negative")
        if self.amount.currency != self.fee.currency:
            raise ValueError("Transaction fee currency must match amount currency")

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    @property
    def total_debit(self) -> Money:
        """What the sender paid: amount plus fee"""
        return self.amount + self.fee

    def involves(self, address: str) -> bool:
        return address in (self.from_address, self.to_address)

    def to_public_dict(self) -> Dict:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "from_address": self.from_address,
            "from_country": self.from_country,
            "to_address": self.to_address,
            "to_country": self.to_country,
            "amount": str(self.amount.amount),
            "fee": str(self.fee.amount),
            "currency": self.amount.currency.code,
            "cross_border": self.cross_border,
            "note": self.note,
            "timestamp": self.created_at.isoformat(),
        }


def _newest_first(transaction: Transaction):
    return (transaction.created_at, transaction.sequence)


class TransactionQuery:
    """
    Lazy, restartable view over the log.

    Nothing is read until iteration starts; every new iteration re-reads the
    store, so a view taken once keeps reflecting later appends.
    """

    def __init__(self, log: 'TransactionLog', address: Optional[str] = None):
        self._log = log
        self.address = address

    def __iter__(self) -> Iterator[Transaction]:
        if self.address is None:
            records = self._log.storage.load_all(self._log.table_name)
        else:
            seen = {}
            for field in ("from_address", "to_address"):
                for data in self._log.storage.find(self._log.table_name, {field: self.address}):
                    seen[data['id']] = data
            records = list(seen.values())

        transactions = [self._log._transaction_from_dict(data) for data in records]
        transactions.sort(key=_newest_first, reverse=True)
        yield from transactions

    def first(self) -> Optional[Transaction]:
        """Most recent transaction, or None"""
        return next(iter(self), None)


class TransactionLog:
    """
    Append-only transaction storage
    """

    def __init__(self, storage: StorageInterface, currency: Currency = Currency.USD):
        self.storage = storage
        self.currency = currency
        self.table_name = "transactions"
        self.logger = get_logger("transactchain.transactions")

    def new_transaction(
        self,
        from_address: str,
        from_country: str,
        to_address: str,
        to_country: str,
        amount: Money,
        fee: Money,
        note: str = ""
    ) -> Transaction:
        """
        Build a record with a fresh id and timestamp (not yet stored).

        The sequence stays 0 until the record is committed; the store assigns
        it inside the batch that writes the record.
        """
        now = datetime.now(timezone.utc)
        return Transaction(
            id=f"TX-{uuid.uuid4()}",
            created_at=now,
            updated_at=now,
            sequence=0,
            from_address=from_address,
            from_country=from_country,
            to_address=to_address,
            to_country=to_country,
            amount=amount,
            fee=fee,
            cross_border=from_country != to_country,
            note=note or ""
        )

    def stage(self, transaction: Transaction) -> WriteOp:
        """Insert-only write for inclusion in a caller's atomic batch"""
        return WriteOp(
            self.table_name, transaction.id,
            self._transaction_to_dict(transaction),
            must_not_exist=True,
            sequence_key=self.table_name
        )

    @staticmethod
    def committed(transaction: Transaction, op: WriteOp) -> Transaction:
        """The record as stored by a committed staged op"""
        return replace(transaction, sequence=op.data['sequence'])

    def append(self, transaction: Transaction) -> Transaction:
        """
        Persist a single record on its own.

        A record without an id gets one assigned. The returned record carries
        the sequence number the store gave it.

        Raises:
            Conflict: a record with this id already exists
        """
        if not transaction.id:
            transaction = replace(transaction, id=f"TX-{uuid.uuid4()}")
        op = self.stage(transaction)
        try:
            self.storage.save_batch([op])
        except RecordExistsError:
            raise Conflict(f"Transaction {transaction.id} already recorded")
        return self.committed(transaction, op)

    def get(self, transaction_id: str) -> Transaction:
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise NotFound(f"Transaction {transaction_id} not found")
        return self._transaction_from_dict(data)

    def by_participant(self, address: str) -> TransactionQuery:
        """Transactions sent or received by address, newest first"""
        return TransactionQuery(self, address)

    def all(self) -> TransactionQuery:
        """Every transaction, newest first"""
        return TransactionQuery(self)

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def total_fees(self) -> Money:
        """Fee income: the sum of fees over the whole log"""
        total = Money.zero(self.currency)
        for data in self.storage.load_all(self.table_name):
            total = total + Money(Decimal(data['fee']), self.currency)
        return total

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['amount'] = str(transaction.amount.amount)
        result['fee'] = str(transaction.fee.amount)
        result['currency'] = transaction.amount.currency.code
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        currency = Currency[data.get('currency', self.currency.code)]
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            sequence=data['sequence'],
            from_address=data['from_address'],
            from_country=data['from_country'],
            to_address=data['to_address'],
            to_country=data['to_country'],
            amount=Money(Decimal(data['amount']), currency),
            fee=Money(Decimal(data['fee']), currency),
            cross_border=data['cross_border'],
            note=data.get('note', "")
        )
