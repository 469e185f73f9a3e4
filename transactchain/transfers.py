"""
Transfer Engine Module

Executes a single transfer: validates the request, prices the cross-border
fee, and then debits the sender, credits the receiver and appends the
transaction record as one atomic batch. A failure at any point leaves no
partial effect; nothing is retried here because resubmitting a transfer is
not idempotent.
"""

from decimal import Decimal
from typing import Optional, Union

from .accounts import AccountStore
from .audit import AuditTrail, AuditEventType
from .currency import parse_amount
from .errors import (
    LedgerError, InvalidInput, SelfTransfer, RoleForbidden,
    InsufficientFunds, InsufficientFundsForFee, StorageUnavailable, TryAgain
)
from .fees import FeeSchedule
from .logging_config import get_logger, log_action
from .transactions import Transaction, TransactionLog


class TransferEngine:
    """
    Orchestrates transfers between accounts
    """

    def __init__(
        self,
        account_store: AccountStore,
        transaction_log: TransactionLog,
        fee_schedule: Optional[FeeSchedule] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.accounts = account_store
        self.log = transaction_log
        self.fees = fee_schedule or FeeSchedule()
        self.audit_trail = audit_trail
        self.currency = account_store.currency
        self.logger = get_logger("transactchain.transfers")

    def execute(
        self,
        sender_id: str,
        receiver_address: str,
        amount: Union[str, int, Decimal],
        note: Optional[str] = ""
    ) -> Transaction:
        """
        Move amount from sender to the account at receiver_address.

        Checks run in this order and the first failure wins: amount, receiver
        address format, sender and receiver existence, self-transfer, admin
        participation, balance against amount, balance against amount + fee.

        Args:
            sender_id: Caller's account id (supplied by the session layer)
            receiver_address: Public address of the receiving account
            amount: Positive amount with at most 2 decimal places
            note: Free-text note stored on the record

        Returns:
            The persisted Transaction

        Raises:
            InvalidInput, NotFound, SelfTransfer, RoleForbidden,
            InsufficientFunds, InsufficientFundsForFee: request rejected
            TryAgain: an account was busy or changed concurrently
            StorageUnavailable: the store failed; nothing was written
        """
        try:
            transaction = self._execute(sender_id, receiver_address, amount, note)
        except LedgerError as e:
            level = "error" if isinstance(e, StorageUnavailable) else "warning"
            log_action(
                self.logger, level, f"Transfer rejected: {e.message}",
                account_id=sender_id, action="transfer",
                resource=f"address:{receiver_address}", outcome=e.kind.value
            )
            self._audit(
                AuditEventType.TRANSFER_REJECTED, "account", str(sender_id),
                {"receiver_address": receiver_address, "amount": str(amount),
                 "reason": e.kind.value},
                actor_id=sender_id
            )
            raise

        log_action(
            self.logger, "info", "Transfer completed",
            account_id=sender_id, action="transfer",
            resource=f"transaction:{transaction.id}", outcome="ok",
            extra={
                "from_address": transaction.from_address,
                "to_address": transaction.to_address,
                "amount": transaction.amount.to_string(),
                "fee": transaction.fee.to_string(),
                "cross_border": transaction.cross_border
            }
        )
        self._audit(
            AuditEventType.TRANSFER_COMPLETED, "transaction", transaction.id,
            {"from_address": transaction.from_address,
             "to_address": transaction.to_address,
             "amount": transaction.amount.amount,
             "fee": transaction.fee.amount,
             "cross_border": transaction.cross_border},
            actor_id=sender_id
        )
        return transaction

    def _execute(self, sender_id, receiver_address, amount, note) -> Transaction:
        # Input checks touch no storage
        amount = parse_amount(amount, self.currency)
        if not isinstance(receiver_address, str) or not receiver_address.strip():
            raise InvalidInput("Recipient address is required")
        receiver_address = receiver_address.strip()
        if not sender_id:
            raise InvalidInput("Sender is required")
        note = "" if note is None else str(note)

        sender = self.accounts.get(sender_id)
        receiver = self.accounts.get_by_address(receiver_address)

        if receiver.id == sender.id:
            raise SelfTransfer("Cannot transfer to your own account")
        if not sender.can_transfer:
            raise RoleForbidden("Admin accounts cannot send transfers")
        if not receiver.can_transfer:
            raise RoleForbidden("Admin accounts cannot receive transfers")

        with self.accounts.locked([sender.id, receiver.id]):
            # Re-read under the locks; the earlier reads may be stale
            sender = self.accounts.get(sender.id)
            receiver = self.accounts.get(receiver.id)

            if sender.balance < amount:
                raise InsufficientFunds(
                    "Insufficient balance",
                    details={"available": str(sender.balance.amount),
                             "requested": str(amount.amount)}
                )

            fee = self.fees.fee_for(sender.country, receiver.country, amount)
            total_debit = amount + fee
            if sender.balance < total_debit:
                raise InsufficientFundsForFee(
                    "Insufficient balance to cover fee",
                    details={"available": str(sender.balance.amount),
                             "requested": str(amount.amount),
                             "fee": str(fee.amount)}
                )

            transaction = self.log.new_transaction(
                from_address=sender.address,
                from_country=sender.country,
                to_address=receiver.address,
                to_country=receiver.country,
                amount=amount,
                fee=fee,
                note=note
            )
            staged = self.log.stage(transaction)
            self.accounts.commit_mutation(
                {sender.id: sender, receiver.id: receiver},
                {sender.id: -total_debit, receiver.id: amount},
                extra_writes=[staged]
            )

        return self.log.committed(transaction, staged)

    def quote_fee(self, sender_id: str, receiver_address: str, amount) -> dict:
        """Fee a transfer would be charged right now; no locks, no writes"""
        amount = parse_amount(amount, self.currency)
        sender = self.accounts.get(sender_id)
        receiver = self.accounts.get_by_address(receiver_address)
        fee = self.fees.fee_for(sender.country, receiver.country, amount)
        return {
            "amount": amount,
            "fee": fee,
            "total_debit": amount + fee,
            "cross_border": self.fees.is_cross_border(sender.country, receiver.country)
        }

    def _audit(self, event_type, entity_type, entity_id, metadata, actor_id=None) -> None:
        # The transfer outcome is already final; an audit write failure must not change it
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                actor_id=actor_id
            )
        except (StorageUnavailable, TryAgain) as e:
            self.logger.error(f"Audit write failed for {event_type.value}: {e}")
