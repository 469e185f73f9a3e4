"""
Ledger Error Module

Typed failures reported by the ledger core. Every error carries an
ErrorKind so outer layers (HTTP adapter, UI) can map it without string
matching, and an is_retryable flag telling the caller whether resubmitting
the same request can succeed.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Kinds of failures surfaced to callers of the core"""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    SELF_TRANSFER = "self_transfer"
    ROLE_FORBIDDEN = "role_forbidden"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_FUNDS_FOR_FEE = "insufficient_funds_for_fee"
    CONFLICT = "conflict"
    SECRET_MISMATCH = "secret_mismatch"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    TRY_AGAIN = "try_again"


class LedgerError(Exception):
    """Base class for all ledger core errors"""

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    is_retryable: bool = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        result = {"error": self.kind.value, "detail": self.message}
        if self.details:
            result["details"] = self.details
        return result


class InvalidInput(LedgerError):
    """Missing, malformed or non-positive input"""
    kind = ErrorKind.INVALID_INPUT


class NotFound(LedgerError):
    """Unknown sender, receiver or account"""
    kind = ErrorKind.NOT_FOUND


class SelfTransfer(LedgerError):
    """Sender and receiver are the same account"""
    kind = ErrorKind.SELF_TRANSFER


class RoleForbidden(LedgerError):
    """Caller's role is not allowed to perform the operation"""
    kind = ErrorKind.ROLE_FORBIDDEN


class InsufficientFunds(LedgerError):
    """Balance does not cover the transfer amount"""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class InsufficientFundsForFee(LedgerError):
    """Balance covers the amount but not amount plus cross-border fee"""
    kind = ErrorKind.INSUFFICIENT_FUNDS_FOR_FEE


class Conflict(LedgerError):
    """Duplicate email, address or identifier"""
    kind = ErrorKind.CONFLICT


class SecretMismatch(LedgerError):
    """Deletion secret wrong or never set"""
    kind = ErrorKind.SECRET_MISMATCH


class StorageUnavailable(LedgerError):
    """Backing store failed; nothing was written"""
    kind = ErrorKind.STORAGE_UNAVAILABLE
    is_retryable = True


class TryAgain(LedgerError):
    """Lock timeout or concurrent modification; nothing was written"""
    kind = ErrorKind.TRY_AGAIN
    is_retryable = True
