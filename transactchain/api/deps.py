"""
Request dependencies: the ledger system and the calling account
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..system import LedgerSystem
from ..views import CallerContext


# Global ledger system instance, created on first request
ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global ledger_system
    if ledger_system is None:
        ledger_system = LedgerSystem()
    return ledger_system


def get_caller(
    x_account_id: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None)
) -> CallerContext:
    """
    Caller identity as asserted by the upstream session layer.

    This service does no authentication of its own; it must sit behind a
    layer that sets X-Account-Id only for authenticated sessions.
    """
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header required"
        )
    return CallerContext(account_id=x_account_id, request_id=x_request_id)
