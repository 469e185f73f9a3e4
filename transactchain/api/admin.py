"""
Privileged views: admin audit screens and the bank's customer list
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from .deps import get_caller, get_ledger_system
from .schemas import AccountModel, TransactionModel
from ..accounts import Role
from ..system import LedgerSystem
from ..views import CallerContext


router = APIRouter()


@router.get("/admin/transactions", response_model=List[TransactionModel])
def all_transactions(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Every transaction, newest first"""
    return [TransactionModel.from_transaction(t) for t in system.views.all_transactions(caller)]


@router.get("/admin/accounts", response_model=List[AccountModel])
def all_accounts(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Every account, newest first"""
    return [AccountModel.from_account(a) for a in system.views.all_accounts(caller)]


@router.get("/admin/ledger/summary")
def ledger_summary(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
) -> Dict[str, Any]:
    """Balance totals, fee income and audit chain status"""
    system.views.require_role(caller, Role.ADMIN)
    summary: Dict[str, Any] = {
        "accounts": system.account_store.count(),
        "transactions": system.transaction_log.count(),
        "total_balance": str(system.account_store.total_balance().amount),
        "fee_income": str(system.transaction_log.total_fees().amount),
    }
    if system.audit_trail:
        integrity = system.audit_trail.verify_integrity()
        summary["audit"] = {"valid": integrity["valid"], "events": integrity["total_events"]}
    return summary


@router.get("/bank/accounts", response_model=List[AccountModel])
def customer_accounts(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Bank view of all customer accounts (read-only)"""
    return [AccountModel.from_account(a) for a in system.views.customer_accounts(caller)]
