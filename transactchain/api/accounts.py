"""
Account endpoints: registration, dashboard, recipients, deletion
"""

from typing import List

from fastapi import APIRouter, Depends, status

from .deps import get_caller, get_ledger_system
from .schemas import (
    AccountModel, DashboardModel, DeleteAccountRequest, RecipientModel,
    RegisterRequest, TransactionModel
)
from ..system import LedgerSystem
from ..views import CallerContext


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountModel)
def register(
    request: RegisterRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Register a new account"""
    account = system.lifecycle.register(
        username=request.username,
        email=request.email,
        credential=request.password,
        role=request.role,
        country=request.country,
        deletion_secret=request.delete_secret,
        spare_sentence=request.spare_sentence
    )
    return AccountModel.from_account(account)


@router.get("", response_model=List[AccountModel])
def list_accounts(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Accounts visible to the caller: admin all, bank customers, others self"""
    return [AccountModel.from_account(a) for a in system.views.visible_accounts(caller)]


@router.get("/me", response_model=DashboardModel)
def dashboard(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Caller's account and transaction history"""
    view = system.views.dashboard(caller)
    return DashboardModel(
        account=AccountModel.from_account(view.account),
        transactions=[TransactionModel.from_transaction(t) for t in view.transactions]
    )


@router.get("/recipients", response_model=List[RecipientModel])
def recipients(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Accounts the caller can send to"""
    return [RecipientModel.from_account(a) for a in system.views.recipients(caller)]


@router.get("/by-address/{address}", response_model=RecipientModel)
def lookup_address(
    address: str,
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Resolve a public address before sending"""
    return RecipientModel.from_account(system.account_store.get_by_address(address))


@router.delete("/me")
def delete_account(
    request: DeleteAccountRequest,
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete the caller's account; requires the secret set at registration"""
    system.lifecycle.delete_account(caller.account_id, request.delete_secret)
    return {"message": "Your account has been deleted."}
