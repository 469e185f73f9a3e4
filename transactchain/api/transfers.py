"""
Transfer and transaction history endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, status

from .deps import get_caller, get_ledger_system
from .schemas import TransactionModel, TransferRequest
from ..system import LedgerSystem
from ..views import CallerContext


router = APIRouter()


@router.post("/transfers", status_code=status.HTTP_201_CREATED, response_model=TransactionModel)
def transfer(
    request: TransferRequest,
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Send funds from the caller to another address"""
    transaction = system.transfer_engine.execute(
        sender_id=caller.account_id,
        receiver_address=request.to_address,
        amount=request.amount,
        note=request.note
    )
    return TransactionModel.from_transaction(transaction)


@router.get("/transfers/quote")
def quote(
    to_address: str,
    amount: str,
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Fee the caller would pay for a transfer right now"""
    result = system.transfer_engine.quote_fee(caller.account_id, to_address, amount)
    return {
        "amount": str(result["amount"].amount),
        "fee": str(result["fee"].amount),
        "total_debit": str(result["total_debit"].amount),
        "cross_border": result["cross_border"]
    }


@router.get("/transactions", response_model=List[TransactionModel])
def transactions(
    caller: CallerContext = Depends(get_caller),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transactions visible to the caller: admin all, others their own"""
    return [TransactionModel.from_transaction(t)
            for t in system.views.visible_transactions(caller)]
