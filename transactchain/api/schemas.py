"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field

from ..accounts import Account
from ..transactions import Transaction


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    role: str = Field(..., description="customer, bank or admin")
    country: str
    delete_secret: Optional[str] = Field(None, description="Secret required to delete the account later")
    spare_sentence: Optional[str] = Field(None, description="Free text stored with the account")


class TransferRequest(BaseModel):
    to_address: str
    amount: Union[str, int, float] = Field(..., description="Decimal amount, preferably as a string")
    note: Optional[str] = None


class DeleteAccountRequest(BaseModel):
    delete_secret: Optional[str] = None


class AccountModel(BaseModel):
    id: str
    username: str
    email: str
    role: str
    country: str
    address: str
    balance: str
    currency: str
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(**account.to_public_dict())


class RecipientModel(BaseModel):
    username: str
    address: str
    country: str

    @classmethod
    def from_account(cls, account: Account) -> 'RecipientModel':
        return cls(username=account.username, address=account.address, country=account.country)


class TransactionModel(BaseModel):
    id: str
    sequence: int
    from_address: str
    from_country: str
    to_address: str
    to_country: str
    amount: str
    fee: str
    currency: str
    cross_border: bool
    note: str
    timestamp: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(**transaction.to_public_dict())


class DashboardModel(BaseModel):
    account: AccountModel
    transactions: List[TransactionModel]
