"""
Read-Side Views

Role-scoped queries for dashboards and audit screens. Every call names its
caller explicitly; the caller's role is always read from the store, never
taken from the request.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .accounts import Account, AccountStore, Role
from .errors import RoleForbidden
from .transactions import Transaction, TransactionLog


@dataclass(frozen=True)
class CallerContext:
    """Identity of the party on whose behalf a core call runs"""
    account_id: str
    request_id: Optional[str] = None


@dataclass
class Dashboard:
    account: Account
    transactions: List[Transaction] = field(default_factory=list)


class LedgerViews:
    """Read-only queries scoped by the caller's role"""

    def __init__(self, account_store: AccountStore, transaction_log: TransactionLog):
        self.accounts = account_store
        self.log = transaction_log

    def _caller(self, caller: CallerContext) -> Account:
        return self.accounts.get(caller.account_id)

    def require_role(self, caller: CallerContext, role: Role) -> Account:
        account = self._caller(caller)
        if account.role != role:
            raise RoleForbidden(f"Only {role.value} accounts may view this")
        return account

    def dashboard(self, caller: CallerContext) -> Dashboard:
        """Caller's fresh account record and own history, newest first"""
        account = self._caller(caller)
        return Dashboard(account=account,
                         transactions=list(self.log.by_participant(account.address)))

    def recipients(self, caller: CallerContext) -> List[Account]:
        """Accounts the caller may send to: everyone but itself and admins"""
        account = self._caller(caller)
        if account.is_admin:
            raise RoleForbidden("Admin accounts cannot send transfers")
        candidates = [a for a in self.accounts.list_accounts()
                      if a.id != account.id and a.can_transfer]
        candidates.sort(key=lambda a: (a.username.lower(), a.created_at))
        return candidates

    def customer_accounts(self, caller: CallerContext) -> List[Account]:
        """Bank view: every customer account"""
        self.require_role(caller, Role.BANK)
        return self.accounts.list_accounts(role=Role.CUSTOMER)

    def all_accounts(self, caller: CallerContext) -> List[Account]:
        """Admin view: every account, newest first"""
        self.require_role(caller, Role.ADMIN)
        accounts = self.accounts.list_accounts()
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    def all_transactions(self, caller: CallerContext) -> List[Transaction]:
        """Admin audit view: the whole log, newest first"""
        self.require_role(caller, Role.ADMIN)
        return list(self.log.all())

    def visible_accounts(self, caller: CallerContext) -> List[Account]:
        account = self._caller(caller)
        if account.role == Role.ADMIN:
            return self.accounts.list_accounts()
        if account.role == Role.BANK:
            return self.accounts.list_accounts(role=Role.CUSTOMER)
        return [account]

    def visible_transactions(self, caller: CallerContext) -> List[Transaction]:
        account = self._caller(caller)
        if account.role == Role.ADMIN:
            return list(self.log.all())
        return list(self.log.by_participant(account.address))
