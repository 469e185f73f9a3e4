"""
Account Lifecycle Module

Registration, credential verification and secret-gated deletion. Deletion
removes the account record only; the transaction log is never touched.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Optional
import re
import uuid

from .accounts import Account, AccountStore, Role, generate_address, normalize_email
from .audit import AuditTrail, AuditEventType
from .currency import Money
from .errors import Conflict, InvalidInput, NotFound, SecretMismatch, StorageUnavailable, TryAgain
from .logging_config import get_logger, log_action
from .security import SecretHasher


DEFAULT_STARTING_BALANCE = Decimal('10000.00')

# Fresh addresses tried before giving up on a collision
MAX_ADDRESS_ATTEMPTS = 3

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class AccountLifecycle:
    """
    Creates and retires accounts
    """

    def __init__(
        self,
        account_store: AccountStore,
        audit_trail: Optional[AuditTrail] = None,
        hasher: Optional[SecretHasher] = None,
        starting_balance: Decimal = DEFAULT_STARTING_BALANCE
    ):
        self.accounts = account_store
        self.audit_trail = audit_trail
        self.hasher = hasher or SecretHasher()
        self.starting_balance = Decimal(str(starting_balance))
        self.logger = get_logger("transactchain.lifecycle")

    def register(
        self,
        username: str,
        email: str,
        credential: str,
        role: str,
        country: str,
        deletion_secret: Optional[str] = None,
        spare_sentence: Optional[str] = None
    ) -> Account:
        """
        Register a new account.

        Admins start with a zero balance; every other role gets the
        configured starting balance.

        Raises:
            InvalidInput: a required field is missing or the role is unknown
            Conflict: the email is already registered
        """
        fields = {
            "username": username, "email": email, "credential": credential,
            "role": role, "country": country
        }
        missing = [name for name, value in fields.items()
                   if not isinstance(value, str) or not value.strip()]
        if missing:
            raise InvalidInput("All fields required.", details={"missing": missing})

        if not EMAIL_PATTERN.match(email.strip()):
            raise InvalidInput("Invalid email format")

        try:
            account_role = Role(role.strip().lower())
        except ValueError:
            raise InvalidInput(f"Unknown role '{role}'",
                               details={"allowed": [r.value for r in Role]})

        if account_role == Role.ADMIN:
            balance = Money.zero(self.accounts.currency)
        else:
            balance = Money(self.starting_balance, self.accounts.currency)

        credential_hash = self.hasher.hash(credential)
        secret_hash = self.hasher.hash(deletion_secret) if deletion_secret else None

        for attempt in range(MAX_ADDRESS_ATTEMPTS):
            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                username=username.strip(),
                email=normalize_email(email),
                credential_hash=credential_hash,
                role=account_role,
                country=country.strip(),
                address=generate_address(),
                balance=balance,
                deletion_secret_hash=secret_hash,
                spare_sentence=spare_sentence or ""
            )
            try:
                self.accounts.create(account)
                break
            except Conflict as e:
                if e.details.get("field") == "address" and attempt < MAX_ADDRESS_ATTEMPTS - 1:
                    continue
                if e.details.get("field") == "email":
                    error = Conflict("Email already registered.", details=e.details)
                else:
                    error = e
                log_action(
                    self.logger, "warning", f"Registration rejected: {error.message}",
                    action="register", resource=f"email:{account.email}",
                    outcome=error.kind.value
                )
                raise error

        log_action(
            self.logger, "info", "Account registered",
            account_id=account.id, action="register",
            resource=f"account:{account.id}", outcome="ok",
            extra={"role": account.role.value, "country": account.country,
                   "address": account.address}
        )
        self._audit(
            AuditEventType.ACCOUNT_CREATED, account.id,
            {"role": account.role.value, "country": account.country,
             "address": account.address,
             "starting_balance": account.balance.amount}
        )
        return account

    def verify_credential(self, email: str, credential: str) -> Optional[Account]:
        """
        Account for email if credential matches, else None.

        Used by the external login layer; session handling is not done here.
        """
        if not email or not credential:
            return None
        try:
            account = self.accounts.get_by_email(email)
        except NotFound:
            return None
        if self.hasher.verify(credential, account.credential_hash):
            return account
        return None

    def delete_account(self, account_id: str, supplied_secret: Optional[str]) -> None:
        """
        Delete an account if supplied_secret matches the one set at registration.

        Raises:
            NotFound: no such account
            SecretMismatch: no secret was set, or it does not match
        """
        account = self.accounts.get(account_id)

        if not self.hasher.verify(supplied_secret, account.deletion_secret_hash):
            log_action(
                self.logger, "warning", "Account deletion rejected: secret mismatch",
                account_id=account_id, action="delete_account",
                resource=f"account:{account_id}", outcome="secret_mismatch"
            )
            self._audit(
                AuditEventType.ACCOUNT_DELETION_REJECTED, account_id,
                {"secret_set": account.has_deletion_secret}
            )
            raise SecretMismatch("Secret does not match. Account NOT deleted.")

        deleted = self.accounts.delete(account_id)

        log_action(
            self.logger, "info", "Account deleted",
            account_id=account_id, action="delete_account",
            resource=f"account:{account_id}", outcome="ok",
            extra={"address": deleted.address, "final_balance": str(deleted.balance.amount)}
        )
        self._audit(
            AuditEventType.ACCOUNT_DELETED, account_id,
            {"address": deleted.address, "final_balance": deleted.balance.amount}
        )

    def _audit(self, event_type: AuditEventType, account_id: str, metadata: dict) -> None:
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="account",
                entity_id=account_id,
                metadata=metadata,
                actor_id=account_id
            )
        except (StorageUnavailable, TryAgain) as e:
            self.logger.error(f"Audit write failed for {event_type.value}: {e}")
