"""
Ledger system wiring: builds storage and every core component from config.
"""

from decimal import Decimal
from typing import Optional

from .accounts import AccountStore
from .audit import AuditTrail
from .config import TransactChainConfig, get_config
from .currency import Currency
from .fees import FeeSchedule
from .lifecycle import AccountLifecycle
from .locks import KeyedLockManager
from .logging_config import get_logger
from .security import SecretHasher
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .transactions import TransactionLog
from .transfers import TransferEngine
from .views import LedgerViews


def create_storage(config: TransactChainConfig) -> StorageInterface:
    """Storage backend named by config.storage_backend"""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(config.sqlite_path)
    raise ValueError(f"Unknown storage backend '{config.storage_backend}'")


class LedgerSystem:
    """Ledger core with all components initialized"""

    def __init__(
        self,
        config: Optional[TransactChainConfig] = None,
        storage: Optional[StorageInterface] = None,
        hasher: Optional[SecretHasher] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        self.logger = get_logger("transactchain.system")

        currency = Currency[self.config.currency.upper()]

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.lock_manager = KeyedLockManager(timeout=self.config.lock_timeout_seconds)
        self.fee_schedule = FeeSchedule(
            rates=self.config.fee_rates,
            default_rate=Decimal(self.config.default_fee_rate)
        )
        self.account_store = AccountStore(self.storage, currency, self.lock_manager)
        self.transaction_log = TransactionLog(self.storage, currency)
        self.transfer_engine = TransferEngine(
            self.account_store, self.transaction_log,
            self.fee_schedule, self.audit_trail
        )
        self.lifecycle = AccountLifecycle(
            self.account_store, self.audit_trail,
            hasher=hasher,
            starting_balance=Decimal(self.config.starting_balance)
        )
        self.views = LedgerViews(self.account_store, self.transaction_log)

        self.logger.info(
            f"Ledger ready: backend={self.config.storage_backend} currency={currency.code}"
        )

    def close(self) -> None:
        self.storage.close()
