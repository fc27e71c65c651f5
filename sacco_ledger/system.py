"""
SACCO system wiring: one storage backend shared by every manager.
"""

from typing import Optional

from .accounts import AccountManager
from .audit import AuditTrail
from .batch_jobs import BatchJobRunner
from .config import SaccoConfig, get_config
from .eligibility import EligibilityEvaluator
from .events import EventDispatcher
from .ledger import LedgerStore
from .loans import LoanManager
from .logging_config import get_logger
from .reminders import ReminderManager
from .savings import SavingsManager
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage
from .transactions import TransactionWorkflow
from .welfare import WelfareManager


logger = get_logger("sacco.system")


class SaccoSystem:
    """Ledger engine with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, config: Optional[SaccoConfig] = None):
        self.config = config or get_config()

        if storage is None:
            if self.config.use_in_memory_storage:
                storage = InMemoryStorage()
            else:
                storage = SQLiteStorage(self.config.sqlite_path)
        self.storage = storage

        self.event_dispatcher = EventDispatcher()
        self.audit_trail = AuditTrail(self.storage)
        self.ledger = LedgerStore(self.storage, max_retries=self.config.max_concurrency_retries)

        self.account_manager = AccountManager(
            self.ledger, self.audit_trail, self.event_dispatcher, self.config
        )
        self.savings_manager = SavingsManager(self.ledger, self.audit_trail)
        self.eligibility = EligibilityEvaluator(self.ledger, self.config)
        self.transactions = TransactionWorkflow(self.ledger, self.audit_trail, self.event_dispatcher)
        self.reminder_manager = ReminderManager(
            self.storage, self.ledger, self.audit_trail, self.event_dispatcher
        )
        self.loan_manager = LoanManager(
            self.ledger, self.transactions, self.eligibility, self.audit_trail,
            event_dispatcher=self.event_dispatcher,
            reminders=self.reminder_manager,
            config=self.config
        )
        self.welfare_manager = WelfareManager(
            self.ledger, self.transactions, self.audit_trail, self.event_dispatcher, self.config
        )
        self.batch_jobs = BatchJobRunner(
            self.ledger, self.welfare_manager, self.audit_trail, self.event_dispatcher, self.config
        )

        logger.info(f"SACCO system initialized with {type(self.storage).__name__}")

    def close(self) -> None:
        self.storage.close()


_system: Optional[SaccoSystem] = None


def get_sacco_system() -> SaccoSystem:
    """Process-wide system instance, created on first use"""
    global _system
    if _system is None:
        _system = SaccoSystem()
    return _system


def set_sacco_system(system: Optional[SaccoSystem]) -> None:
    global _system
    _system = system
