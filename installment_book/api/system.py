"""
Wiring of storage, ledger and managers for the API
"""

from typing import Optional

from ..storage import InMemoryStorage, SQLiteStorage
from ..audit import AuditTrail
from ..ledger import PaymentLedger
from ..loans import LoanManager
from ..collection_book import CollectionBook
from ..config import get_config


class CollectionSystem:
    """Installment book back office with all components initialized"""

    def __init__(self, use_sqlite: bool = True, database_path: Optional[str] = None):
        config = get_config()

        # Initialize storage
        if use_sqlite:
            self.storage = SQLiteStorage(database_path or config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage) if config.enable_audit_logging else None
        self.ledger = PaymentLedger(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.ledger, self.audit_trail,
            slots_per_file=config.slots_per_file
        )
        self.collection_book = CollectionBook(self.loan_manager, self.ledger)

    @classmethod
    def from_config(cls) -> 'CollectionSystem':
        return cls(use_sqlite=get_config().storage_backend == "sqlite")

    def close(self) -> None:
        self.storage.close()


# Global system instance, created on first use
collection_system: Optional[CollectionSystem] = None


# Dependency to get the collection system
def get_collection_system() -> CollectionSystem:
    global collection_system
    if collection_system is None:
        collection_system = CollectionSystem.from_config()
    return collection_system
