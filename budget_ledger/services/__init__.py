"""Services package."""

from budget_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStore,
    LedgerUnitOfWork,
    SqlAuditStorage,
    SqlLedgerStore,
)

__all__ = [
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStore",
    "LedgerUnitOfWork",
    "SqlAuditStorage",
    "SqlLedgerStore",
]
