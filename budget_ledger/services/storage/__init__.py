"""
Storage Services Package

Provides the abstract ledger store and its implementations:
an in-memory store for tests and embedding, and a SQLAlchemy store
for durable deployments.
"""

from budget_ledger.errors import (
    ConnectionError,
    RetryableStorageError,
    StorageError,
    StorageTimeoutError,
    WriteConflictError,
)
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStore,
    LedgerUnitOfWork,
)
from budget_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from budget_ledger.services.storage.sql import (
    SqlAuditStorage,
    SqlLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStore",
    "LedgerUnitOfWork",
    # Exceptions
    "ConnectionError",
    "RetryableStorageError",
    "StorageError",
    "StorageTimeoutError",
    "WriteConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # SQLAlchemy implementation
    "SqlAuditStorage",
    "SqlLedgerStore",
]
