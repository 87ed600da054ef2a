"""
Ledger Error Hierarchy

Every error the ledger raises derives from LedgerError so callers
can map the whole family to responses in one place.

    LedgerError
    ├── ValidationError          malformed input, never retried
    ├── NotFoundError            record missing for this user
    ├── InvalidStateError        illegal lifecycle transition
    │   └── InsufficientFundsError
    └── StorageError             store failure
        └── RetryableStorageError
            ├── StorageTimeoutError
            ├── ConnectionError
            └── WriteConflictError
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Input failed validation. Nothing was changed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(LedgerError):
    """Entity not found for the requesting user."""
    pass


class InvalidStateError(LedgerError):
    """The requested transition is not allowed from the entity's current state."""
    pass


class InsufficientFundsError(InvalidStateError):
    """
    A section, the income pool or a goal cannot cover a withdrawal.

    Carries the numbers so callers can explain the shortfall.
    """

    def __init__(self, source: str, available: Decimal, requested: Decimal):
        self.source = source
        self.available = available
        self.requested = requested
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient funds in {source}: available {available}, "
            f"requested {requested}"
        )


class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class RetryableStorageError(StorageError):
    """Transient store failure. Top-level operations retry these."""
    pass


class StorageTimeoutError(RetryableStorageError):
    """Timed out waiting for a unit of work."""
    pass


class ConnectionError(RetryableStorageError):
    """Could not connect to storage backend."""
    pass


class WriteConflictError(RetryableStorageError):
    """Another writer created the same row first. A fresh attempt will see it."""
    pass
