"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger on an in-memory store for tests and embedding
2. Run the same ledger on a relational database for durability
3. Keep ledger logic decoupled from storage implementation

Every read and write happens inside a unit of work scoped to one user.
A unit of work commits everything it wrote when its block exits
normally and discards everything when the block raises.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Awaitable, Callable, Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.goal import SavingGoal
from budget_ledger.models.income import (
    Expense,
    Income,
    IncomePoolBalance,
    Investment,
)
from budget_ledger.models.ledger import (
    Section,
    Transaction,
    TransactionType,
    UserProfile,
)


AfterCommitHook = Callable[[], Awaitable[None]]


class LedgerUnitOfWork(ABC):
    """
    One all-or-nothing scope over a single user's records.

    Lookups only ever see the scoped user's records. Models returned
    are copies: changes reach the store only through the save methods.
    """

    def __init__(self, user_id: UUID):
        self.user_id = user_id
        self._after_commit: list[AfterCommitHook] = []

    def after_commit(self, hook: AfterCommitHook) -> None:
        """Run `hook` once the scope commits. Dropped on rollback."""
        self._after_commit.append(hook)

    async def run_after_commit_hooks(self) -> None:
        hooks, self._after_commit = self._after_commit, []
        for hook in hooks:
            await hook()

    # -------------------------------------------------------------------------
    # Profile and sections
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_profile(self) -> Optional[UserProfile]:
        """Return the user's allocation profile, or None if not registered."""
        pass

    @abstractmethod
    async def save_profile(self, profile: UserProfile) -> None:
        """Insert or replace the user's profile."""
        pass

    @abstractmethod
    async def get_section(self) -> Optional[Section]:
        """
        Return the user's section balances.

        Relational stores lock the row for the rest of the scope.
        """
        pass

    @abstractmethod
    async def save_section(self, section: Section) -> None:
        """Insert or replace the user's section balances."""
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        """
        Append a transaction.

        Args:
            transaction: The transaction to persist (id is ignored)

        Returns:
            The persisted transaction carrying its assigned id
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction_description(
        self,
        transaction_id: int,
        description: str,
    ) -> Optional[Transaction]:
        """
        Replace a transaction's description. The only permitted mutation.

        Returns:
            The updated transaction, or None if the user has no such transaction
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List transactions newest first, ties broken by id descending.

        Args:
            type_filter: Only return transactions of this type
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
    ) -> int:
        pass

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_income_pool(self) -> Optional[IncomePoolBalance]:
        pass

    @abstractmethod
    async def save_income_pool(self, pool: IncomePoolBalance) -> None:
        """Upsert the user's income pool row."""
        pass

    @abstractmethod
    async def add_income(self, income: Income) -> Income:
        pass

    @abstractmethod
    async def sum_incomes(self) -> Decimal:
        """Sum of every income record the user has."""
        pass

    @abstractmethod
    async def list_incomes(self, limit: int = 100, offset: int = 0) -> list[Income]:
        """List income records newest first."""
        pass

    @abstractmethod
    async def count_incomes(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Saving goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_goal(self, goal: SavingGoal) -> SavingGoal:
        pass

    @abstractmethod
    async def get_goal(self, goal_id: int) -> Optional[SavingGoal]:
        """
        Return one of the user's goals.

        Relational stores lock the row for the rest of the scope.
        """
        pass

    @abstractmethod
    async def save_goal(self, goal: SavingGoal) -> None:
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: int) -> bool:
        pass

    @abstractmethod
    async def list_goals(self, limit: int = 100, offset: int = 0) -> list[SavingGoal]:
        """List goals newest first."""
        pass

    @abstractmethod
    async def count_goals(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Investments
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_investment(self, investment: Investment) -> Investment:
        pass

    @abstractmethod
    async def get_investment(self, investment_id: int) -> Optional[Investment]:
        pass

    @abstractmethod
    async def save_investment(self, investment: Investment) -> None:
        pass

    @abstractmethod
    async def delete_investment(self, investment_id: int) -> bool:
        pass

    @abstractmethod
    async def list_investments(self, limit: int = 100, offset: int = 0) -> list[Investment]:
        """List investments newest first."""
        pass

    @abstractmethod
    async def count_investments(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        pass

    @abstractmethod
    async def save_expense(self, expense: Expense) -> None:
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: int) -> bool:
        pass

    @abstractmethod
    async def list_expenses(self, limit: int = 100, offset: int = 0) -> list[Expense]:
        """List expenses newest first."""
        pass

    @abstractmethod
    async def count_expenses(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Account removal
    # -------------------------------------------------------------------------

    @abstractmethod
    async def delete_user_data(self) -> int:
        """
        Delete every record belonging to the user.

        Returns:
            Number of transactions deleted
        """
        pass


class LedgerStore(ABC):
    """
    Abstract interface for the ledger's durable storage.

    Any storage implementation (in-memory, SQLAlchemy, etc.)
    must implement these methods.
    """

    @abstractmethod
    def unit_of_work(self, user_id: UUID) -> AbstractAsyncContextManager[LedgerUnitOfWork]:
        """
        Open an all-or-nothing scope over one user's records.

        Operations on the same user are serialized. Waiting for the
        scope is bounded by the configured timeout.

        Usage:
            async with store.unit_of_work(user_id) as uow:
                section = await uow.get_section()
                ...

        Raises:
            StorageTimeoutError: If the scope could not be acquired in time
            ConnectionError: If the backend is unreachable
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_user(
        self,
        user_id: UUID,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the events that touched one user's ledger.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'transaction', 'goal')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass

