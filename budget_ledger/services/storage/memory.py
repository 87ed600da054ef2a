"""
In-Memory Ledger Store

Keeps every user's records in process memory. Used by the test suite
and for embedding the ledger without a database.

A unit of work runs against a private deep copy of the user's state and
swaps it in on commit, so a failed block leaves nothing behind.
"""

import asyncio
import itertools
import weakref
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncIterator, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel

from budget_ledger.errors import StorageTimeoutError
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
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStore,
    LedgerUnitOfWork,
)


logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class _UserState:
    """Everything the store holds for one user."""
    profile: Optional[UserProfile] = None
    section: Optional[Section] = None
    income_pool: Optional[IncomePoolBalance] = None
    transactions: dict[int, Transaction] = field(default_factory=dict)
    incomes: dict[int, Income] = field(default_factory=dict)
    goals: dict[int, SavingGoal] = field(default_factory=dict)
    investments: dict[int, Investment] = field(default_factory=dict)
    expenses: dict[int, Expense] = field(default_factory=dict)


def _copy(model: Optional[M]) -> Optional[M]:
    return model.model_copy(deep=True) if model is not None else None


def _newest_first(records: list[M]) -> list[M]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


class _IdSequences:
    """Store-wide id counters, one per record kind."""

    def __init__(self):
        self.transactions = itertools.count(1)
        self.incomes = itertools.count(1)
        self.goals = itertools.count(1)
        self.investments = itertools.count(1)
        self.expenses = itertools.count(1)


class InMemoryUnitOfWork(LedgerUnitOfWork):
    """Unit of work over a private copy of one user's state."""

    def __init__(self, user_id: UUID, state: _UserState, ids: _IdSequences):
        super().__init__(user_id)
        self.state = state
        self._ids = ids

    # Profile and sections

    async def get_profile(self) -> Optional[UserProfile]:
        return _copy(self.state.profile)

    async def save_profile(self, profile: UserProfile) -> None:
        self.state.profile = _copy(profile)

    async def get_section(self) -> Optional[Section]:
        return _copy(self.state.section)

    async def save_section(self, section: Section) -> None:
        self.state.section = _copy(section)

    # Transactions

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        stored = transaction.model_copy(update={"id": next(self._ids.transactions)})
        self.state.transactions[stored.id] = stored
        return _copy(stored)

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return _copy(self.state.transactions.get(transaction_id))

    async def update_transaction_description(
        self,
        transaction_id: int,
        description: str,
    ) -> Optional[Transaction]:
        current = self.state.transactions.get(transaction_id)
        if current is None:
            return None
        updated = current.model_copy(update={"description": description})
        self.state.transactions[transaction_id] = updated
        return _copy(updated)

    def _filtered_transactions(
        self,
        type_filter: Optional[TransactionType],
    ) -> list[Transaction]:
        return [
            t for t in self.state.transactions.values()
            if type_filter is None or t.type == type_filter
        ]

    async def list_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        ordered = _newest_first(self._filtered_transactions(type_filter))
        return [_copy(t) for t in ordered[offset:offset + limit]]

    async def count_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
    ) -> int:
        return len(self._filtered_transactions(type_filter))

    # Income

    async def get_income_pool(self) -> Optional[IncomePoolBalance]:
        return _copy(self.state.income_pool)

    async def save_income_pool(self, pool: IncomePoolBalance) -> None:
        self.state.income_pool = _copy(pool)

    async def add_income(self, income: Income) -> Income:
        stored = income.model_copy(update={"id": next(self._ids.incomes)})
        self.state.incomes[stored.id] = stored
        return _copy(stored)

    async def sum_incomes(self) -> Decimal:
        return sum((i.amount for i in self.state.incomes.values()), Decimal("0"))

    async def list_incomes(self, limit: int = 100, offset: int = 0) -> list[Income]:
        ordered = _newest_first(list(self.state.incomes.values()))
        return [_copy(i) for i in ordered[offset:offset + limit]]

    async def count_incomes(self) -> int:
        return len(self.state.incomes)

    # Saving goals

    async def add_goal(self, goal: SavingGoal) -> SavingGoal:
        stored = goal.model_copy(update={"id": next(self._ids.goals)})
        self.state.goals[stored.id] = stored
        return _copy(stored)

    async def get_goal(self, goal_id: int) -> Optional[SavingGoal]:
        return _copy(self.state.goals.get(goal_id))

    async def save_goal(self, goal: SavingGoal) -> None:
        self.state.goals[goal.id] = _copy(goal)

    async def delete_goal(self, goal_id: int) -> bool:
        return self.state.goals.pop(goal_id, None) is not None

    async def list_goals(self, limit: int = 100, offset: int = 0) -> list[SavingGoal]:
        ordered = _newest_first(list(self.state.goals.values()))
        return [_copy(g) for g in ordered[offset:offset + limit]]

    async def count_goals(self) -> int:
        return len(self.state.goals)

    # Investments

    async def add_investment(self, investment: Investment) -> Investment:
        stored = investment.model_copy(update={"id": next(self._ids.investments)})
        self.state.investments[stored.id] = stored
        return _copy(stored)

    async def get_investment(self, investment_id: int) -> Optional[Investment]:
        return _copy(self.state.investments.get(investment_id))

    async def save_investment(self, investment: Investment) -> None:
        self.state.investments[investment.id] = _copy(investment)

    async def delete_investment(self, investment_id: int) -> bool:
        return self.state.investments.pop(investment_id, None) is not None

    async def list_investments(self, limit: int = 100, offset: int = 0) -> list[Investment]:
        ordered = _newest_first(list(self.state.investments.values()))
        return [_copy(i) for i in ordered[offset:offset + limit]]

    async def count_investments(self) -> int:
        return len(self.state.investments)

    # Expenses

    async def add_expense(self, expense: Expense) -> Expense:
        stored = expense.model_copy(update={"id": next(self._ids.expenses)})
        self.state.expenses[stored.id] = stored
        return _copy(stored)

    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        return _copy(self.state.expenses.get(expense_id))

    async def save_expense(self, expense: Expense) -> None:
        self.state.expenses[expense.id] = _copy(expense)

    async def delete_expense(self, expense_id: int) -> bool:
        return self.state.expenses.pop(expense_id, None) is not None

    async def list_expenses(self, limit: int = 100, offset: int = 0) -> list[Expense]:
        ordered = _newest_first(list(self.state.expenses.values()))
        return [_copy(e) for e in ordered[offset:offset + limit]]

    async def count_expenses(self) -> int:
        return len(self.state.expenses)

    # Account removal

    async def delete_user_data(self) -> int:
        removed = len(self.state.transactions)
        self.state = _UserState()
        return removed


class InMemoryLedgerStore(LedgerStore):
    """
    Process-local ledger store.

    One asyncio.Lock per user serializes units of work for that user.
    Different users never wait on each other. A lock lives only while
    some unit of work holds it or waits on it.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout_seconds = timeout_seconds
        self._users: dict[UUID, _UserState] = {}
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()
        self._ids = _IdSequences()

    def _lock_for(self, user_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def unit_of_work(self, user_id: UUID) -> AsyncIterator[InMemoryUnitOfWork]:
        lock = self._lock_for(user_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("unit_of_work_timeout", user_id=str(user_id))
            raise StorageTimeoutError(
                f"Timed out after {self._timeout_seconds}s waiting for user {user_id}"
            ) from e

        try:
            uow = InMemoryUnitOfWork(
                user_id,
                deepcopy(self._users.get(user_id, _UserState())),
                self._ids,
            )
            yield uow
            self._users[user_id] = uow.state
        finally:
            lock.release()

        await uow.run_after_commit_hooks()


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_user(
        self,
        user_id: UUID,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.user_id == user_id][:limit]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
