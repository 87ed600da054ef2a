"""Expense Service: spending charged against the expenses section."""

from typing import Any, Optional, Union
from uuid import UUID

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import NotFoundError
from budget_ledger.ledger.base import LedgerComponent, parse_request
from budget_ledger.ledger.transactions import TransactionLedger
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.income import (
    CreateExpenseRequest,
    Expense,
    ExpensePage,
    UpdateExpenseRequest,
)
from budget_ledger.models.ledger import (
    SectionName,
    Transaction,
    TransactionEntry,
    TransactionType,
)
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


class ExpenseService(LedgerComponent):

    def __init__(
        self,
        store: LedgerStore,
        ledger: TransactionLedger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._ledger = ledger

    async def _load(self, scope: LedgerUnitOfWork, expense_id: int) -> Expense:
        expense = await scope.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    async def create(
        self,
        user_id: UUID,
        request: Union[CreateExpenseRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Expense:
        request = parse_request(CreateExpenseRequest, request)

        async def work(scope: LedgerUnitOfWork) -> Expense:
            await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.MANUAL,
                    from_section=SectionName.EXPENSES,
                    amount=request.amount,
                    description=f"Expense: {request.description or request.category}",
                ),
                uow=scope,
            )
            expense = await scope.add_expense(Expense(user_id=user_id, **request.model_dump()))
            self._audit_on_commit(
                scope,
                AuditEventBuilder.expense_created(user_id, expense.id, expense.category, expense.amount),
            )
            return expense

        return await self._run("create_expense", user_id, work, uow)

    async def get(
        self,
        expense_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Expense:
        async def work(scope: LedgerUnitOfWork) -> Expense:
            return await self._load(scope, expense_id)

        return await self._run("get_expense", user_id, work, uow)

    async def update(
        self,
        expense_id: int,
        user_id: UUID,
        request: Union[UpdateExpenseRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Expense:
        """Edit an expense. A changed amount charges or refunds the difference."""
        request = parse_request(UpdateExpenseRequest, request)
        changes = request.model_dump(exclude_unset=True)

        async def work(scope: LedgerUnitOfWork) -> Expense:
            expense = await self._load(scope, expense_id)
            updated = parse_request(Expense, {**expense.model_dump(), **changes})
            difference = updated.amount - expense.amount
            description = f"Expense adjustment: {expense.description or expense.category}"
            if difference > 0:
                await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.MANUAL,
                        from_section=SectionName.EXPENSES,
                        amount=difference,
                        description=description,
                    ),
                    uow=scope,
                )
            elif difference < 0:
                await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.REFUND,
                        to_section=SectionName.EXPENSES,
                        amount=-difference,
                        description=description,
                    ),
                    uow=scope,
                )

            await scope.save_expense(updated)
            return updated

        return await self._run("update_expense", user_id, work, uow)

    async def delete(
        self,
        expense_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        """Delete an expense and refund its amount to the expenses section."""

        async def work(scope: LedgerUnitOfWork) -> Transaction:
            expense = await self._load(scope, expense_id)
            refund = await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.REFUND,
                    to_section=SectionName.EXPENSES,
                    amount=expense.amount,
                    description=f"Refund: {expense.description or expense.category}",
                ),
                uow=scope,
            )
            await scope.delete_expense(expense_id)
            self._audit_on_commit(
                scope,
                AuditEventBuilder.expense_deleted(user_id, expense_id, expense.amount),
            )
            return refund

        return await self._run("delete_expense", user_id, work, uow)

    async def list(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: Optional[int] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> ExpensePage:
        page, page_size = self._page_window(page, page_size)

        async def work(scope: LedgerUnitOfWork) -> ExpensePage:
            total = await scope.count_expenses()
            items = await scope.list_expenses(limit=page_size, offset=(page - 1) * page_size)
            return ExpensePage(items=items, meta=self._meta(total, page, page_size))

        return await self._run("list_expenses", user_id, work, uow)
