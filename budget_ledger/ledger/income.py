"""
Income Pool

Undistributed income per user. Income records are append-only history;
the pool row is a running total that can always be rebuilt from them.

DESIGN DECISION: The pool row is created lazily. A missing row is
repaired from the income history inside the caller's unit of work, so
two first reads for the same user can never both create it.
"""

from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import InsufficientFundsError, ValidationError
from budget_ledger.ledger.base import (
    LedgerComponent,
    parse_request,
    positive_amount,
    validate_description,
)
from budget_ledger.ledger.investments import InvestmentService
from budget_ledger.ledger.transactions import TransactionLedger
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.income import (
    Income,
    IncomePage,
    IncomePoolBalance,
    IncomeRequest,
    IncomeType,
)
from budget_ledger.models.ledger import (
    SectionName,
    Transaction,
    TransactionEntry,
    TransactionType,
    utc_now,
)
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


logger = structlog.get_logger(__name__)

INCOME_POOL = "income pool"


class IncomePool(LedgerComponent):
    """Tracks available income and moves it into sections."""

    def __init__(
        self,
        store: LedgerStore,
        ledger: TransactionLedger,
        investments: InvestmentService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._ledger = ledger
        self._investments = investments

    async def _ensure_pool(self, scope: LedgerUnitOfWork) -> IncomePoolBalance:
        pool = await scope.get_income_pool()
        if pool is not None:
            return pool

        amount = await scope.sum_incomes()
        pool = IncomePoolBalance(user_id=scope.user_id, amount=amount)
        await scope.save_income_pool(pool)
        if amount:
            logger.warning(
                "income_pool_repaired",
                user_id=str(scope.user_id),
                amount=str(amount),
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.income_pool_repaired(scope.user_id, amount),
            )
        return pool

    async def _change_pool(self, scope: LedgerUnitOfWork, change: Decimal) -> IncomePoolBalance:
        pool = await self._ensure_pool(scope)
        new_amount = pool.amount + change
        if new_amount < 0:
            raise InsufficientFundsError(
                source=INCOME_POOL,
                available=pool.amount,
                requested=-change,
            )
        pool = pool.model_copy(update={"amount": new_amount, "updated_at": utc_now()})
        await scope.save_income_pool(pool)
        return pool

    async def add(
        self,
        user_id: UUID,
        request: Union[IncomeRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Income:
        """
        Add income to the pool.

        An investment return closes the referenced investment in the same
        unit of work, recording the return as its total.

        Raises:
            ValidationError: Bad amount, or a return without an investment
            NotFoundError: Unknown investment or unregistered user
            InvalidStateError: The investment is already closed
        """
        request = parse_request(IncomeRequest, request)
        description = validate_description(request.description)

        async def work(scope: LedgerUnitOfWork) -> Income:
            text = description
            if request.type == IncomeType.INVESTMENT_RETURN:
                investment = await self._investments.close(
                    request.investment_id,
                    user_id,
                    total_return=request.amount,
                    uow=scope,
                )
                text = text or f"Return from investment: {investment.asset_name}"
            text = text or (
                "Regular income" if request.type == IncomeType.REGULAR else "Investment return"
            )

            await self._ensure_pool(scope)
            income = await scope.add_income(Income(
                user_id=user_id,
                amount=request.amount,
                type=request.type,
                investment_id=request.investment_id,
                description=text,
            ))
            await self._change_pool(scope, request.amount)
            await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.MANUAL,
                    to_section=SectionName.INCOME,
                    amount=request.amount,
                    description=text,
                ),
                uow=scope,
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.income_added(user_id, income.id, income.type.value, income.amount),
            )
            return income

        return await self._run("add_income", user_id, work, uow)

    async def total(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Decimal:
        """Available income, repairing a missing pool row from history."""

        async def work(scope: LedgerUnitOfWork) -> Decimal:
            pool = await self._ensure_pool(scope)
            return pool.amount

        return await self._run("income_total", user_id, work, uow)

    async def deduct(
        self,
        user_id: UUID,
        amount: Decimal,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> IncomePoolBalance:
        """
        Remove `amount` from the pool.

        Raises:
            ValidationError: If amount is not a positive amount with at most 2 decimals
            InsufficientFundsError: If amount exceeds the available income
        """
        amount = positive_amount(amount)

        async def work(scope: LedgerUnitOfWork) -> IncomePoolBalance:
            return await self._change_pool(scope, -amount)

        return await self._run("deduct_income", user_id, work, uow)

    async def transfer_to_section(
        self,
        user_id: UUID,
        to_section: Union[SectionName, str],
        amount: Decimal,
        description: Optional[str] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        """Move available income straight into one section."""
        entry = parse_request(TransactionEntry, {
            "type": TransactionType.MANUAL,
            "from_section": SectionName.INCOME,
            "to_section": to_section,
            "amount": amount,
            "description": description or "",
        })
        if not entry.to_section.has_balance:
            raise ValidationError(
                "Invalid target section. Must be one of: savings, expenses, investments",
                field="to_section",
            )
        if not entry.description:
            entry = entry.model_copy(update={
                "description": f"Direct transfer from income to {entry.to_section.value}",
            })

        async def work(scope: LedgerUnitOfWork) -> Transaction:
            await self._change_pool(scope, -entry.amount)
            return await self._ledger.record(user_id, entry, uow=scope)

        return await self._run("transfer_income_to_section", user_id, work, uow)

    async def history(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: Optional[int] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> IncomePage:
        """Income records, newest first."""
        page, page_size = self._page_window(page, page_size)

        async def work(scope: LedgerUnitOfWork) -> IncomePage:
            total = await scope.count_incomes()
            items = await scope.list_incomes(limit=page_size, offset=(page - 1) * page_size)
            return IncomePage(items=items, meta=self._meta(total, page, page_size))

        return await self._run("income_history", user_id, work, uow)
