"""
Investment Service

An investment spends money out of the investments section. It stays
open until an investment return is recorded as income, which closes it
exactly once.
"""

from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import InvalidStateError, NotFoundError
from budget_ledger.ledger.base import LedgerComponent, parse_request
from budget_ledger.ledger.transactions import TransactionLedger
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.income import (
    CreateInvestmentRequest,
    Investment,
    InvestmentPage,
    UpdateInvestmentRequest,
)
from budget_ledger.models.ledger import (
    SectionName,
    Transaction,
    TransactionEntry,
    TransactionType,
    utc_now,
)
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


class InvestmentService(LedgerComponent):
    """Investment records charged against the investments section."""

    def __init__(
        self,
        store: LedgerStore,
        ledger: TransactionLedger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._ledger = ledger

    async def _load(self, scope: LedgerUnitOfWork, investment_id: int) -> Investment:
        investment = await scope.get_investment(investment_id)
        if investment is None:
            raise NotFoundError(f"Investment not found: {investment_id}")
        return investment

    async def create(
        self,
        user_id: UUID,
        request: Union[CreateInvestmentRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Investment:
        """
        Record an investment and charge the investments section.

        Raises:
            InsufficientFundsError: If the investments section cannot cover it
        """
        request = parse_request(CreateInvestmentRequest, request)

        async def work(scope: LedgerUnitOfWork) -> Investment:
            await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.MANUAL,
                    from_section=SectionName.INVESTMENTS,
                    amount=request.amount,
                    description=f"Investment in {request.asset_name}",
                ),
                uow=scope,
            )
            investment = await scope.add_investment(Investment(user_id=user_id, **request.model_dump()))
            self._audit_on_commit(
                scope,
                AuditEventBuilder.investment_created(
                    user_id, investment.id, investment.asset_name, investment.amount
                ),
            )
            return investment

        return await self._run("create_investment", user_id, work, uow)

    async def get(
        self,
        investment_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Investment:
        async def work(scope: LedgerUnitOfWork) -> Investment:
            return await self._load(scope, investment_id)

        return await self._run("get_investment", user_id, work, uow)

    async def update(
        self,
        investment_id: int,
        user_id: UUID,
        request: Union[UpdateInvestmentRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Investment:
        """
        Edit an open investment.

        A changed amount charges (or refunds) only the difference.

        Raises:
            InvalidStateError: If the investment is closed
        """
        request = parse_request(UpdateInvestmentRequest, request)
        changes = request.model_dump(exclude_unset=True)

        async def work(scope: LedgerUnitOfWork) -> Investment:
            investment = await self._load(scope, investment_id)
            if investment.is_closed:
                raise InvalidStateError("Closed investments cannot be updated")

            updated = parse_request(Investment, {**investment.model_dump(), **changes})
            difference = updated.amount - investment.amount
            if difference > 0:
                await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.MANUAL,
                        from_section=SectionName.INVESTMENTS,
                        amount=difference,
                        description=f"Adjusted investment in {updated.asset_name}",
                    ),
                    uow=scope,
                )
            elif difference < 0:
                await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.REFUND,
                        to_section=SectionName.INVESTMENTS,
                        amount=-difference,
                        description=f"Adjusted investment in {updated.asset_name}",
                    ),
                    uow=scope,
                )

            await scope.save_investment(updated)
            return updated

        return await self._run("update_investment", user_id, work, uow)

    async def delete(
        self,
        investment_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Optional[Transaction]:
        """
        Delete an investment.

        Open investments are refunded to the investments section first.
        Closed ones are removed without a refund.

        Returns:
            The refund transaction, or None for a closed investment
        """

        async def work(scope: LedgerUnitOfWork) -> Optional[Transaction]:
            investment = await self._load(scope, investment_id)
            refund = None
            if not investment.is_closed:
                refund = await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.REFUND,
                        to_section=SectionName.INVESTMENTS,
                        amount=investment.amount,
                        description=f"Investment reverted from {investment.asset_name}",
                    ),
                    uow=scope,
                )
            await scope.delete_investment(investment_id)
            self._audit_on_commit(
                scope,
                AuditEventBuilder.investment_deleted(
                    user_id,
                    investment_id,
                    refund.amount if refund else Decimal("0"),
                ),
            )
            return refund

        return await self._run("delete_investment", user_id, work, uow)

    async def close(
        self,
        investment_id: int,
        user_id: UUID,
        total_return: Decimal,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Investment:
        """
        Mark an investment closed with its total return.

        Raises:
            NotFoundError: If the investment does not belong to the user
            InvalidStateError: If it is already closed
        """

        async def work(scope: LedgerUnitOfWork) -> Investment:
            investment = await self._load(scope, investment_id)
            if investment.is_closed:
                raise InvalidStateError(f"Investment {investment_id} is already closed")
            investment = investment.model_copy(update={
                "is_closed": True,
                "total_return": total_return,
                "closed_at": utc_now(),
            })
            await scope.save_investment(investment)
            self._audit_on_commit(
                scope,
                AuditEventBuilder.investment_closed(user_id, investment_id, total_return),
            )
            return investment

        return await self._run("close_investment", user_id, work, uow)

    async def list(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: Optional[int] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> InvestmentPage:
        """Investments, newest first."""
        page, page_size = self._page_window(page, page_size)

        async def work(scope: LedgerUnitOfWork) -> InvestmentPage:
            total = await scope.count_investments()
            items = await scope.list_investments(limit=page_size, offset=(page - 1) * page_size)
            return InvestmentPage(items=items, meta=self._meta(total, page, page_size))

        return await self._run("list_investments", user_id, work, uow)
