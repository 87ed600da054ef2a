"""
Distribution Engine

Splits a user's available income across sections by their allocation
percentages.

Algorithm:
1. bucket = floor(percent * total / 100) for savings, expenses, investments
2. remainder = total - sum(buckets) goes to the leftover section
3. One AUTOMATIC transaction per non-zero bucket, then one LEFTOVER
   transaction for a non-zero remainder, all from income
4. The whole total leaves the income pool

Buckets are floored to whole currency units, never rounded, so the
percentage transfers can never exceed the total.
"""

from decimal import ROUND_FLOOR, Decimal
from typing import Optional
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import NotFoundError, ValidationError
from budget_ledger.ledger.base import LedgerComponent, money
from budget_ledger.ledger.income import IncomePool
from budget_ledger.ledger.transactions import TransactionLedger
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.ledger import (
    BALANCE_SECTIONS,
    DistributionAllocation,
    DistributionPlan,
    Section,
    SectionName,
    TransactionEntry,
    TransactionType,
    UserProfile,
)
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


logger = structlog.get_logger(__name__)


def plan_distribution(profile: UserProfile, total: Decimal) -> DistributionPlan:
    """
    Compute the allocations for distributing `total`.

    Pure: reads nothing and writes nothing.
    """
    total = money(total, field="total")
    if total <= 0:
        raise ValidationError("No income available to distribute", field="total")

    allocations = []
    for section in BALANCE_SECTIONS:
        amount = (profile.percent_for(section) * total / 100).to_integral_value(rounding=ROUND_FLOOR)
        if amount > 0:
            allocations.append(DistributionAllocation(
                section=section,
                amount=amount,
                type=TransactionType.AUTOMATIC,
            ))

    remainder = total - sum((a.amount for a in allocations), Decimal("0"))
    if remainder > 0:
        allocations.append(DistributionAllocation(
            section=profile.leftover_action,
            amount=remainder,
            type=TransactionType.LEFTOVER,
        ))

    return DistributionPlan(
        total=total,
        allocations=allocations,
        remainder=remainder,
        leftover_section=profile.leftover_action,
    )


def _describe(allocation: DistributionAllocation) -> str:
    if allocation.type == TransactionType.LEFTOVER:
        return f"Distribution of remaining amount to {allocation.section.value}"
    return f"Distribution from income to {allocation.section.value}"


class DistributionEngine(LedgerComponent):
    """Moves the whole income pool into sections in one unit of work."""

    def __init__(
        self,
        store: LedgerStore,
        ledger: TransactionLedger,
        income: IncomePool,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._ledger = ledger
        self._income = income

    async def preview(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> DistributionPlan:
        """What `distribute` would do right now, without doing it."""

        async def work(scope: LedgerUnitOfWork) -> DistributionPlan:
            profile = await scope.get_profile()
            if profile is None:
                raise NotFoundError(f"Profile not found for user {user_id}")
            total = await self._income.total(user_id, uow=scope)
            return plan_distribution(profile, total)

        return await self._run("preview_distribution", user_id, work, uow)

    async def distribute(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Section:
        """
        Distribute all available income.

        Returns:
            The section balances after distribution

        Raises:
            NotFoundError: If the user has no profile or sections
            ValidationError: If there is no income to distribute
        """

        async def work(scope: LedgerUnitOfWork) -> Section:
            plan = await self.preview(user_id, uow=scope)

            for allocation in plan.allocations:
                await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=allocation.type,
                        from_section=SectionName.INCOME,
                        to_section=allocation.section,
                        amount=allocation.amount,
                        description=_describe(allocation),
                    ),
                    uow=scope,
                )

            await self._income.deduct(user_id, plan.total, uow=scope)

            logger.info(
                "income_distributed",
                user_id=str(user_id),
                total=str(plan.total),
                remainder=str(plan.remainder),
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.income_distributed(
                    user_id=user_id,
                    total=plan.total,
                    allocations={s.value: str(a) for s, a in plan.section_totals().items()},
                    leftover_section=plan.leftover_section.value,
                    remainder=plan.remainder,
                ),
            )
            return await self._ledger.sections.snapshot(user_id, uow=scope)

        return await self._run("distribute_income", user_id, work, uow)
