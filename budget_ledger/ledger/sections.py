"""
Section Balance Manager

Owns the savings, expenses and investments balances of each user.
Nothing else writes a Section row.
"""

from decimal import Decimal
from typing import Mapping, Optional, Union
from uuid import UUID

import structlog

from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from budget_ledger.ledger.base import LedgerComponent, money
from budget_ledger.models.ledger import Section, SectionName, utc_now
from budget_ledger.services.storage import LedgerUnitOfWork


logger = structlog.get_logger(__name__)

SectionKey = Union[SectionName, str]


def _section_name(key: SectionKey) -> SectionName:
    try:
        section = SectionName(key)
    except ValueError:
        raise ValidationError(f"Unknown section: {key}", field="section") from None
    if not section.has_balance:
        raise ValidationError(f"{section.value} does not carry a section balance", field="section")
    return section


class SectionBalanceManager(LedgerComponent):
    """Applies signed deltas to a user's section balances."""

    async def _load(self, uow: LedgerUnitOfWork) -> Section:
        section = await uow.get_section()
        if section is None:
            raise NotFoundError(f"Section not found for user {uow.user_id}")
        return section

    async def create(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Section:
        """Create zero balances for a newly registered user."""

        async def work(scope: LedgerUnitOfWork) -> Section:
            if await scope.get_section() is not None:
                raise InvalidStateError(f"Section already exists for user {user_id}")
            section = Section(user_id=user_id)
            await scope.save_section(section)
            return section

        return await self._run("create_section", user_id, work, uow)

    async def snapshot(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Section:
        """
        Current balances.

        Raises:
            NotFoundError: If the user has no Section row
        """
        return await self._run("section_snapshot", user_id, self._load, uow)

    async def apply_delta(
        self,
        user_id: UUID,
        deltas: Mapping[SectionKey, Decimal],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Section:
        """
        Add each signed delta to its section.

        All deltas apply or none do.

        Raises:
            ValidationError: If a key is not a balance-bearing section or a delta is not money
            NotFoundError: If the user has no Section row
            InsufficientFundsError: If any balance would drop below zero
        """
        parsed = {_section_name(key): money(value, field="deltas") for key, value in deltas.items()}

        async def work(scope: LedgerUnitOfWork) -> Section:
            section = await self._load(scope)
            if not any(parsed.values()):
                return section

            updated = {}
            for name, delta in parsed.items():
                current = section.balance(name)
                new_balance = current + delta
                if new_balance < 0:
                    raise InsufficientFundsError(
                        source=name.value,
                        available=current,
                        requested=-delta,
                    )
                updated[name.value] = new_balance

            section = section.model_copy(update={**updated, "updated_at": utc_now()})
            await scope.save_section(section)
            logger.debug(
                "section_delta_applied",
                user_id=str(user_id),
                deltas={k.value: str(v) for k, v in parsed.items()},
            )
            return section

        return await self._run("apply_section_delta", user_id, work, uow)
