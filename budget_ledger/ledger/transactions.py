"""
Transaction Ledger

DESIGN DECISION: A transaction and the balance changes it implies are
written together or not at all.

For each recorded entry, in one unit of work:
1. The section deltas are applied (income and null sides carry no balance)
2. The profile's savings mirror moves with every entry touching savings
3. The immutable transaction row is appended

After a transaction is recorded only its description can change.
"""

from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import NotFoundError, ValidationError
from budget_ledger.ledger.base import LedgerComponent, parse_request, validate_description
from budget_ledger.ledger.sections import SectionBalanceManager
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.ledger import (
    Section,
    SectionAdjustment,
    SectionName,
    Transaction,
    TransactionEntry,
    TransactionPage,
    TransactionType,
)
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


logger = structlog.get_logger(__name__)

ALL_TYPES = "all"


def parse_type_filter(type_filter: Union[TransactionType, str, None]) -> Optional[TransactionType]:
    """Accept a transaction type, "all" or nothing."""
    if type_filter is None or type_filter == ALL_TYPES:
        return None
    try:
        return TransactionType(type_filter)
    except ValueError:
        valid = ", ".join(t.value for t in TransactionType)
        raise ValidationError(
            f"Invalid transaction type filter '{type_filter}'. Use one of: {ALL_TYPES}, {valid}",
            field="type",
        ) from None


class TransactionLedger(LedgerComponent):
    """Appends transactions and keeps section balances in step with them."""

    def __init__(
        self,
        store: LedgerStore,
        sections: SectionBalanceManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._sections = sections

    @property
    def sections(self) -> SectionBalanceManager:
        return self._sections

    async def _sync_savings_mirror(self, scope: LedgerUnitOfWork, change: Decimal) -> None:
        profile = await scope.get_profile()
        if profile is None:
            raise NotFoundError(f"Profile not found for user {scope.user_id}")

        balance = profile.savings_balance + change
        if balance < 0:
            # The mirror is tracked outside the ledger and may lag behind it
            logger.warning(
                "savings_mirror_clamped",
                user_id=str(scope.user_id),
                mirror=str(profile.savings_balance),
                change=str(change),
            )
            balance = Decimal("0")
        await scope.save_profile(profile.model_copy(update={"savings_balance": balance}))

    async def record(
        self,
        user_id: UUID,
        entry: Union[TransactionEntry, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        """
        Record a money movement and apply its balance changes.

        Args:
            user_id: Owner of the transaction
            entry: Type, sides, amount and description
            uow: Caller's unit of work, if this is part of a larger operation

        Returns:
            The persisted transaction

        Raises:
            ValidationError: Bad amount, type, section or side combination
            NotFoundError: The user has no Section row (or profile, for savings)
            InsufficientFundsError: The from section cannot cover the amount
        """
        entry = parse_request(TransactionEntry, entry)
        description = validate_description(entry.description)

        async def work(scope: LedgerUnitOfWork) -> Transaction:
            await self._sections.apply_delta(user_id, entry.section_deltas(), uow=scope)
            if entry.touches_savings:
                await self._sync_savings_mirror(scope, entry.savings_change)

            transaction = await scope.add_transaction(
                Transaction.from_entry(user_id, entry).model_copy(
                    update={"description": description}
                )
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.transaction_recorded(
                    user_id=user_id,
                    transaction_id=transaction.id,
                    transaction_type=transaction.type.value,
                    from_section=transaction.from_section.value if transaction.from_section else None,
                    to_section=transaction.to_section.value if transaction.to_section else None,
                    amount=transaction.amount,
                ),
            )
            return transaction

        return await self._run("record_transaction", user_id, work, uow)

    async def get(
        self,
        transaction_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        async def work(scope: LedgerUnitOfWork) -> Transaction:
            transaction = await scope.get_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            return transaction

        return await self._run("get_transaction", user_id, work, uow)

    async def update_description(
        self,
        transaction_id: int,
        user_id: UUID,
        description: str,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        """
        Replace a transaction's description. Amounts and sides never change.

        Raises:
            NotFoundError: If the transaction does not belong to the user
        """
        description = validate_description(description)

        async def work(scope: LedgerUnitOfWork) -> Transaction:
            transaction = await scope.update_transaction_description(transaction_id, description)
            if transaction is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            self._audit_on_commit(
                scope,
                AuditEventBuilder.transaction_description_updated(user_id, transaction_id),
            )
            return transaction

        return await self._run("update_transaction_description", user_id, work, uow)

    async def list(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: Optional[int] = None,
        type_filter: Union[TransactionType, str, None] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> TransactionPage:
        """
        One page of the user's transactions, newest first.

        `type_filter` accepts a transaction type, "all" or None.
        """
        page, page_size = self._page_window(page, page_size)
        selected_type = parse_type_filter(type_filter)

        async def work(scope: LedgerUnitOfWork) -> TransactionPage:
            total = await scope.count_transactions(selected_type)
            items = await scope.list_transactions(
                type_filter=selected_type,
                limit=page_size,
                offset=(page - 1) * page_size,
            )
            return TransactionPage(items=items, meta=self._meta(total, page, page_size))

        return await self._run("list_transactions", user_id, work, uow)

    async def transfer(
        self,
        user_id: UUID,
        from_section: Union[SectionName, str],
        to_section: Union[SectionName, str],
        amount: Decimal,
        description: str = "",
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Transaction:
        """Move money directly between two balance sections."""
        entry = parse_request(TransactionEntry, {
            "type": TransactionType.MANUAL,
            "from_section": from_section,
            "to_section": to_section,
            "amount": amount,
            "description": description,
        })
        for side in (entry.from_section, entry.to_section):
            if side is None or not side.has_balance:
                raise ValidationError(
                    "Transfers must be between savings, expenses and investments",
                    field="section",
                )
        if not entry.description:
            entry = entry.model_copy(update={
                "description": f"Transfer from {entry.from_section.value} to {entry.to_section.value}",
            })
        return await self.record(user_id, entry, uow=uow)

    async def adjust_balances(
        self,
        user_id: UUID,
        targets: Union[SectionAdjustment, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> Section:
        """
        Set section balances to the given targets.

        Each changed section gets its own MANUAL transaction, so balances
        still equal the sum of their transactions afterwards.
        """
        adjustment = parse_request(SectionAdjustment, targets)
        description = validate_description(adjustment.description) or "Manual adjustment"

        async def work(scope: LedgerUnitOfWork) -> Section:
            section = await self._sections.snapshot(user_id, uow=scope)
            changes: dict[str, str] = {}
            for name, target in adjustment.targets().items():
                difference = target - section.balance(name)
                if difference == 0:
                    continue
                entry = TransactionEntry(
                    type=TransactionType.MANUAL,
                    from_section=None if difference > 0 else name,
                    to_section=name if difference > 0 else None,
                    amount=abs(difference),
                    description=description,
                )
                await self.record(user_id, entry, uow=scope)
                changes[name.value] = str(target)

            if changes:
                self._audit_on_commit(scope, AuditEventBuilder.sections_adjusted(user_id, changes))
            return await self._sections.snapshot(user_id, uow=scope)

        return await self._run("adjust_section_balances", user_id, work, uow)
