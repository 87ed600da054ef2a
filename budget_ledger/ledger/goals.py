"""
Saving Goal Engine

Goal lifecycle:
    OPEN --contribute (reaches target)--> COMPLETED
    OPEN --delete (refund current to savings)--> CANCELLED
    COMPLETED --delete (no refund)--> CANCELLED

CRITICAL: Completion happens exactly once. The goal row is read with a
lock inside the unit of work, so two concurrent contributions can never
both see it open and both pay it out.

Money held by a goal has left the savings section (savings -> null).
On completion the full target is paid into the goal's transfer section
(null -> expenses or investments).
"""

from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from budget_ledger.ledger.base import LedgerComponent, parse_request, positive_amount
from budget_ledger.ledger.transactions import TransactionLedger
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.goal import (
    ContributionResult,
    CreateSavingGoalRequest,
    GoalDeletionResult,
    GoalTransferResult,
    SavingGoal,
    SavingGoalPage,
    UpdateSavingGoalRequest,
    utc_today,
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


def _purpose_suffix(goal: SavingGoal) -> str:
    purpose = f" for {goal.purpose}" if goal.purpose else ""
    item = f" ({goal.target_item})" if goal.target_item else ""
    return f"{purpose}{item}"


def _spend_word(section: SectionName) -> str:
    return "investment" if section == SectionName.INVESTMENTS else "purchase"


class SavingGoalEngine(LedgerComponent):
    """Creates, funds, completes and cancels saving goals."""

    def __init__(
        self,
        store: LedgerStore,
        ledger: TransactionLedger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._ledger = ledger

    async def _load(self, scope: LedgerUnitOfWork, goal_id: int) -> SavingGoal:
        goal = await scope.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Savings goal not found: {goal_id}")
        return goal

    async def create(
        self,
        user_id: UUID,
        request: Union[CreateSavingGoalRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> SavingGoal:
        """
        Open a new goal with nothing saved yet.

        The target date defaults to today.
        """
        request = parse_request(CreateSavingGoalRequest, request)

        async def work(scope: LedgerUnitOfWork) -> SavingGoal:
            fields = request.model_dump()
            fields["target_date"] = request.target_date or utc_today()
            goal = await scope.add_goal(SavingGoal(user_id=user_id, **fields))
            self._audit_on_commit(
                scope,
                AuditEventBuilder.goal_created(user_id, goal.id, goal.name, goal.target_amount),
            )
            return goal

        return await self._run("create_goal", user_id, work, uow)

    async def get(
        self,
        goal_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> SavingGoal:
        async def work(scope: LedgerUnitOfWork) -> SavingGoal:
            return await self._load(scope, goal_id)

        return await self._run("get_goal", user_id, work, uow)

    async def update(
        self,
        goal_id: int,
        user_id: UUID,
        request: Union[UpdateSavingGoalRequest, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> SavingGoal:
        """
        Edit a goal's descriptive fields and target.

        Raises:
            ValidationError: If an open goal's new target is not above what it holds
            InvalidStateError: If the target of a completed goal is changed
        """
        request = parse_request(UpdateSavingGoalRequest, request)
        changes = request.model_dump(exclude_unset=True)

        async def work(scope: LedgerUnitOfWork) -> SavingGoal:
            goal = await self._load(scope, goal_id)

            new_target = changes.get("target_amount")
            if new_target is not None and new_target != goal.target_amount:
                if goal.is_completed:
                    raise InvalidStateError("The target of a completed goal cannot change")
                if new_target <= goal.current_amount:
                    raise ValidationError(
                        f"Target amount must be greater than the {goal.current_amount} already saved",
                        field="target_amount",
                    )

            updated = parse_request(SavingGoal, {**goal.model_dump(), **changes})
            await scope.save_goal(updated)
            if changes:
                self._audit_on_commit(
                    scope,
                    AuditEventBuilder.goal_updated(user_id, goal_id, sorted(changes)),
                )
            return updated

        return await self._run("update_goal", user_id, work, uow)

    async def _complete(
        self,
        scope: LedgerUnitOfWork,
        goal: SavingGoal,
    ) -> tuple[SavingGoal, Transaction]:
        """Mark a fully funded goal completed and pay out its target."""
        goal = goal.model_copy(update={
            "current_amount": goal.target_amount,
            "is_completed": True,
            "completed_at": utc_now(),
        })
        await scope.save_goal(goal)

        section = goal.payout_section
        payout = await self._ledger.record(
            goal.user_id,
            TransactionEntry(
                type=TransactionType.GOAL_TRANSFER,
                to_section=section,
                amount=goal.target_amount,
                description=(
                    f"Completed goal: {goal.name} - {goal.category}{_purpose_suffix(goal)}"
                    f" - Ready for {_spend_word(section)}"
                ),
            ),
            uow=scope,
        )
        return goal, payout

    async def contribute(
        self,
        goal_id: int,
        user_id: UUID,
        amount: Decimal,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> ContributionResult:
        """
        Move savings into a goal.

        Only what the goal still needs leaves savings. Anything beyond that
        is reported as returned and never transacted. Reaching the target
        completes the goal and pays the full target out.

        Raises:
            NotFoundError: Goal or section missing
            InvalidStateError: The goal is already completed
            InsufficientFundsError: Savings are below `amount`
        """
        amount = positive_amount(amount)

        async def work(scope: LedgerUnitOfWork) -> ContributionResult:
            goal = await self._load(scope, goal_id)
            if goal.is_completed:
                raise InvalidStateError(f"Savings goal {goal_id} is already completed")

            section = await self._ledger.sections.snapshot(user_id, uow=scope)
            if section.savings < amount:
                raise InsufficientFundsError(
                    source=SectionName.SAVINGS.value,
                    available=section.savings,
                    requested=amount,
                )

            remaining = goal.remaining_to_target
            contributed = min(amount, remaining)
            excess = amount - contributed
            completing = contributed == remaining

            withdrawal = await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.GOAL_TRANSFER,
                    from_section=SectionName.SAVINGS,
                    amount=contributed,
                    description=(
                        f"Final contribution to savings goal: {goal.name}"
                        if completing
                        else f"Contribution to savings goal: {goal.name}"
                    ),
                ),
                uow=scope,
            )

            if not completing:
                goal = goal.model_copy(update={"current_amount": goal.current_amount + contributed})
                await scope.save_goal(goal)
                self._audit_on_commit(
                    scope,
                    AuditEventBuilder.goal_contribution(user_id, goal_id, contributed, goal.current_amount),
                )
                return ContributionResult(
                    goal=goal,
                    requested=amount,
                    contributed=contributed,
                    transactions=[withdrawal],
                    message=f"Contributed {contributed} to {goal.name}. {goal.remaining_to_target} to go.",
                )

            goal, payout = await self._complete(scope, goal)
            section_name = goal.payout_section
            message = (
                f"Goal completed! Amount of {goal.target_amount} transferred to "
                f"{section_name.value}{_purpose_suffix(goal)}."
            )
            if excess > 0:
                message += f" Excess amount of {excess} returned to savings."
            message += f" Remember to make the {_spend_word(section_name)} when you're ready."

            logger.info(
                "goal_completed",
                user_id=str(user_id),
                goal_id=goal_id,
                payout_section=section_name.value,
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.goal_contribution(user_id, goal_id, contributed, goal.current_amount),
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.goal_completed(
                    user_id, goal_id, goal.target_amount, section_name.value, excess
                ),
            )
            return ContributionResult(
                goal=goal,
                requested=amount,
                contributed=contributed,
                excess_returned=excess,
                completed=True,
                payout_section=section_name,
                transactions=[withdrawal, payout],
                message=message,
            )

        return await self._run("contribute_to_goal", user_id, work, uow)

    async def transfer_to_savings(
        self,
        goal_id: int,
        user_id: UUID,
        amount: Decimal,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> GoalTransferResult:
        """
        Return money held by an open goal to savings.

        Raises:
            InvalidStateError: The goal is completed (its money was paid out)
            InsufficientFundsError: The goal holds less than `amount`
        """
        amount = positive_amount(amount)

        async def work(scope: LedgerUnitOfWork) -> GoalTransferResult:
            goal = await self._load(scope, goal_id)
            if goal.is_completed:
                raise InvalidStateError(f"Savings goal {goal_id} is completed; its funds were paid out")
            if amount > goal.current_amount:
                raise InsufficientFundsError(
                    source=f"savings goal {goal.name}",
                    available=goal.current_amount,
                    requested=amount,
                )

            goal = goal.model_copy(update={"current_amount": goal.current_amount - amount})
            await scope.save_goal(goal)
            transaction = await self._ledger.record(
                user_id,
                TransactionEntry(
                    type=TransactionType.GOAL_TRANSFER,
                    to_section=SectionName.SAVINGS,
                    amount=amount,
                    description=f"Transfer from savings goal: {goal.name}",
                ),
                uow=scope,
            )
            self._audit_on_commit(
                scope,
                AuditEventBuilder.goal_funds_returned(user_id, goal_id, amount),
            )
            return GoalTransferResult(
                goal=goal,
                transaction=transaction,
                message=f"Transferred {amount} from {goal.name} back to savings.",
            )

        return await self._run("transfer_goal_to_savings", user_id, work, uow)

    async def delete(
        self,
        goal_id: int,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> GoalDeletionResult:
        """
        Cancel a goal.

        An open goal's saved amount goes back to savings first. A completed
        goal already paid out, so it is removed without a refund.
        """

        async def work(scope: LedgerUnitOfWork) -> GoalDeletionResult:
            goal = await self._load(scope, goal_id)
            refund = None
            if not goal.is_completed and goal.current_amount > 0:
                refund = await self._ledger.record(
                    user_id,
                    TransactionEntry(
                        type=TransactionType.GOAL_TRANSFER,
                        to_section=SectionName.SAVINGS,
                        amount=goal.current_amount,
                        description=f"Refund from deleted savings goal: {goal.name}",
                    ),
                    uow=scope,
                )
            await scope.delete_goal(goal_id)

            refunded = refund.amount if refund else Decimal("0")
            self._audit_on_commit(
                scope,
                AuditEventBuilder.goal_cancelled(user_id, goal_id, refunded, goal.is_completed),
            )
            if goal.is_completed:
                message = "Savings goal deleted. It was completed, so nothing was refunded."
            else:
                message = f"Savings goal deleted. {refunded} returned to savings."
            return GoalDeletionResult(
                goal=goal,
                refunded=refunded,
                transaction=refund,
                message=message,
            )

        return await self._run("delete_goal", user_id, work, uow)

    async def list(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: Optional[int] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> SavingGoalPage:
        """The user's goals, newest first."""
        page, page_size = self._page_window(page, page_size)

        async def work(scope: LedgerUnitOfWork) -> SavingGoalPage:
            total = await scope.count_goals()
            items = await scope.list_goals(limit=page_size, offset=(page - 1) * page_size)
            return SavingGoalPage(items=items, meta=self._meta(total, page, page_size))

        return await self._run("list_goals", user_id, work, uow)
