"""
Tests for saving goals

Test strategy:
1. The contribute path is checked end to end against sections and history
2. Every lifecycle transition is checked for its money movements
3. Concurrent contributions must complete a goal exactly once
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.goal import GoalState, TransferType
from budget_ledger.models.ledger import SectionName, TransactionType


async def _goal(ledger, user_id, target="800", transfer_type="EXPENSE", **extra):
    return await ledger.goals.create(user_id, {
        "name": "Laptop",
        "category": "Tech",
        "target_amount": target,
        "transfer_type": transfer_type,
        **extra,
    })


class TestCreateAndUpdate:

    async def test_create_defaults(self, ledger, registered_user):
        goal = await _goal(ledger, registered_user)
        assert goal.id is not None
        assert goal.current_amount == Decimal("0")
        assert goal.state == GoalState.OPEN
        assert isinstance(goal.target_date, date)
        assert goal.transfer_type == TransferType.EXPENSE

    async def test_create_with_invalid_target(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await _goal(ledger, registered_user, target="0")

    async def test_create_does_not_move_money(self, ledger, registered_user, all_transactions):
        await _goal(ledger, registered_user)
        assert await all_transactions(registered_user) == []

    async def test_update_descriptive_fields(self, ledger, registered_user):
        goal = await _goal(ledger, registered_user)
        updated = await ledger.goals.update(goal.id, registered_user, {
            "name": "Gaming laptop",
            "purpose": "university",
        })
        assert updated.name == "Gaming laptop"
        assert updated.purpose == "university"
        assert updated.target_amount == goal.target_amount

        fetched = await ledger.goals.get(goal.id, registered_user)
        assert fetched.name == "Gaming laptop"

    async def test_target_must_stay_above_saved_amount(self, ledger, registered_user, fund):
        await fund(registered_user, savings="500")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("300"))

        with pytest.raises(ValidationError):
            await ledger.goals.update(goal.id, registered_user, {"target_amount": "300"})

        updated = await ledger.goals.update(goal.id, registered_user, {"target_amount": "300.01"})
        assert updated.target_amount == Decimal("300.01")

    async def test_completed_goal_target_is_frozen(self, ledger, registered_user, fund):
        await fund(registered_user, savings="800")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("800"))

        with pytest.raises(InvalidStateError):
            await ledger.goals.update(goal.id, registered_user, {"target_amount": "900"})

    async def test_missing_goal(self, ledger, registered_user):
        with pytest.raises(NotFoundError):
            await ledger.goals.get(12345, registered_user)

    async def test_list_newest_first(self, ledger, registered_user):
        first = await _goal(ledger, registered_user, name="Bike")
        second = await _goal(ledger, registered_user, name="Camera")
        page = await ledger.goals.list(registered_user)
        assert [g.id for g in page.items] == [second.id, first.id]
        assert page.meta.total == 2


class TestContribute:
    """Tests for contributing savings to a goal."""

    async def test_overshoot_completes_and_keeps_excess_in_savings(
        self, ledger, registered_user, fund, assert_conserved
    ):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user, target="800")

        result = await ledger.goals.contribute(goal.id, registered_user, Decimal("1000"))

        assert result.completed
        assert result.contributed == Decimal("800")
        assert result.excess_returned == Decimal("200")
        assert result.payout_section == SectionName.EXPENSES
        assert result.goal.current_amount == Decimal("800")
        assert result.goal.is_completed
        assert "Goal completed!" in result.message
        assert "Excess amount of 200 returned to savings." in result.message

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("200")
        assert section.expenses == Decimal("800")

        withdrawal, payout = result.transactions
        assert withdrawal.type == TransactionType.GOAL_TRANSFER
        assert withdrawal.from_section == SectionName.SAVINGS
        assert withdrawal.to_section is None
        assert withdrawal.amount == Decimal("800")
        assert withdrawal.description == "Final contribution to savings goal: Laptop"
        assert payout.from_section is None
        assert payout.to_section == SectionName.EXPENSES
        assert payout.amount == Decimal("800")
        await assert_conserved(registered_user)

    async def test_exact_hit(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, savings="800")
        goal = await _goal(ledger, registered_user, target="800", transfer_type="INVESTMENT")

        result = await ledger.goals.contribute(goal.id, registered_user, Decimal("800"))

        assert result.completed
        assert result.excess_returned == Decimal("0")
        assert "Excess" not in result.message
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("0")
        assert section.investments == Decimal("800")
        await assert_conserved(registered_user)

    async def test_partial_contributions(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user, target="800")

        first = await ledger.goals.contribute(goal.id, registered_user, Decimal("300"))
        assert not first.completed
        assert first.goal.current_amount == Decimal("300")
        assert len(first.transactions) == 1

        second = await ledger.goals.contribute(goal.id, registered_user, Decimal("600"))
        assert second.completed
        assert second.contributed == Decimal("500")
        assert second.excess_returned == Decimal("100")

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("200")
        assert section.expenses == Decimal("800")
        await assert_conserved(registered_user)

    async def test_savings_must_cover_requested_amount(self, ledger, registered_user, fund, all_transactions):
        await fund(registered_user, savings="100")
        goal = await _goal(ledger, registered_user, target="50")
        before = len(await all_transactions(registered_user))

        with pytest.raises(InsufficientFundsError):
            await ledger.goals.contribute(goal.id, registered_user, Decimal("150"))

        assert len(await all_transactions(registered_user)) == before
        assert (await ledger.goals.get(goal.id, registered_user)).current_amount == Decimal("0")

    async def test_completed_goal_rejects_contributions(self, ledger, registered_user, fund):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user, target="100")
        await ledger.goals.contribute(goal.id, registered_user, Decimal("100"))

        with pytest.raises(InvalidStateError):
            await ledger.goals.contribute(goal.id, registered_user, Decimal("10"))

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("900")
        assert section.expenses == Decimal("100")

    @pytest.mark.parametrize("amount", ["0", "-5", "1.005", "nan"])
    async def test_invalid_amount(self, ledger, registered_user, amount):
        goal = await _goal(ledger, registered_user)
        with pytest.raises(ValidationError):
            await ledger.goals.contribute(goal.id, registered_user, amount)

    async def test_concurrent_contributions_complete_once(
        self, ledger, registered_user, fund, all_transactions, assert_conserved
    ):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user, target="800")

        results = await asyncio.gather(
            ledger.goals.contribute(goal.id, registered_user, Decimal("500")),
            ledger.goals.contribute(goal.id, registered_user, Decimal("500")),
        )

        assert sum(1 for r in results if r.completed) == 1
        assert sum(r.contributed for r in results) == Decimal("800")

        payouts = [
            t for t in await all_transactions(registered_user)
            if t.type == TransactionType.GOAL_TRANSFER and t.to_section == SectionName.EXPENSES
        ]
        assert len(payouts) == 1

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("200")
        assert section.expenses == Decimal("800")
        await assert_conserved(registered_user)

    async def test_completion_is_audited(self, ledger, registered_user, fund, audit_storage):
        await fund(registered_user, savings="800")
        goal = await _goal(ledger, registered_user, target="800")
        await ledger.goals.contribute(goal.id, registered_user, Decimal("800"))

        events = await audit_storage.get_events_by_entity("goal", str(goal.id))
        assert [e.event_type for e in events] == [
            AuditEventType.GOAL_CREATED,
            AuditEventType.GOAL_CONTRIBUTION,
            AuditEventType.GOAL_COMPLETED,
        ]


class TestTransferToSavings:

    async def test_moves_goal_money_back(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, savings="500")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("300"))

        result = await ledger.goals.transfer_to_savings(goal.id, registered_user, Decimal("120"))

        assert result.goal.current_amount == Decimal("180")
        assert result.transaction.to_section == SectionName.SAVINGS
        assert result.transaction.from_section is None
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("320")
        await assert_conserved(registered_user)

    async def test_cannot_take_more_than_the_goal_holds(self, ledger, registered_user, fund):
        await fund(registered_user, savings="500")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("100"))

        with pytest.raises(InsufficientFundsError):
            await ledger.goals.transfer_to_savings(goal.id, registered_user, Decimal("100.01"))

    async def test_completed_goal_has_nothing_to_return(self, ledger, registered_user, fund):
        await fund(registered_user, savings="800")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("800"))

        with pytest.raises(InvalidStateError):
            await ledger.goals.transfer_to_savings(goal.id, registered_user, Decimal("10"))


class TestDelete:
    """Tests for cancelling goals."""

    async def test_open_goal_refunds_exactly_what_it_holds(
        self, ledger, registered_user, fund, assert_conserved
    ):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("300"))

        result = await ledger.goals.delete(goal.id, registered_user)

        assert result.refunded == Decimal("300")
        assert result.transaction.type == TransactionType.GOAL_TRANSFER
        assert result.transaction.to_section == SectionName.SAVINGS
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("1000")
        with pytest.raises(NotFoundError):
            await ledger.goals.get(goal.id, registered_user)
        await assert_conserved(registered_user)

    async def test_empty_open_goal_records_nothing(self, ledger, registered_user, all_transactions):
        goal = await _goal(ledger, registered_user)
        result = await ledger.goals.delete(goal.id, registered_user)
        assert result.refunded == Decimal("0")
        assert result.transaction is None
        assert await all_transactions(registered_user) == []

    async def test_completed_goal_is_not_refunded(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, savings="1000")
        goal = await _goal(ledger, registered_user)
        await ledger.goals.contribute(goal.id, registered_user, Decimal("1000"))

        result = await ledger.goals.delete(goal.id, registered_user)

        assert result.refunded == Decimal("0")
        assert result.transaction is None
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("200")
        assert section.expenses == Decimal("800")
        await assert_conserved(registered_user)

    async def test_missing_goal(self, ledger, registered_user):
        with pytest.raises(NotFoundError):
            await ledger.goals.delete(999, registered_user)
