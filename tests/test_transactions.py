"""Tests for the section balance manager and the transaction ledger."""

from decimal import Decimal
from uuid import uuid4

import pytest

from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from budget_ledger.models.ledger import SectionName, TransactionType


class TestSectionBalanceManager:
    """Tests for applying deltas to section balances."""

    async def test_registration_creates_zero_sections(self, ledger, registered_user):
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("0")
        assert section.expenses == Decimal("0")
        assert section.investments == Decimal("0")

    async def test_snapshot_of_unknown_user(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.sections.snapshot(uuid4())

    async def test_create_twice_is_rejected(self, ledger, registered_user):
        with pytest.raises(InvalidStateError):
            await ledger.sections.create(registered_user)

    async def test_apply_delta(self, ledger, registered_user, fund):
        await fund(registered_user, savings="100")
        section = await ledger.sections.apply_delta(
            registered_user,
            {"savings": Decimal("-40"), SectionName.EXPENSES: Decimal("40")},
        )
        assert section.savings == Decimal("60")
        assert section.expenses == Decimal("40")

    async def test_negative_result_changes_nothing(self, ledger, registered_user, fund):
        """Test that one failing delta rejects the whole map."""
        await fund(registered_user, savings="100", expenses="10")
        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.sections.apply_delta(
                registered_user,
                {SectionName.SAVINGS: Decimal("-50"), SectionName.EXPENSES: Decimal("-20")},
            )
        assert exc_info.value.source == "expenses"
        assert exc_info.value.available == Decimal("10")
        assert exc_info.value.requested == Decimal("20")
        assert exc_info.value.shortfall == Decimal("10")

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("100")
        assert section.expenses == Decimal("10")

    async def test_income_is_not_a_balance(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.sections.apply_delta(registered_user, {"income": Decimal("5")})

    @pytest.mark.parametrize("delta", ["abc", Decimal("0.001"), Decimal("NaN")])
    async def test_malformed_delta_changes_nothing(self, ledger, registered_user, fund, delta):
        await fund(registered_user, savings="100")
        with pytest.raises(ValidationError):
            await ledger.sections.apply_delta(
                registered_user,
                {SectionName.EXPENSES: Decimal("5"), SectionName.SAVINGS: delta},
            )
        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("100")
        assert section.expenses == Decimal("0")

    async def test_float_delta_keeps_two_decimals(self, ledger, registered_user):
        section = await ledger.sections.apply_delta(registered_user, {"savings": 0.1})
        assert section.savings == Decimal("0.1")

    async def test_insufficient_funds_is_an_invalid_state(self):
        assert issubclass(InsufficientFundsError, InvalidStateError)


class TestRecord:
    """Tests for recording transactions."""

    async def test_record_applies_deltas(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, savings="300")
        transaction = await ledger.transactions.record(registered_user, {
            "type": "manual",
            "from_section": "savings",
            "to_section": "investments",
            "amount": "120.25",
            "description": "  Move to brokerage  ",
        })
        assert transaction.id is not None
        assert transaction.description == "Move to brokerage"

        section = await ledger.sections.snapshot(registered_user)
        assert section.savings == Decimal("179.75")
        assert section.investments == Decimal("120.25")

        profile = await ledger.accounts.get_profile(registered_user)
        assert profile.savings_balance == Decimal("179.75")
        await assert_conserved(registered_user)

    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_amount_changes_nothing(self, ledger, registered_user, all_transactions, amount):
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {
                "type": "manual",
                "to_section": "savings",
                "amount": amount,
            })
        assert await all_transactions(registered_user) == []
        section = await ledger.sections.snapshot(registered_user)
        assert section.total == Decimal("0")

    async def test_unknown_section_is_rejected(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {
                "type": "manual",
                "to_section": "holidays",
                "amount": "10",
            })

    async def test_unknown_type_is_rejected(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {
                "type": "bonus",
                "to_section": "savings",
                "amount": "10",
            })

    async def test_both_sides_empty_is_rejected(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {"type": "manual", "amount": "10"})

    async def test_same_sides_are_rejected(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {
                "type": "manual",
                "from_section": "income",
                "to_section": "income",
                "amount": "10",
            })

    async def test_overdraft_fails_and_records_nothing(self, ledger, registered_user, fund, all_transactions):
        await fund(registered_user, expenses="50")
        before = await all_transactions(registered_user)

        with pytest.raises(InsufficientFundsError):
            await ledger.transactions.record(registered_user, {
                "type": "manual",
                "from_section": "expenses",
                "amount": "50.01",
            })

        assert len(await all_transactions(registered_user)) == len(before)
        section = await ledger.sections.snapshot(registered_user)
        assert section.expenses == Decimal("50")

    async def test_unregistered_user(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.transactions.record(uuid4(), {
                "type": "manual",
                "to_section": "expenses",
                "amount": "10",
            })

    async def test_description_too_long(self, ledger, registered_user, monkeypatch):
        monkeypatch.setenv("LEDGER_MAX_DESCRIPTION_LENGTH", "20")
        with pytest.raises(ValidationError):
            await ledger.transactions.record(registered_user, {
                "type": "manual",
                "to_section": "expenses",
                "amount": "10",
                "description": "x" * 21,
            })


class TestUpdateDescription:

    async def test_only_description_changes(self, ledger, registered_user, fund):
        await fund(registered_user, savings="10")
        original = (await ledger.transactions.list(registered_user)).items[0]

        updated = await ledger.transactions.update_description(
            original.id, registered_user, "Opening balance"
        )
        assert updated.description == "Opening balance"
        assert updated.amount == original.amount
        assert updated.to_section == original.to_section
        assert updated.created_at == original.created_at

    async def test_other_users_transaction_is_not_found(self, ledger, registered_user, fund):
        await fund(registered_user, savings="10")
        original = (await ledger.transactions.list(registered_user)).items[0]

        other = uuid4()
        await ledger.accounts.register(other)
        with pytest.raises(NotFoundError):
            await ledger.transactions.update_description(original.id, other, "mine now")

    async def test_missing_transaction(self, ledger, registered_user):
        with pytest.raises(NotFoundError):
            await ledger.transactions.update_description(9999, registered_user, "nothing")


class TestList:
    """Tests for paging through transactions."""

    async def _record_many(self, ledger, user_id, count):
        for i in range(count):
            await ledger.transactions.record(user_id, {
                "type": "manual" if i % 2 else "automatic",
                "to_section": "savings",
                "amount": str(i + 1),
            })

    async def test_newest_first_with_metadata(self, ledger, registered_user):
        await self._record_many(ledger, registered_user, 12)

        first = await ledger.transactions.list(registered_user, page=1, page_size=5)
        assert first.meta.total == 12
        assert first.meta.total_pages == 3
        assert first.meta.page == 1
        assert first.meta.page_size == 5
        assert [t.amount for t in first.items] == [Decimal(n) for n in (12, 11, 10, 9, 8)]
        assert set(first.valid_types) == set(TransactionType)

        last = await ledger.transactions.list(registered_user, page=3, page_size=5)
        assert [t.amount for t in last.items] == [Decimal("2"), Decimal("1")]

    async def test_ties_broken_by_id(self, ledger, registered_user):
        await self._record_many(ledger, registered_user, 4)
        items = (await ledger.transactions.list(registered_user)).items
        ordered = sorted(items, key=lambda t: (t.created_at, t.id), reverse=True)
        assert [t.id for t in items] == [t.id for t in ordered]

    async def test_type_filter(self, ledger, registered_user):
        await self._record_many(ledger, registered_user, 6)

        manual = await ledger.transactions.list(registered_user, type_filter="manual")
        assert manual.meta.total == 3
        assert all(t.type == TransactionType.MANUAL for t in manual.items)

        everything = await ledger.transactions.list(registered_user, type_filter="all")
        assert everything.meta.total == 6

    async def test_invalid_type_filter(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.list(registered_user, type_filter="weekly")

    async def test_invalid_paging(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.list(registered_user, page=0)
        with pytest.raises(ValidationError):
            await ledger.transactions.list(registered_user, page_size=1000)

    async def test_default_page_size_from_settings(self, ledger, registered_user, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_PAGE_SIZE", "4")
        await self._record_many(ledger, registered_user, 6)
        page = await ledger.transactions.list(registered_user)
        assert page.meta.page_size == 4
        assert len(page.items) == 4


class TestTransfersAndAdjustments:
    """Tests for direct section transfers and manual adjustments."""

    async def test_transfer_between_sections(self, ledger, registered_user, fund, assert_conserved):
        await fund(registered_user, expenses="200")
        transaction = await ledger.transactions.transfer(
            registered_user, "expenses", "savings", Decimal("75")
        )
        assert transaction.type == TransactionType.MANUAL
        assert transaction.description == "Transfer from expenses to savings"

        section = await ledger.sections.snapshot(registered_user)
        assert section.expenses == Decimal("125")
        assert section.savings == Decimal("75")
        await assert_conserved(registered_user)

    async def test_transfer_requires_balance_sections(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.transfer(registered_user, "income", "savings", Decimal("5"))

    async def test_adjust_records_one_transaction_per_change(
        self, ledger, registered_user, fund, all_transactions, assert_conserved
    ):
        await fund(registered_user, savings="100", expenses="100")
        before = len(await all_transactions(registered_user))

        section = await ledger.transactions.adjust_balances(registered_user, {
            "savings": "40",
            "expenses": "100",
            "investments": "15",
            "description": "Reconciled with bank",
        })
        assert section.savings == Decimal("40")
        assert section.expenses == Decimal("100")
        assert section.investments == Decimal("15")

        transactions = await all_transactions(registered_user)
        new = transactions[:len(transactions) - before]
        assert len(new) == 2
        assert {(t.from_section, t.to_section) for t in new} == {
            (SectionName.SAVINGS, None),
            (None, SectionName.INVESTMENTS),
        }
        assert all(t.description == "Reconciled with bank" for t in new)
        await assert_conserved(registered_user)

    async def test_adjust_rejects_negative_target(self, ledger, registered_user):
        with pytest.raises(ValidationError):
            await ledger.transactions.adjust_balances(registered_user, {"savings": "-1"})
