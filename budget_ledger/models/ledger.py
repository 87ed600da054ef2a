"""
Core Ledger Models for Budget Ledger

These models define the strict schemas for sections, transactions and the
allocation profile the ledger reads. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Amounts are Decimal with two decimal places.
Floats never touch a balance.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Amount = Annotated[Decimal, Field(ge=0, decimal_places=2)]
PositiveAmount = Annotated[Decimal, Field(gt=0, decimal_places=2)]
Percent = Annotated[Decimal, Field(ge=0, le=100)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SectionName(str, Enum):
    """
    Places money can move between.

    INCOME is the undistributed income pool. It can appear on either side
    of a transaction but never carries a section balance.
    """
    SAVINGS = "savings"
    EXPENSES = "expenses"
    INVESTMENTS = "investments"
    INCOME = "income"

    @property
    def has_balance(self) -> bool:
        return self is not SectionName.INCOME


BALANCE_SECTIONS = (
    SectionName.SAVINGS,
    SectionName.EXPENSES,
    SectionName.INVESTMENTS,
)


class TransactionType(str, Enum):
    """Why a transaction was recorded."""
    AUTOMATIC = "automatic"          # percentage distribution of income
    MANUAL = "manual"                # user-initiated transfers and spending
    LEFTOVER = "leftover"            # distribution rounding remainder
    GOAL_TRANSFER = "goal-transfer"  # saving goal contributions and payouts
    REFUND = "refund"                # reverted expenses and investments


# =============================================================================
# SECTIONS
# =============================================================================

class Section(BaseModel):
    """
    The three section balances for one user.

    CRITICAL: Only the section balance manager mutates this.
    Each balance equals the signed sum of the transactions touching it.
    """

    user_id: UUID
    savings: Amount = Decimal("0")
    expenses: Amount = Decimal("0")
    investments: Amount = Decimal("0")
    updated_at: datetime = Field(default_factory=utc_now)

    def balance(self, section: SectionName) -> Decimal:
        if not section.has_balance:
            raise ValueError(f"{section.value} does not carry a section balance")
        return getattr(self, section.value)

    @property
    def total(self) -> Decimal:
        return self.savings + self.expenses + self.investments


class SectionAdjustment(BaseModel):
    """Target balances for a manual section adjustment. Omitted sections are left alone."""

    savings: Optional[Amount] = None
    expenses: Optional[Amount] = None
    investments: Optional[Amount] = None
    description: Optional[str] = None

    def targets(self) -> dict[SectionName, Decimal]:
        return {
            section: getattr(self, section.value)
            for section in BALANCE_SECTIONS
            if getattr(self, section.value) is not None
        }


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionEntry(BaseModel):
    """
    A requested money movement, before it is recorded.

    At least one side must be set, and both sides cannot name
    the same place.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    from_section: Optional[SectionName] = None
    to_section: Optional[SectionName] = None
    amount: PositiveAmount
    description: str = ""

    @model_validator(mode='after')
    def validate_sides(self) -> 'TransactionEntry':
        if self.from_section is None and self.to_section is None:
            raise ValueError("A transaction needs a from section or a to section")
        if self.from_section is not None and self.from_section == self.to_section:
            raise ValueError("From and to sections cannot be the same")
        return self

    def section_deltas(self) -> dict[SectionName, Decimal]:
        """Signed change per balance-bearing section."""
        deltas: dict[SectionName, Decimal] = {}
        if self.from_section is not None and self.from_section.has_balance:
            deltas[self.from_section] = -self.amount
        if self.to_section is not None and self.to_section.has_balance:
            deltas[self.to_section] = deltas.get(self.to_section, Decimal("0")) + self.amount
        return deltas

    @property
    def touches_savings(self) -> bool:
        return SectionName.SAVINGS in (self.from_section, self.to_section)

    @property
    def savings_change(self) -> Decimal:
        if self.from_section == SectionName.SAVINGS:
            return -self.amount
        if self.to_section == SectionName.SAVINGS:
            return self.amount
        return Decimal("0")


class Transaction(BaseModel):
    """
    An immutable ledger entry.

    CRITICAL: Once recorded, only `description` may change.
    The id is assigned by the store.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: UUID
    type: TransactionType
    from_section: Optional[SectionName] = None
    to_section: Optional[SectionName] = None
    amount: PositiveAmount
    description: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_entry(cls, user_id: UUID, entry: TransactionEntry) -> 'Transaction':
        return cls(
            user_id=user_id,
            type=entry.type,
            from_section=entry.from_section,
            to_section=entry.to_section,
            amount=entry.amount,
            description=entry.description,
        )

    def signed_amount(self, section: SectionName) -> Decimal:
        """Effect of this transaction on one section's balance."""
        change = Decimal("0")
        if self.to_section == section:
            change += self.amount
        if self.from_section == section:
            change -= self.amount
        return change


class PageMeta(BaseModel):
    """Pagination metadata returned with every list."""

    total: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total_pages: int = Field(ge=0)

    @classmethod
    def build(cls, total: int, page: int, page_size: int) -> 'PageMeta':
        return cls(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )


class TransactionPage(BaseModel):
    """One page of a user's transactions, newest first."""

    items: list[Transaction]
    meta: PageMeta
    valid_types: list[TransactionType] = Field(
        default_factory=lambda: list(TransactionType)
    )


# =============================================================================
# ALLOCATION PROFILE
# =============================================================================

class UserProfile(BaseModel):
    """
    The slice of a user's profile the ledger reads and writes.

    Percentages drive income distribution. `savings_balance` mirrors the
    savings section and is adjusted in the same unit of work as every
    transaction that touches savings.
    """

    user_id: UUID
    savings_percent: Percent = Decimal("0")
    expenses_percent: Percent = Decimal("0")
    investments_percent: Percent = Decimal("0")
    leftover_action: SectionName = SectionName.SAVINGS
    savings_balance: Amount = Decimal("0")

    @field_validator('leftover_action')
    @classmethod
    def validate_leftover_action(cls, v: SectionName) -> SectionName:
        if not v.has_balance:
            raise ValueError("Leftover action must be savings, expenses or investments")
        return v

    @model_validator(mode='after')
    def validate_percent_total(self) -> 'UserProfile':
        if self.allocated_percent > 100:
            raise ValueError("Savings, expenses and investments percentages cannot exceed 100 in total")
        return self

    @property
    def allocated_percent(self) -> Decimal:
        return self.savings_percent + self.expenses_percent + self.investments_percent

    def percent_for(self, section: SectionName) -> Decimal:
        return getattr(self, f"{section.value}_percent")


class AllocationUpdate(BaseModel):
    """Changes to a user's distribution settings. Omitted fields are kept."""

    savings_percent: Optional[Percent] = None
    expenses_percent: Optional[Percent] = None
    investments_percent: Optional[Percent] = None
    leftover_action: Optional[SectionName] = None


# =============================================================================
# DISTRIBUTION
# =============================================================================

class DistributionAllocation(BaseModel):
    """One slice of a distribution."""

    section: SectionName
    amount: Amount
    type: TransactionType


class DistributionPlan(BaseModel):
    """
    How an income total splits across sections.

    Percentage buckets are floored; the remainder goes to the
    leftover section.
    """

    total: Amount
    allocations: list[DistributionAllocation]
    remainder: Amount
    leftover_section: SectionName

    @property
    def allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0"))

    def section_totals(self) -> dict[SectionName, Decimal]:
        totals = {section: Decimal("0") for section in BALANCE_SECTIONS}
        for allocation in self.allocations:
            totals[allocation.section] += allocation.amount
        return totals
