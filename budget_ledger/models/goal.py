"""
Saving Goal Models

A saving goal holds money withdrawn from the savings section until it
reaches its target, then pays the target out to expenses or investments.

State machine:
    OPEN       current_amount < target_amount, is_completed False
    COMPLETED  current_amount == target_amount, is_completed True
    CANCELLED  goal row deleted (open goals refund to savings first)
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from budget_ledger.models.ledger import (
    Amount,
    PageMeta,
    PositiveAmount,
    SectionName,
    Transaction,
    utc_now,
)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class TransferType(str, Enum):
    """Where a completed goal's money goes."""
    EXPENSE = "EXPENSE"
    INVESTMENT = "INVESTMENT"


class GoalState(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SavingGoal(BaseModel):
    """
    A target-amount savings plan.

    CRITICAL: 0 <= current_amount <= target_amount at all times,
    and completion happens exactly once.
    """
    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    target_amount: PositiveAmount
    current_amount: Amount = Decimal("0")
    is_completed: bool = False
    target_date: date = Field(default_factory=utc_today)
    transfer_type: Optional[TransferType] = None
    purpose: Optional[str] = Field(default=None, max_length=200)
    target_item: Optional[str] = Field(default=None, max_length=200)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_progress(self) -> 'SavingGoal':
        if self.current_amount > self.target_amount:
            raise ValueError("Current amount cannot exceed the target amount")
        if self.is_completed and self.current_amount != self.target_amount:
            raise ValueError("A completed goal must hold exactly its target amount")
        return self

    @property
    def state(self) -> GoalState:
        return GoalState.COMPLETED if self.is_completed else GoalState.OPEN

    @property
    def remaining_to_target(self) -> Decimal:
        return self.target_amount - self.current_amount

    @property
    def payout_section(self) -> SectionName:
        """Section that receives the target amount on completion."""
        if self.transfer_type == TransferType.INVESTMENT:
            return SectionName.INVESTMENTS
        return SectionName.EXPENSES


class CreateSavingGoalRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    target_amount: PositiveAmount
    target_date: Optional[date] = None
    transfer_type: Optional[TransferType] = None
    purpose: Optional[str] = Field(default=None, max_length=200)
    target_item: Optional[str] = Field(default=None, max_length=200)


class UpdateSavingGoalRequest(BaseModel):
    """
    Editable goal fields.

    Progress and completion are not editable: they only move through
    contributions, transfers and cancellation.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount: Optional[PositiveAmount] = None
    target_date: Optional[date] = None
    transfer_type: Optional[TransferType] = None
    purpose: Optional[str] = Field(default=None, max_length=200)
    target_item: Optional[str] = Field(default=None, max_length=200)


class SavingGoalPage(BaseModel):
    """One page of a user's goals, newest first."""

    items: list[SavingGoal]
    meta: PageMeta


class ContributionResult(BaseModel):
    """Outcome of contributing savings to a goal."""

    goal: SavingGoal
    requested: Amount
    contributed: Amount
    excess_returned: Amount = Decimal("0")
    completed: bool = False
    payout_section: Optional[SectionName] = None
    transactions: list[Transaction] = Field(default_factory=list)
    message: str


class GoalTransferResult(BaseModel):
    """Outcome of moving goal money back to savings."""

    goal: SavingGoal
    transaction: Transaction
    message: str


class GoalDeletionResult(BaseModel):
    """Outcome of cancelling a goal."""

    goal: SavingGoal
    refunded: Amount = Decimal("0")
    transaction: Optional[Transaction] = None
    message: str
