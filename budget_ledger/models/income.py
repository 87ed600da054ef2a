"""
Income, Investment and Expense Models

Income feeds the undistributed pool. Investments and expenses are
spending records charged against their sections.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from budget_ledger.models.ledger import Amount, PageMeta, PositiveAmount, utc_now


class IncomeType(str, Enum):
    """Where a piece of income came from."""
    REGULAR = "regular"
    INVESTMENT_RETURN = "investment_return"


class Income(BaseModel):
    """
    An append-only income record.

    The pool can always be rebuilt from the sum of these.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: UUID
    amount: PositiveAmount
    type: IncomeType = IncomeType.REGULAR
    investment_id: Optional[int] = None
    description: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class IncomeRequest(BaseModel):
    """Income being added to the pool."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: PositiveAmount
    type: IncomeType = IncomeType.REGULAR
    investment_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode='after')
    def validate_investment_reference(self) -> 'IncomeRequest':
        if self.type == IncomeType.INVESTMENT_RETURN and self.investment_id is None:
            raise ValueError("Investment ID is required for investment returns")
        if self.type == IncomeType.REGULAR and self.investment_id is not None:
            raise ValueError("Only investment returns may reference an investment")
        return self


class IncomePoolBalance(BaseModel):
    """Available, undistributed income for one user."""
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    amount: Amount = Decimal("0")
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# INVESTMENTS
# =============================================================================

class Investment(BaseModel):
    """
    Money placed in an asset out of the investments section.

    CRITICAL: `is_closed` flips to True exactly once, when the
    investment's return is recorded as income.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: UUID
    asset_name: str = Field(..., min_length=1, max_length=200)
    amount: PositiveAmount
    investment_type: Optional[str] = Field(default=None, max_length=100)
    total_return: Amount = Decimal("0")
    is_closed: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utc_now)
    closed_at: Optional[datetime] = None


class CreateInvestmentRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    asset_name: str = Field(..., min_length=1, max_length=200)
    amount: PositiveAmount
    investment_type: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class UpdateInvestmentRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    asset_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[PositiveAmount] = None
    investment_type: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


# =============================================================================
# EXPENSES
# =============================================================================

class Expense(BaseModel):
    """Spending charged against the expenses section."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: UUID
    amount: PositiveAmount
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utc_now)


class CreateExpenseRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: PositiveAmount
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)


class UpdateExpenseRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[PositiveAmount] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class IncomePage(BaseModel):
    items: list[Income]
    meta: PageMeta


class InvestmentPage(BaseModel):
    items: list[Investment]
    meta: PageMeta


class ExpensePage(BaseModel):
    items: list[Expense]
    meta: PageMeta
