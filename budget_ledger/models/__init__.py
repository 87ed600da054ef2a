"""
Data Models Package

This package contains all Pydantic models used by the Budget Ledger.
All data flowing through the ledger must conform to these schemas.
"""

from budget_ledger.models.ledger import (
    BALANCE_SECTIONS,
    AllocationUpdate,
    DistributionAllocation,
    DistributionPlan,
    PageMeta,
    Section,
    SectionAdjustment,
    SectionName,
    Transaction,
    TransactionEntry,
    TransactionPage,
    TransactionType,
    UserProfile,
)
from budget_ledger.models.income import (
    CreateExpenseRequest,
    CreateInvestmentRequest,
    Expense,
    ExpensePage,
    Income,
    IncomePage,
    IncomePoolBalance,
    IncomeRequest,
    IncomeType,
    Investment,
    InvestmentPage,
    UpdateExpenseRequest,
    UpdateInvestmentRequest,
)
from budget_ledger.models.goal import (
    ContributionResult,
    CreateSavingGoalRequest,
    GoalDeletionResult,
    GoalState,
    GoalTransferResult,
    SavingGoal,
    SavingGoalPage,
    TransferType,
    UpdateSavingGoalRequest,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BALANCE_SECTIONS",
    "AllocationUpdate",
    "DistributionAllocation",
    "DistributionPlan",
    "PageMeta",
    "Section",
    "SectionAdjustment",
    "SectionName",
    "Transaction",
    "TransactionEntry",
    "TransactionPage",
    "TransactionType",
    "UserProfile",
    # Income, investment and expense models
    "CreateExpenseRequest",
    "CreateInvestmentRequest",
    "Expense",
    "ExpensePage",
    "Income",
    "IncomePage",
    "IncomePoolBalance",
    "IncomeRequest",
    "IncomeType",
    "Investment",
    "InvestmentPage",
    "UpdateExpenseRequest",
    "UpdateInvestmentRequest",
    # Saving goal models
    "ContributionResult",
    "CreateSavingGoalRequest",
    "GoalDeletionResult",
    "GoalState",
    "GoalTransferResult",
    "SavingGoal",
    "SavingGoalPage",
    "TransferType",
    "UpdateSavingGoalRequest",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
