"""
Ledger Services Package

The components that move money:
- SectionBalanceManager: section balances
- TransactionLedger: immutable entries plus their balance changes
- IncomePool: undistributed income
- DistributionEngine: percentage split of income into sections
- SavingGoalEngine: goal funding, completion and cancellation
- InvestmentService, ExpenseService, AccountService
"""

from budget_ledger.ledger.accounts import AccountService
from budget_ledger.ledger.base import LedgerComponent, parse_request
from budget_ledger.ledger.distribution import DistributionEngine, plan_distribution
from budget_ledger.ledger.expenses import ExpenseService
from budget_ledger.ledger.goals import SavingGoalEngine
from budget_ledger.ledger.income import IncomePool
from budget_ledger.ledger.investments import InvestmentService
from budget_ledger.ledger.retry import run_with_store_retry
from budget_ledger.ledger.sections import SectionBalanceManager
from budget_ledger.ledger.transactions import TransactionLedger

__all__ = [
    "AccountService",
    "DistributionEngine",
    "ExpenseService",
    "IncomePool",
    "InvestmentService",
    "LedgerComponent",
    "SavingGoalEngine",
    "SectionBalanceManager",
    "TransactionLedger",
    "parse_request",
    "plan_distribution",
    "run_with_store_retry",
]
