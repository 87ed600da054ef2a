"""
Component Wiring for Budget Ledger

This module builds the store, the audit logger and every ledger
service, handing each its collaborators through the constructor.

DESIGN DECISION: No module-level clients. Everything that talks to the
store is created here from one Settings object, so tests and embedding
applications can build as many independent ledgers as they need.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from budget_ledger.audit import AuditLogger, configure_logging
from budget_ledger.config import Settings, get_settings
from budget_ledger.ledger import (
    AccountService,
    DistributionEngine,
    ExpenseService,
    IncomePool,
    InvestmentService,
    SavingGoalEngine,
    SectionBalanceManager,
    TransactionLedger,
)
from budget_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStore,
    SqlAuditStorage,
    SqlLedgerStore,
)


logger = structlog.get_logger(__name__)


@dataclass
class LedgerComponents:
    """Everything a caller needs to drive the ledger."""
    store: LedgerStore
    audit_logger: AuditLogger
    sections: SectionBalanceManager
    transactions: TransactionLedger
    investments: InvestmentService
    expenses: ExpenseService
    income: IncomePool
    distribution: DistributionEngine
    goals: SavingGoalEngine
    accounts: AccountService

    async def close(self) -> None:
        await self.store.close()


def create_store(settings: Settings) -> tuple[LedgerStore, AuditStorageInterface]:
    """Build the configured ledger store and its matching audit storage."""
    store_settings = settings.store

    if store_settings.backend == "sql":
        store = SqlLedgerStore(
            database_url=store_settings.database_url,
            echo=store_settings.echo_sql,
            timeout_seconds=store_settings.timeout_seconds,
        )
        return store, SqlAuditStorage(store.engine)

    return (
        InMemoryLedgerStore(timeout_seconds=store_settings.timeout_seconds),
        InMemoryAuditStorage(),
    )


def create_ledger_components(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        settings: Settings to build from. Defaults to get_settings().
        store: Use this store instead of building one from settings.
        audit_storage: Audit persistence to use alongside an explicit store.
                      Without one, audit events are only logged locally.

    Returns:
        LedgerComponents sharing one store and one audit logger
    """
    settings = settings or get_settings()
    configure_logging(settings.logging)

    if store is None:
        store, audit_storage = create_store(settings)

    audit_logger = AuditLogger(audit_storage)

    sections = SectionBalanceManager(store, audit_logger)
    transactions = TransactionLedger(store, sections, audit_logger)
    investments = InvestmentService(store, transactions, audit_logger)
    expenses = ExpenseService(store, transactions, audit_logger)
    income = IncomePool(store, transactions, investments, audit_logger)
    distribution = DistributionEngine(store, transactions, income, audit_logger)
    goals = SavingGoalEngine(store, transactions, audit_logger)
    accounts = AccountService(store, sections, audit_logger)

    logger.info(
        "ledger_components_created",
        backend=type(store).__name__,
        environment=settings.app_environment,
    )

    return LedgerComponents(
        store=store,
        audit_logger=audit_logger,
        sections=sections,
        transactions=transactions,
        investments=investments,
        expenses=expenses,
        income=income,
        distribution=distribution,
        goals=goals,
        accounts=accounts,
    )
