"""
Tests for the SQLAlchemy store

Test strategy:
1. Run the main ledger flows against a SQLite file in tmp_path
2. Reopen the database to check everything was committed
3. Check audit events land in the audit table
"""

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from budget_ledger.config import get_settings
from budget_ledger.errors import (
    ConnectionError,
    InsufficientFundsError,
    InvalidStateError,
    StorageError,
    StorageTimeoutError,
)
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import SectionName, TransactionType
from budget_ledger.orchestrator import create_ledger_components
from budget_ledger.services.storage import InMemoryAuditStorage, SqlAuditStorage, SqlLedgerStore
from budget_ledger.services.storage.sql import (
    IncomePoolRow,
    ProfileRow,
    _engine_options,
    _translate,
)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path}/ledger.db"


@pytest.fixture
async def sql_ledger(database_url):
    store = SqlLedgerStore(database_url=database_url, timeout_seconds=2.0)
    components = create_ledger_components(store=store, audit_storage=SqlAuditStorage(store.engine))
    yield components
    await components.close()


@pytest.fixture
async def sql_user(sql_ledger):
    user_id = uuid4()
    await sql_ledger.accounts.register(user_id, {
        "savings_percent": "50",
        "expenses_percent": "30",
        "investments_percent": "20",
    })
    return user_id


class TestSqlLedgerFlows:
    """End-to-end flows on the SQL backend."""

    async def test_income_distribution_and_goal(self, sql_ledger, sql_user):
        await sql_ledger.income.add(sql_user, {"amount": "2000.55"})
        section = await sql_ledger.distribution.distribute(sql_user)
        assert section.savings == Decimal("1000.55")
        assert section.expenses == Decimal("600")
        assert section.investments == Decimal("400")

        goal = await sql_ledger.goals.create(sql_user, {
            "name": "Laptop",
            "category": "Tech",
            "target_amount": "800",
            "transfer_type": "EXPENSE",
        })
        result = await sql_ledger.goals.contribute(goal.id, sql_user, Decimal("1000"))

        assert result.completed
        assert result.excess_returned == Decimal("200")
        section = await sql_ledger.sections.snapshot(sql_user)
        assert section.savings == Decimal("200.55")
        assert section.expenses == Decimal("1400")

        profile = await sql_ledger.accounts.get_profile(sql_user)
        assert profile.savings_balance == Decimal("200.55")

    async def test_transactions_are_newest_first(self, sql_ledger, sql_user):
        for amount in ("1", "2", "3"):
            await sql_ledger.transactions.record(sql_user, {
                "type": "manual",
                "to_section": "expenses",
                "amount": amount,
            })

        page = await sql_ledger.transactions.list(sql_user, page_size=2)
        assert [t.amount for t in page.items] == [Decimal("3"), Decimal("2")]
        assert page.meta.total == 3
        assert page.items[0].to_section == SectionName.EXPENSES
        assert page.items[0].type == TransactionType.MANUAL
        assert page.items[0].created_at.tzinfo is not None

    async def test_failed_operation_rolls_back(self, sql_ledger, sql_user):
        await sql_ledger.transactions.adjust_balances(sql_user, {"expenses": "50"})

        with pytest.raises(InsufficientFundsError):
            await sql_ledger.expenses.create(sql_user, {"amount": "75", "category": "Rent"})

        assert (await sql_ledger.expenses.list(sql_user)).meta.total == 0
        assert (await sql_ledger.sections.snapshot(sql_user)).expenses == Decimal("50")

    async def test_investment_return_and_pool_repair(self, sql_ledger, sql_user):
        await sql_ledger.transactions.adjust_balances(sql_user, {"investments": "500"})
        investment = await sql_ledger.investments.create(sql_user, {"asset_name": "ACME", "amount": "500"})

        await sql_ledger.income.add(sql_user, {
            "amount": "650",
            "type": "investment_return",
            "investment_id": investment.id,
        })

        closed = await sql_ledger.investments.get(investment.id, sql_user)
        assert closed.is_closed
        assert closed.total_return == Decimal("650")
        assert await sql_ledger.income.total(sql_user) == Decimal("650")

    async def test_delete_account(self, sql_ledger, sql_user):
        await sql_ledger.income.add(sql_user, {"amount": "10"})
        removed = await sql_ledger.accounts.delete(sql_user)
        assert removed == 1
        assert (await sql_ledger.transactions.list(sql_user)).meta.total == 0

    async def test_audit_events_are_persisted(self, sql_ledger, sql_user):
        income = await sql_ledger.income.add(sql_user, {"amount": "10"})

        audit = sql_ledger.audit_logger.storage
        by_entity = await audit.get_events_by_entity("income", str(income.id))
        assert [e.event_type for e in by_entity] == [AuditEventType.INCOME_ADDED]
        assert by_entity[0].details["amount"] == "10"

        by_user = await audit.get_events_by_user(sql_user)
        assert by_user[0].event_type == AuditEventType.ACCOUNT_REGISTERED


class TestSqlPersistence:

    async def test_data_survives_reopening(self, database_url):
        user_id = uuid4()
        store = SqlLedgerStore(database_url=database_url)
        ledger = create_ledger_components(store=store, audit_storage=SqlAuditStorage(store.engine))
        await ledger.accounts.register(user_id)
        await ledger.transactions.adjust_balances(user_id, {"savings": "123.45"})
        await ledger.close()

        reopened = SqlLedgerStore(database_url=database_url)
        ledger = create_ledger_components(store=reopened, audit_storage=SqlAuditStorage(reopened.engine))
        section = await ledger.sections.snapshot(user_id)
        assert section.savings == Decimal("123.45")
        assert (await ledger.transactions.list(user_id)).meta.total == 1
        await ledger.close()

    async def test_backend_from_settings(self, database_url, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE_BACKEND", "sql")
        monkeypatch.setenv("LEDGER_STORE_DATABASE_URL", database_url)
        get_settings.cache_clear()

        ledger = create_ledger_components()
        assert isinstance(ledger.store, SqlLedgerStore)
        assert isinstance(ledger.audit_logger.storage, SqlAuditStorage)
        await ledger.close()

    def test_store_needs_a_database(self):
        with pytest.raises(ValueError):
            SqlLedgerStore()

    def test_unreachable_database(self, tmp_path):
        with pytest.raises(StorageError):
            SqlLedgerStore(database_url=f"sqlite:///{tmp_path}/missing/dir/ledger.db")


@pytest.fixture
def insert_first(database_url, sql_ledger):
    """Have another connection insert a row just before the store inserts it."""
    other = create_engine(database_url)
    listeners = []

    def install(table, make_row):
        raced = []

        def before_insert(conn, cursor, statement, parameters, context, executemany):
            if statement.startswith(f"INSERT INTO {table}") and not raced:
                raced.append(statement)
                with Session(other) as session, session.begin():
                    session.add(make_row())

        event.listen(sql_ledger.store.engine, "before_cursor_execute", before_insert)
        listeners.append(before_insert)
        return raced

    yield install
    for listener in listeners:
        event.remove(sql_ledger.store.engine, "before_cursor_execute", listener)
    other.dispose()


class TestSqlConcurrency:
    """Tests for other processes sharing the database."""

    async def test_locked_database_times_out(self, database_url, tmp_path):
        user_id = uuid4()
        store = SqlLedgerStore(database_url=database_url, timeout_seconds=0.1)
        ledger = create_ledger_components(store=store, audit_storage=InMemoryAuditStorage())
        await ledger.accounts.register(user_id)

        blocker = sqlite3.connect(tmp_path / "ledger.db", isolation_level=None)
        blocker.execute("BEGIN EXCLUSIVE")
        try:
            with pytest.raises(StorageTimeoutError):
                await ledger.sections.snapshot(user_id)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        assert (await ledger.sections.snapshot(user_id)).total == Decimal("0")
        await ledger.close()

    async def test_pool_created_elsewhere_is_picked_up(self, sql_ledger, sql_user, insert_first):
        raced = insert_first("ledger_income_pools", lambda: IncomePoolRow(
            user_id=sql_user,
            amount=Decimal("0"),
            updated_at=datetime.now(timezone.utc),
        ))

        assert await sql_ledger.income.total(sql_user) == Decimal("0")
        assert len(raced) == 1

        await sql_ledger.income.add(sql_user, {"amount": "15"})
        assert await sql_ledger.income.total(sql_user) == Decimal("15")

    async def test_register_raced_by_another_process(self, sql_ledger, insert_first):
        user_id = uuid4()
        raced = insert_first("ledger_profiles", lambda: ProfileRow(
            user_id=user_id,
            leftover_action=SectionName.SAVINGS,
        ))

        with pytest.raises(InvalidStateError):
            await sql_ledger.accounts.register(user_id)
        assert len(raced) == 1

    def test_lock_timeouts_are_translated(self):
        lock_timeout = OperationalError(
            "SELECT 1", {}, Exception("canceling statement due to lock timeout")
        )
        assert isinstance(_translate(lock_timeout), StorageTimeoutError)
        assert isinstance(_translate(PoolTimeoutError("QueuePool limit reached")), StorageTimeoutError)

        dropped = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        error = _translate(dropped)
        assert isinstance(error, ConnectionError)
        assert not isinstance(error, StorageTimeoutError)

    def test_engine_options_carry_the_timeout(self):
        assert _engine_options("sqlite:///ledger.db", 2.5) == {"connect_args": {"timeout": 2.5}}
        assert _engine_options("postgresql://db/ledger", 2.5) == {
            "pool_timeout": 2.5,
            "connect_args": {"connect_timeout": 3},
        }
