"""
Shared fixtures for Budget Ledger tests.

Test strategy:
1. Every test gets a fresh in-memory store and its own event loop
2. Retry backoff is zeroed so retry tests run instantly
3. Balance conservation is checked against the transaction history
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from budget_ledger.config import get_settings
from budget_ledger.models.ledger import BALANCE_SECTIONS, SectionAdjustment
from budget_ledger.orchestrator import create_ledger_components
from budget_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture(autouse=True)
def ledger_env(monkeypatch, tmp_path):
    """Isolate settings from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "LEDGER_STORE_BACKEND",
        "LEDGER_STORE_DATABASE_URL",
        "LEDGER_DEFAULT_PAGE_SIZE",
        "LEDGER_MAX_PAGE_SIZE",
        "LEDGER_MAX_DESCRIPTION_LENGTH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LEDGER_STORE_RETRY_WAIT_MIN_SECONDS", "0")
    monkeypatch.setenv("LEDGER_STORE_RETRY_WAIT_MAX_SECONDS", "0")
    monkeypatch.setenv("LEDGER_STORE_RETRY_ATTEMPTS", "3")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryLedgerStore(timeout_seconds=1.0)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(store, audit_storage):
    return create_ledger_components(store=store, audit_storage=audit_storage)


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
async def registered_user(ledger, user_id):
    """A user splitting income 50/30/20 with leftovers to savings."""
    await ledger.accounts.register(user_id, {
        "savings_percent": Decimal("50"),
        "expenses_percent": Decimal("30"),
        "investments_percent": Decimal("20"),
    })
    return user_id


@pytest.fixture
def fund(ledger):
    """Set section balances through recorded manual adjustments."""

    async def set_balances(user_id, savings="0", expenses="0", investments="0"):
        return await ledger.transactions.adjust_balances(
            user_id,
            SectionAdjustment(
                savings=Decimal(savings),
                expenses=Decimal(expenses),
                investments=Decimal(investments),
            ),
        )

    return set_balances


@pytest.fixture
def all_transactions(ledger):
    """Every transaction of a user, newest first."""

    async def collect(user_id):
        transactions = []
        page = 1
        while True:
            result = await ledger.transactions.list(user_id, page=page, page_size=100)
            transactions.extend(result.items)
            if page >= result.meta.total_pages:
                return transactions
            page += 1

    return collect


@pytest.fixture
def assert_conserved(ledger, all_transactions):
    """Check every section balance equals the signed sum of its transactions."""

    async def check(user_id):
        section = await ledger.sections.snapshot(user_id)
        transactions = await all_transactions(user_id)
        for name in BALANCE_SECTIONS:
            expected = sum((t.signed_amount(name) for t in transactions), Decimal("0"))
            assert section.balance(name) == expected, name.value

        profile = await ledger.accounts.get_profile(user_id)
        assert profile.savings_balance == section.savings

    return check
