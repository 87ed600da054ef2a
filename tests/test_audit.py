"""Tests for the audit logger."""

from uuid import uuid4

from budget_ledger.audit import AuditLogger
from budget_ledger.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from budget_ledger.orchestrator import create_ledger_components
from budget_ledger.services.storage import InMemoryAuditStorage


class BrokenAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise RuntimeError("audit table is gone")


class TestAuditLogger:
    """Tests for local logging and persistence of audit events."""

    async def test_event_is_persisted(self):
        storage = InMemoryAuditStorage()
        audit = AuditLogger(storage)
        user_id = uuid4()

        assert await audit.log(AuditEventBuilder.account_registered(user_id))

        events = await storage.get_events_by_user(user_id)
        assert [e.event_type for e in events] == [AuditEventType.ACCOUNT_REGISTERED]

    async def test_without_storage_only_logs(self):
        audit = AuditLogger()
        assert audit.storage is None
        assert await audit.log(AuditEventBuilder.account_registered(uuid4()))

    async def test_storage_failure_does_not_raise(self):
        audit = AuditLogger(BrokenAuditStorage())
        assert await audit.log(AuditEventBuilder.account_registered(uuid4())) is False

    async def test_storage_failure_does_not_break_the_ledger(self, store, user_id):
        ledger = create_ledger_components(store=store, audit_storage=BrokenAuditStorage())
        profile = await ledger.accounts.register(user_id)
        assert profile.user_id == user_id

    async def test_log_error(self):
        storage = InMemoryAuditStorage()
        audit = AuditLogger(storage)

        await audit.log_error("ReconciliationError", "savings mirror drifted", {"drift": "5.00"})

        (event,) = await storage.get_recent_events()
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "savings mirror drifted"
