"""
Audit Models for Budget Ledger

Every committed ledger change is logged for audit purposes.
This provides:
1. Traceability of every money movement
2. Debugging information when things go wrong
3. The ability to reconstruct what happened to a user's balances

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Events are only emitted after the unit of work they describe commits.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger-affecting operation has its own event type.
    """
    # Accounts
    ACCOUNT_REGISTERED = "account_registered"
    ACCOUNT_DELETED = "account_deleted"
    ALLOCATION_UPDATED = "allocation_updated"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_DESCRIPTION_UPDATED = "transaction_description_updated"
    SECTIONS_ADJUSTED = "sections_adjusted"

    # Income
    INCOME_ADDED = "income_added"
    INCOME_POOL_REPAIRED = "income_pool_repaired"
    INCOME_DISTRIBUTED = "income_distributed"

    # Saving goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_CONTRIBUTION = "goal_contribution"
    GOAL_COMPLETED = "goal_completed"
    GOAL_FUNDS_RETURNED = "goal_funds_returned"
    GOAL_CANCELLED = "goal_cancelled"

    # Spending records
    INVESTMENT_CREATED = "investment_created"
    INVESTMENT_CLOSED = "investment_closed"
    INVESTMENT_DELETED = "investment_deleted"
    EXPENSE_CREATED = "expense_created"
    EXPENSE_DELETED = "expense_deleted"

    # System events
    STORE_RETRY = "store_retry"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every committed ledger change creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Whose money this is about
    user_id: Optional[UUID] = Field(
        default=None,
        description="User whose ledger the event touches"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'goal', 'section')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _money(amount: Decimal) -> str:
    return str(amount)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_recorded(transaction)
        event = AuditEventBuilder.goal_completed(user_id, goal_id, ...)
    """

    @staticmethod
    def account_registered(user_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_REGISTERED,
            user_id=user_id,
            entity_type="section",
            entity_id=str(user_id),
            description="Ledger account registered with empty sections",
        )

    @staticmethod
    def account_deleted(user_id: UUID, transaction_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="section",
            entity_id=str(user_id),
            description="Ledger account and all its records deleted",
            details={"transaction_count": transaction_count},
        )

    @staticmethod
    def allocation_updated(user_id: UUID, allocation: dict[str, str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_UPDATED,
            user_id=user_id,
            entity_type="profile",
            entity_id=str(user_id),
            description="Distribution percentages updated",
            details=allocation,
        )

    @staticmethod
    def transaction_recorded(
        user_id: UUID,
        transaction_id: int,
        transaction_type: str,
        from_section: Optional[str],
        to_section: Optional[str],
        amount: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=str(transaction_id),
            description=f"{transaction_type} transaction: {from_section or '-'} -> {to_section or '-'} ({_money(amount)})",
            details={
                "type": transaction_type,
                "from_section": from_section,
                "to_section": to_section,
                "amount": _money(amount),
            },
        )

    @staticmethod
    def transaction_description_updated(user_id: UUID, transaction_id: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DESCRIPTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=str(transaction_id),
            description="Transaction description edited",
        )

    @staticmethod
    def sections_adjusted(user_id: UUID, changes: dict[str, str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SECTIONS_ADJUSTED,
            user_id=user_id,
            entity_type="section",
            entity_id=str(user_id),
            description=f"Manual adjustment of {len(changes)} section(s)",
            details=changes,
        )

    @staticmethod
    def income_added(
        user_id: UUID,
        income_id: int,
        income_type: str,
        amount: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_ADDED,
            user_id=user_id,
            entity_type="income",
            entity_id=str(income_id),
            description=f"Income added: {_money(amount)} ({income_type})",
            details={"type": income_type, "amount": _money(amount)},
        )

    @staticmethod
    def income_pool_repaired(user_id: UUID, amount: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_POOL_REPAIRED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="income_pool",
            entity_id=str(user_id),
            description="Income pool missing, rebuilt from income history",
            details={"amount": _money(amount)},
        )

    @staticmethod
    def income_distributed(
        user_id: UUID,
        total: Decimal,
        allocations: dict[str, str],
        leftover_section: str,
        remainder: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_DISTRIBUTED,
            user_id=user_id,
            entity_type="income_pool",
            entity_id=str(user_id),
            description=f"Distributed {_money(total)} of available income",
            details={
                "total": _money(total),
                "allocations": allocations,
                "leftover_section": leftover_section,
                "remainder": _money(remainder),
            },
        )

    @staticmethod
    def goal_created(user_id: UUID, goal_id: int, name: str, target_amount: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Saving goal created: {name}",
            details={"target_amount": _money(target_amount)},
        )

    @staticmethod
    def goal_updated(user_id: UUID, goal_id: int, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_UPDATED,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description="Saving goal edited",
            details={"fields": fields},
        )

    @staticmethod
    def goal_contribution(
        user_id: UUID,
        goal_id: int,
        amount: Decimal,
        current_amount: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CONTRIBUTION,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Contributed {_money(amount)} to saving goal",
            details={
                "amount": _money(amount),
                "current_amount": _money(current_amount),
            },
        )

    @staticmethod
    def goal_completed(
        user_id: UUID,
        goal_id: int,
        target_amount: Decimal,
        payout_section: str,
        excess_returned: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Saving goal completed, {_money(target_amount)} moved to {payout_section}",
            details={
                "target_amount": _money(target_amount),
                "payout_section": payout_section,
                "excess_returned": _money(excess_returned),
            },
        )

    @staticmethod
    def goal_funds_returned(user_id: UUID, goal_id: int, amount: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_FUNDS_RETURNED,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Returned {_money(amount)} from saving goal to savings",
            details={"amount": _money(amount)},
        )

    @staticmethod
    def goal_cancelled(user_id: UUID, goal_id: int, refunded: Decimal, was_completed: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CANCELLED,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Saving goal deleted, {_money(refunded)} refunded to savings",
            details={
                "refunded": _money(refunded),
                "was_completed": was_completed,
            },
        )

    @staticmethod
    def investment_created(user_id: UUID, investment_id: int, asset_name: str, amount: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_CREATED,
            user_id=user_id,
            entity_type="investment",
            entity_id=str(investment_id),
            description=f"Investment in {asset_name}: {_money(amount)}",
            details={"asset_name": asset_name, "amount": _money(amount)},
        )

    @staticmethod
    def investment_closed(user_id: UUID, investment_id: int, total_return: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_CLOSED,
            user_id=user_id,
            entity_type="investment",
            entity_id=str(investment_id),
            description=f"Investment closed with return {_money(total_return)}",
            details={"total_return": _money(total_return)},
        )

    @staticmethod
    def investment_deleted(user_id: UUID, investment_id: int, refunded: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_DELETED,
            user_id=user_id,
            entity_type="investment",
            entity_id=str(investment_id),
            description=f"Investment deleted, {_money(refunded)} refunded",
            details={"refunded": _money(refunded)},
        )

    @staticmethod
    def expense_created(user_id: UUID, expense_id: int, category: str, amount: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            description=f"Expense recorded: {category} {_money(amount)}",
            details={"category": category, "amount": _money(amount)},
        )

    @staticmethod
    def expense_deleted(user_id: UUID, expense_id: int, refunded: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            description=f"Expense deleted, {_money(refunded)} refunded",
            details={"refunded": _money(refunded)},
        )

    @staticmethod
    def store_retry(operation: str, attempt: int, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_RETRY,
            severity=AuditSeverity.WARNING,
            description=f"Retrying {operation} after attempt {attempt}",
            error_message=error_message,
            details={"operation": operation, "attempt": attempt},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
