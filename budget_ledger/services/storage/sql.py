"""
SQLAlchemy Ledger Store

Durable ledger storage on any database SQLAlchemy can reach.

DESIGN DECISION: One database transaction per unit of work.
- Section and goal reads take row locks (SELECT ... FOR UPDATE) on
  databases that support them. Lock waits are capped by the store timeout.
- SQLite has a single writer, so all units of work on a SQLite
  database are serialized through one lock.
- Driver failures are translated into ledger storage errors; operational
  failures (lost connections, locked databases) are retryable.
"""

import asyncio
import math
import weakref
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Numeric,
    String,
    Text,
    create_engine,
    delete,
    func,
    make_url,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.types import TypeDecorator

from budget_ledger.errors import (
    ConnectionError,
    StorageError,
    StorageTimeoutError,
    WriteConflictError,
)
from budget_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_ledger.models.goal import SavingGoal, TransferType
from budget_ledger.models.income import (
    Expense,
    Income,
    IncomePoolBalance,
    IncomeType,
    Investment,
)
from budget_ledger.models.ledger import (
    Section,
    SectionName,
    Transaction,
    TransactionType,
    UserProfile,
)
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStore,
    LedgerUnitOfWork,
)


logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

MONEY = Numeric(14, 2)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends that store naive values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def _enum(enum_cls) -> SAEnum:
    """Store enum values (not names) as plain strings."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class ProfileRow(Base):
    __tablename__ = "ledger_profiles"

    user_id: Mapped[UUID] = mapped_column(primary_key=True)
    savings_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    expenses_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    investments_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    leftover_action: Mapped[SectionName] = mapped_column(_enum(SectionName))
    savings_balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))


class SectionRow(Base):
    __tablename__ = "ledger_sections"

    user_id: Mapped[UUID] = mapped_column(primary_key=True)
    savings: Mapped[Decimal] = mapped_column(MONEY)
    expenses: Mapped[Decimal] = mapped_column(MONEY)
    investments: Mapped[Decimal] = mapped_column(MONEY)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime)


class TransactionRow(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        Index("idx_ledger_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    type: Mapped[TransactionType] = mapped_column(_enum(TransactionType))
    from_section: Mapped[Optional[SectionName]] = mapped_column(_enum(SectionName), nullable=True)
    to_section: Mapped[Optional[SectionName]] = mapped_column(_enum(SectionName), nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


class IncomePoolRow(Base):
    __tablename__ = "ledger_income_pools"

    user_id: Mapped[UUID] = mapped_column(primary_key=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime)


class IncomeRow(Base):
    __tablename__ = "ledger_incomes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    type: Mapped[IncomeType] = mapped_column(_enum(IncomeType))
    investment_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


class SavingGoalRow(Base):
    __tablename__ = "ledger_saving_goals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(100))
    target_amount: Mapped[Decimal] = mapped_column(MONEY)
    current_amount: Mapped[Decimal] = mapped_column(MONEY)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    target_date: Mapped[date] = mapped_column(Date)
    transfer_type: Mapped[Optional[TransferType]] = mapped_column(_enum(TransferType), nullable=True)
    purpose: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    target_item: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class InvestmentRow(Base):
    __tablename__ = "ledger_investments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    asset_name: Mapped[str] = mapped_column(String(200))
    amount: Mapped[Decimal] = mapped_column(MONEY)
    investment_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    total_return: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class ExpenseRow(Base):
    __tablename__ = "ledger_expenses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    category: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


class AuditEventRow(Base):
    __tablename__ = "ledger_audit_events"

    event_id: Mapped[UUID] = mapped_column(primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    event_type: Mapped[AuditEventType] = mapped_column(_enum(AuditEventType))
    severity: Mapped[AuditSeverity] = mapped_column(_enum(AuditSeverity))
    user_id: Mapped[Optional[UUID]] = mapped_column(nullable=True, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(String(500))
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


def _engine_options(database_url: str, timeout_seconds: float) -> dict[str, Any]:
    """Connect and checkout limits for engines this store creates itself."""
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        # Seconds the driver waits on another connection's write lock
        return {"connect_args": {"timeout": timeout_seconds}}
    options: dict[str, Any] = {"pool_timeout": timeout_seconds}
    if backend == "postgresql":
        options["connect_args"] = {"connect_timeout": max(1, math.ceil(timeout_seconds))}
    return options


def _to_model(model_cls: type[M], row: Optional[Base]) -> Optional[M]:
    if row is None:
        return None
    return model_cls.model_validate(row, from_attributes=True)


# Driver messages for a lock wait that hit its limit
_LOCK_TIMEOUT_MARKERS = (
    "database is locked",
    "lock timeout",
    "lock wait timeout",
    "could not obtain lock",
)


def _translate(error: SQLAlchemyError) -> StorageError:
    if isinstance(error, PoolTimeoutError):
        return StorageTimeoutError(f"Timed out waiting for a database connection: {error}")
    if isinstance(error, OperationalError):
        message = str(error.orig).lower()
        if any(marker in message for marker in _LOCK_TIMEOUT_MARKERS):
            return StorageTimeoutError(f"Timed out waiting for a database lock: {error.orig}")
        return ConnectionError(f"Database unavailable: {error}")
    return StorageError(f"Database error: {error}")


# =============================================================================
# UNIT OF WORK
# =============================================================================

class SqlUnitOfWork(LedgerUnitOfWork):
    """Unit of work bound to one SQLAlchemy session and database transaction."""

    def __init__(self, user_id: UUID, session: Session):
        super().__init__(user_id)
        self._session = session

    def _insert(self, row_cls: type[Base], model: BaseModel, model_cls: type[M]) -> M:
        row = row_cls(**model.model_dump(exclude={"id"}))
        self._session.add(row)
        self._session.flush()
        return _to_model(model_cls, row)

    def _merge(self, row_cls: type[Base], model: BaseModel) -> None:
        row = self._session.merge(row_cls(**model.model_dump()))
        created = row in self._session.new
        try:
            self._session.flush()
        except IntegrityError as e:
            # A row we saw as missing was inserted by another writer
            if created:
                raise WriteConflictError(
                    f"Concurrent insert into {row_cls.__tablename__} for user {self.user_id}"
                ) from e
            raise

    def _owned(self, row_cls: type[Base], record_id: int, lock: bool = False):
        stmt = select(row_cls).where(row_cls.id == record_id, row_cls.user_id == self.user_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.scalars(stmt).first()

    def _delete_owned(self, row_cls: type[Base], record_id: int) -> bool:
        row = self._owned(row_cls, record_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def _page(self, row_cls: type[Base], model_cls: type[M], limit: int, offset: int, *criteria) -> list[M]:
        stmt = (
            select(row_cls)
            .where(row_cls.user_id == self.user_id, *criteria)
            .order_by(row_cls.created_at.desc(), row_cls.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [_to_model(model_cls, row) for row in self._session.scalars(stmt)]

    def _count(self, row_cls: type[Base], *criteria) -> int:
        stmt = select(func.count()).select_from(row_cls).where(row_cls.user_id == self.user_id, *criteria)
        return self._session.scalar(stmt) or 0

    # Profile and sections

    async def get_profile(self) -> Optional[UserProfile]:
        return _to_model(UserProfile, self._session.get(ProfileRow, self.user_id))

    async def save_profile(self, profile: UserProfile) -> None:
        self._merge(ProfileRow, profile)

    async def get_section(self) -> Optional[Section]:
        stmt = select(SectionRow).where(SectionRow.user_id == self.user_id).with_for_update()
        return _to_model(Section, self._session.scalars(stmt).first())

    async def save_section(self, section: Section) -> None:
        self._merge(SectionRow, section)

    # Transactions

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        return self._insert(TransactionRow, transaction, Transaction)

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return _to_model(Transaction, self._owned(TransactionRow, transaction_id))

    async def update_transaction_description(
        self,
        transaction_id: int,
        description: str,
    ) -> Optional[Transaction]:
        row = self._owned(TransactionRow, transaction_id, lock=True)
        if row is None:
            return None
        row.description = description
        self._session.flush()
        return _to_model(Transaction, row)

    def _type_criteria(self, type_filter: Optional[TransactionType]) -> tuple:
        return () if type_filter is None else (TransactionRow.type == type_filter,)

    async def list_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        return self._page(TransactionRow, Transaction, limit, offset, *self._type_criteria(type_filter))

    async def count_transactions(
        self,
        type_filter: Optional[TransactionType] = None,
    ) -> int:
        return self._count(TransactionRow, *self._type_criteria(type_filter))

    # Income

    async def get_income_pool(self) -> Optional[IncomePoolBalance]:
        stmt = select(IncomePoolRow).where(IncomePoolRow.user_id == self.user_id).with_for_update()
        return _to_model(IncomePoolBalance, self._session.scalars(stmt).first())

    async def save_income_pool(self, pool: IncomePoolBalance) -> None:
        self._merge(IncomePoolRow, pool)

    async def add_income(self, income: Income) -> Income:
        return self._insert(IncomeRow, income, Income)

    async def sum_incomes(self) -> Decimal:
        stmt = select(func.coalesce(func.sum(IncomeRow.amount), 0)).where(IncomeRow.user_id == self.user_id)
        return Decimal(str(self._session.scalar(stmt))).quantize(Decimal("0.01"))

    async def list_incomes(self, limit: int = 100, offset: int = 0) -> list[Income]:
        return self._page(IncomeRow, Income, limit, offset)

    async def count_incomes(self) -> int:
        return self._count(IncomeRow)

    # Saving goals

    async def add_goal(self, goal: SavingGoal) -> SavingGoal:
        return self._insert(SavingGoalRow, goal, SavingGoal)

    async def get_goal(self, goal_id: int) -> Optional[SavingGoal]:
        return _to_model(SavingGoal, self._owned(SavingGoalRow, goal_id, lock=True))

    async def save_goal(self, goal: SavingGoal) -> None:
        self._merge(SavingGoalRow, goal)

    async def delete_goal(self, goal_id: int) -> bool:
        return self._delete_owned(SavingGoalRow, goal_id)

    async def list_goals(self, limit: int = 100, offset: int = 0) -> list[SavingGoal]:
        return self._page(SavingGoalRow, SavingGoal, limit, offset)

    async def count_goals(self) -> int:
        return self._count(SavingGoalRow)

    # Investments

    async def add_investment(self, investment: Investment) -> Investment:
        return self._insert(InvestmentRow, investment, Investment)

    async def get_investment(self, investment_id: int) -> Optional[Investment]:
        return _to_model(Investment, self._owned(InvestmentRow, investment_id, lock=True))

    async def save_investment(self, investment: Investment) -> None:
        self._merge(InvestmentRow, investment)

    async def delete_investment(self, investment_id: int) -> bool:
        return self._delete_owned(InvestmentRow, investment_id)

    async def list_investments(self, limit: int = 100, offset: int = 0) -> list[Investment]:
        return self._page(InvestmentRow, Investment, limit, offset)

    async def count_investments(self) -> int:
        return self._count(InvestmentRow)

    # Expenses

    async def add_expense(self, expense: Expense) -> Expense:
        return self._insert(ExpenseRow, expense, Expense)

    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        return _to_model(Expense, self._owned(ExpenseRow, expense_id, lock=True))

    async def save_expense(self, expense: Expense) -> None:
        self._merge(ExpenseRow, expense)

    async def delete_expense(self, expense_id: int) -> bool:
        return self._delete_owned(ExpenseRow, expense_id)

    async def list_expenses(self, limit: int = 100, offset: int = 0) -> list[Expense]:
        return self._page(ExpenseRow, Expense, limit, offset)

    async def count_expenses(self) -> int:
        return self._count(ExpenseRow)

    # Account removal

    async def delete_user_data(self) -> int:
        removed = self._count(TransactionRow)
        for row_cls in (
            TransactionRow,
            IncomeRow,
            IncomePoolRow,
            SavingGoalRow,
            InvestmentRow,
            ExpenseRow,
            SectionRow,
            ProfileRow,
        ):
            self._session.execute(delete(row_cls).where(row_cls.user_id == self.user_id))
        return removed


# =============================================================================
# STORE
# =============================================================================

class SqlLedgerStore(LedgerStore):
    """
    Ledger store over a SQLAlchemy engine.

    Creates its tables on first use of a database. Waits for a pooled
    connection, a SQLite write lock or a row lock are all bounded by
    `timeout_seconds` and surface as StorageTimeoutError. An engine passed
    in keeps its own connect options; only row lock waits are bounded then.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        echo: bool = False,
        timeout_seconds: float = 5.0,
    ):
        if engine is None:
            if not database_url:
                raise ValueError("SqlLedgerStore needs a database_url or an engine")
            engine = create_engine(
                database_url,
                echo=echo,
                **_engine_options(database_url, timeout_seconds),
            )
        self._engine = engine
        self._timeout_seconds = timeout_seconds
        self._single_writer = engine.dialect.name == "sqlite"
        self._locks: weakref.WeakValueDictionary[Optional[UUID], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise _translate(e) from e

    @property
    def engine(self) -> Engine:
        return self._engine

    def _lock_for(self, user_id: UUID) -> asyncio.Lock:
        key = None if self._single_writer else user_id
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _bound_lock_waits(self, session: Session) -> None:
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            millis = max(1, int(self._timeout_seconds * 1000))
            session.execute(text(f"SET LOCAL lock_timeout = {millis}"))
        elif dialect in ("mysql", "mariadb"):
            seconds = max(1, math.ceil(self._timeout_seconds))
            session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))

    @asynccontextmanager
    async def unit_of_work(self, user_id: UUID) -> AsyncIterator[SqlUnitOfWork]:
        lock = self._lock_for(user_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("unit_of_work_timeout", user_id=str(user_id))
            raise StorageTimeoutError(
                f"Timed out after {self._timeout_seconds}s waiting for user {user_id}"
            ) from e

        try:
            with Session(self._engine, expire_on_commit=False) as session:
                try:
                    session.begin()
                    self._bound_lock_waits(session)
                    uow = SqlUnitOfWork(user_id, session)
                    yield uow
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    raise _translate(e) from e
                except BaseException:
                    session.rollback()
                    raise
        finally:
            lock.release()

        await uow.run_after_commit_hooks()

    async def close(self) -> None:
        self._engine.dispose()


class SqlAuditStorage(AuditStorageInterface):
    """Append-only audit table next to the ledger tables."""

    def __init__(self, engine: Engine):
        self._engine = engine
        Base.metadata.create_all(engine, tables=[AuditEventRow.__table__])

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            with Session(self._engine) as session, session.begin():
                session.add(AuditEventRow(**event.model_dump()))
            return True
        except SQLAlchemyError as e:
            raise _translate(e) from e

    def _select(self, stmt) -> list[AuditEvent]:
        try:
            with Session(self._engine) as session:
                return [_to_model(AuditEvent, row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise _translate(e) from e

    async def get_events_by_user(
        self,
        user_id: UUID,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(AuditEventRow.user_id == user_id)
            .order_by(AuditEventRow.timestamp)
            .limit(limit)
        )
        return self._select(stmt)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )
        return self._select(stmt)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        stmt = select(AuditEventRow).order_by(AuditEventRow.timestamp.desc()).limit(limit)
        return self._select(stmt)
