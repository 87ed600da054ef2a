"""
Shared plumbing for ledger services.

Every public ledger operation takes an optional `uow`. Passing one runs
the operation inside the caller's unit of work: it commits or rolls back
with the caller and is never retried on its own. Without one, the
operation opens its own unit of work and retries transient store failures.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import pydantic

from budget_ledger.audit import AuditLogger
from budget_ledger.config import get_settings
from budget_ledger.errors import ValidationError
from budget_ledger.ledger.retry import run_with_store_retry
from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import PageMeta
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


T = TypeVar("T")
M = TypeVar("M", bound=pydantic.BaseModel)

CENT = Decimal("0.01")


def parse_request(model_cls: type[M], data: Any) -> M:
    """
    Coerce caller input into a request model.

    Pydantic failures become ledger ValidationErrors naming the first bad field.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = first["msg"] if field is None else f"{field}: {first['msg']}"
        raise ValidationError(message, field=field) from e


def money(amount: Any, field: str = "amount") -> Decimal:
    """
    Convert caller input into a signed two-decimal money value.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValidationError: If the value is not a finite number with at most 2 decimals
    """
    try:
        value = Decimal(str(amount))
        cents = value.quantize(CENT) if value.is_finite() else None
    except ArithmeticError:
        raise ValidationError(f"Invalid amount: {amount}", field=field) from None
    if cents is None:
        raise ValidationError(f"Invalid amount: {amount}", field=field)
    if value != cents:
        raise ValidationError("Amount cannot have more than 2 decimal places", field=field)
    return value


def positive_amount(amount: Any, field: str = "amount") -> Decimal:
    value = money(amount, field)
    if value <= 0:
        raise ValidationError("Amount must be greater than 0", field=field)
    return value


def validate_description(description: Optional[str]) -> str:
    description = (description or "").strip()
    limit = get_settings().ledger.max_description_length
    if len(description) > limit:
        raise ValidationError(
            f"Description cannot be longer than {limit} characters",
            field="description",
        )
    return description


class LedgerComponent:
    """Base for services that run against the ledger store."""

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def _run(
        self,
        operation: str,
        user_id: UUID,
        work: Callable[[LedgerUnitOfWork], Awaitable[T]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> T:
        """Run `work` in the caller's scope, or in a fresh retried scope."""
        if uow is not None:
            if uow.user_id != user_id:
                raise ValidationError("Unit of work belongs to a different user")
            return await work(uow)

        async def attempt() -> T:
            async with self._store.unit_of_work(user_id) as scope:
                return await work(scope)

        return await run_with_store_retry(operation, attempt, self._audit)

    def _audit_on_commit(self, uow: LedgerUnitOfWork, event: AuditEvent) -> None:
        async def emit() -> None:
            await self._audit.log(event)

        uow.after_commit(emit)

    @staticmethod
    def _page_window(page: int, page_size: Optional[int]) -> tuple[int, int]:
        """Validate paging input and return (page, page_size)."""
        ledger_settings = get_settings().ledger
        page_size = page_size or ledger_settings.default_page_size
        if page < 1:
            raise ValidationError("Page must be 1 or greater", field="page")
        if not 1 <= page_size <= ledger_settings.max_page_size:
            raise ValidationError(
                f"Page size must be between 1 and {ledger_settings.max_page_size}",
                field="page_size",
            )
        return page, page_size

    @staticmethod
    def _meta(total: int, page: int, page_size: int) -> PageMeta:
        return PageMeta.build(total=total, page=page, page_size=page_size)
