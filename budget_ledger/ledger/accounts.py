"""
Account Service

Registers users with the ledger, edits the allocation settings the
distribution engine reads, and removes every ledger record of a user.
"""

from typing import Any, Optional, Union
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import InvalidStateError, NotFoundError
from budget_ledger.ledger.base import LedgerComponent, parse_request
from budget_ledger.ledger.sections import SectionBalanceManager
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.models.ledger import AllocationUpdate, UserProfile
from budget_ledger.services.storage import LedgerStore, LedgerUnitOfWork


logger = structlog.get_logger(__name__)


class AccountService(LedgerComponent):

    def __init__(
        self,
        store: LedgerStore,
        sections: SectionBalanceManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._sections = sections

    async def register(
        self,
        user_id: UUID,
        allocation: Union[AllocationUpdate, dict[str, Any], None] = None,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> UserProfile:
        """
        Create the user's profile and zeroed sections.

        Raises:
            InvalidStateError: If the user is already registered
            ValidationError: If the percentages are invalid
        """
        allocation = parse_request(AllocationUpdate, allocation or {})
        profile = parse_request(UserProfile, {
            "user_id": user_id,
            **allocation.model_dump(exclude_none=True),
        })

        async def work(scope: LedgerUnitOfWork) -> UserProfile:
            if await scope.get_profile() is not None:
                raise InvalidStateError(f"User {user_id} is already registered")
            await scope.save_profile(profile)
            await self._sections.create(user_id, uow=scope)
            self._audit_on_commit(scope, AuditEventBuilder.account_registered(user_id))
            return profile

        return await self._run("register_account", user_id, work, uow)

    async def get_profile(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> UserProfile:
        async def work(scope: LedgerUnitOfWork) -> UserProfile:
            profile = await scope.get_profile()
            if profile is None:
                raise NotFoundError(f"Profile not found for user {user_id}")
            return profile

        return await self._run("get_profile", user_id, work, uow)

    async def update_allocation(
        self,
        user_id: UUID,
        allocation: Union[AllocationUpdate, dict[str, Any]],
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> UserProfile:
        """
        Change distribution percentages or the leftover section.

        The resulting percentages must still total at most 100.
        """
        allocation = parse_request(AllocationUpdate, allocation)
        changes = allocation.model_dump(exclude_none=True)

        async def work(scope: LedgerUnitOfWork) -> UserProfile:
            profile = await self.get_profile(user_id, uow=scope)
            profile = parse_request(UserProfile, {**profile.model_dump(), **changes})
            await scope.save_profile(profile)
            if changes:
                self._audit_on_commit(
                    scope,
                    AuditEventBuilder.allocation_updated(
                        user_id, {key: str(getattr(value, "value", value)) for key, value in changes.items()}
                    ),
                )
            return profile

        return await self._run("update_allocation", user_id, work, uow)

    async def delete(
        self,
        user_id: UUID,
        uow: Optional[LedgerUnitOfWork] = None,
    ) -> int:
        """
        Remove the user and every ledger record they own.

        Returns:
            Number of transactions removed
        """

        async def work(scope: LedgerUnitOfWork) -> int:
            if await scope.get_profile() is None:
                raise NotFoundError(f"Profile not found for user {user_id}")
            removed = await scope.delete_user_data()
            logger.info("account_deleted", user_id=str(user_id), transactions=removed)
            self._audit_on_commit(scope, AuditEventBuilder.account_deleted(user_id, removed))
            return removed

        return await self._run("delete_account", user_id, work, uow)
