"""
Bounded retry for transient store failures.

Only top-level operations retry. An operation running inside a caller's
unit of work must surface the failure so the whole scope rolls back and
the caller decides.
"""

from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.audit import AuditLogger
from budget_ledger.config import get_settings
from budget_ledger.errors import RetryableStorageError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def run_with_store_retry(
    operation: str,
    attempt_fn: Callable[[], Awaitable[T]],
    audit_logger: Optional[AuditLogger] = None,
) -> T:
    """
    Run `attempt_fn`, retrying retryable storage errors.

    Attempts and backoff come from the store settings at call time.
    Non-retryable errors and the last retryable error are re-raised unchanged.
    """
    store_settings = get_settings().store
    failures: list[str] = []

    def record_failure(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        failures.append(str(error))
        logger.warning(
            "store_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(RetryableStorageError),
        stop=stop_after_attempt(store_settings.retry_attempts),
        wait=wait_exponential(
            multiplier=store_settings.retry_wait_min_seconds,
            min=store_settings.retry_wait_min_seconds,
            max=store_settings.retry_wait_max_seconds,
        ),
        before_sleep=record_failure,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                if failures and audit_logger is not None:
                    await audit_logger.log_store_retry(
                        operation=operation,
                        attempt=attempt.retry_state.attempt_number - 1,
                        error_message=failures[-1],
                    )
                return await attempt_fn()
    except RetryableStorageError as e:
        logger.error("store_retries_exhausted", operation=operation, error=str(e))
        if audit_logger is not None:
            await audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation, "attempts": store_settings.retry_attempts},
            )
        raise
