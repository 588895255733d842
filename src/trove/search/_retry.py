"""Per-call retry with exponential backoff and timeout for network operations."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from trove.exceptions import ProviderError, VectorStoreError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from trove.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return whether *exc* is a fault worth retrying."""
    if isinstance(exc, ProviderError | VectorStoreError):
        return exc.transient
    return isinstance(exc, TimeoutError | ConnectionError)


async def retry_call(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    on_timeout: Callable[[str], Exception],
) -> T:
    """Await ``fn()`` under *policy*.

    Each attempt gets its own timeout; transient failures (see
    :func:`is_transient`) are retried with exponential backoff until the
    attempt budget is spent, then the last error is re-raised.  A timeout
    surfaces as the transient error built by *on_timeout*.
    """

    async def attempt_once() -> T:
        if policy.timeout is None:
            return await fn()
        try:
            async with asyncio.timeout(policy.timeout):
                return await fn()
        except TimeoutError as exc:
            raise on_timeout(f"{operation} timed out after {policy.timeout}s") from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_retry(operation),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await attempt_once()
    raise AssertionError("unreachable")  # pragma: no cover


def _log_retry(operation: str) -> Callable[[RetryCallState], Any]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s failed (attempt %d), retrying in %.2fs: %s",
            operation,
            state.attempt_number,
            state.next_action.sleep if state.next_action else 0.0,
            exc,
        )

    return before_sleep
