from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chain_indexer.app.domain.errors import TransientChainError

T = TypeVar("T")


def _log_before_sleep(log: logging.Logger, what: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        log.warning(
            "%s failed (attempt %s), retrying in %.2fs: %s",
            what,
            state.attempt_number,
            state.next_action.sleep if state.next_action is not None else 0.0,
            exc,
        )

    return _before_sleep


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    log: logging.Logger,
    what: str,
    max_attempts: int,
    delay: float,
    retry_on: tuple[type[BaseException], ...] = (TransientChainError,),
) -> T:
    """
    Await `operation` with exponential backoff on transient errors.

    The first retry waits `delay` seconds, doubling afterwards. The last
    error is re-raised unchanged once max_attempts is exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=delay, min=delay, max=max(delay, delay * 2 ** (max_attempts - 1))),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_before_sleep(log, what),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()

    raise AssertionError("unreachable")  # pragma: no cover
