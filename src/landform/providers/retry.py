"""
Retries for provider calls.

Transient ``ProviderError`` failures are retried with bounded exponential
backoff; permanent failures and ``ResourceNotFound`` are raised at once.
Every provider call made by the engine goes through ``call_with_retry``:
apply, refresh reads and crash recovery alike.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    stop_never,
    wait_exponential,
)

from landform.core.errors import ProviderError, ResourceNotFound, TransientProviderError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient provider failures."""

    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    max_attempts: int = 5


def is_transient(exc: BaseException) -> bool:
    return (
        isinstance(exc, ProviderError)
        and exc.transient
        and not isinstance(exc, ResourceNotFound)
    )


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_provider_call",
        attempt=retry_state.attempt_number,
        wait=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc),
    )


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    timeout: float | None = None,
    stop_when: Callable[[], bool] | None = None,
    attempts: list[int] | None = None,
) -> T:
    """Await ``fn()`` until it succeeds, fails permanently or retries run out.

    Args:
        fn: Zero-argument callable returning a fresh awaitable per attempt
        policy: Backoff and attempt limit
        timeout: Per-attempt timeout; an expired attempt counts as transient
        stop_when: Checked after a failure; True stops retrying
        attempts: One-element list updated with the attempt number
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_transient),
        stop=stop_any(
            stop_after_attempt(policy.max_attempts),
            (lambda _state: stop_when()) if stop_when is not None else stop_never,
        ),
        wait=wait_exponential(multiplier=policy.base_seconds, max=policy.cap_seconds),
        before_sleep=_log_retry,
        reraise=True,
    )
    result: Any = None
    async for attempt in retrying:
        with attempt:
            if attempts is not None:
                attempts[0] = attempt.retry_state.attempt_number
            try:
                result = await asyncio.wait_for(fn(), timeout)
            except asyncio.TimeoutError as exc:
                raise TransientProviderError(
                    f"Provider call timed out after {timeout}s"
                ) from exc
    return result
