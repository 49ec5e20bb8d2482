"""Retry wrapper for fallible async RPC operations.

Thin layer over tenacity's ``AsyncRetrying`` that adds the two behaviours
the block finder relies on: a longer fixed pause when the node answers with
a rate-limit (HTTP 429) error, and a caller-supplied predicate that marks
errors as final.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from .errors import RpcFailureError, is_domain_error, is_retryable

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_BACKOFF_MULTIPLIER = 2
DEFAULT_RATE_LIMIT_DELAY_MS = 30000

RATE_LIMIT_MARKER = "429"


@dataclass(frozen=True)
class RetryOptions:
    """Retry settings for one call site. Delays are in milliseconds."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY_MS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    should_retry: Optional[Callable[[BaseException], bool]] = None
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY_MS
    operation_name: Optional[str] = None

    def named(self, operation_name: str) -> "RetryOptions":
        return replace(self, operation_name=operation_name)


def is_rate_limited(error: BaseException) -> bool:
    return RATE_LIMIT_MARKER in str(error)


def compute_delay_ms(options: RetryOptions, attempt_index: int, error: BaseException) -> float:
    """Delay before the retry following the ``attempt_index``-th failure (0-based)."""
    if is_rate_limited(error):
        return options.rate_limit_delay
    return options.initial_delay * (options.backoff_multiplier ** attempt_index)


def _wait_for(options: RetryOptions) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        delay_ms = compute_delay_ms(options, retry_state.attempt_number - 1, error)
        return delay_ms / 1000.0

    return wait


def _log_retry(options: RetryOptions) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        fields = {
            "attempt": retry_state.attempt_number,
            "max_retries": options.max_retries,
            "error": str(error),
            "rate_limited": is_rate_limited(error),
        }
        if retry_state.next_action is not None:
            fields["delay_ms"] = int(retry_state.next_action.sleep * 1000)

        name = f" for {options.operation_name}" if options.operation_name else ""
        logger.warning(
            f"Retry attempt {retry_state.attempt_number}/{options.max_retries}{name}",
            operation=options.operation_name,
            **fields,
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> T:
    """Run ``operation`` up to ``options.max_retries`` times.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        options: Retry settings (defaults: 3 attempts, 1000 ms, x2 backoff)

    Returns:
        Whatever ``operation`` returns on its first successful attempt

    Raises:
        The last underlying error once attempts are exhausted, or the first
        error for which ``options.should_retry`` returns False.
    """
    options = options or RetryOptions()
    should_retry = options.should_retry or (lambda error: True)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, options.max_retries)),
        wait=_wait_for(options),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry(options),
        sleep=asyncio.sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()


async def call_rpc(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions,
) -> T:
    """Retry an RPC call and report exhaustion as ``RpcFailureError``.

    Domain errors raised by ``operation`` are never retried and propagate
    unchanged.
    """
    if options.should_retry is None:
        options = replace(options, should_retry=is_retryable)

    try:
        return await with_retry(operation, options)
    except Exception as e:
        if is_domain_error(e):
            raise
        name = options.operation_name or "rpc"
        raise RpcFailureError(
            f"RPC call {name} failed after {options.max_retries} retries",
            operation=name,
            context={"Retries": options.max_retries},
            hint="Ensure the RPC endpoint is reachable and not rate limiting requests",
            cause=e,
        ) from e
