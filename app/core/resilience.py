"""
Timeout and retry wrappers for outbound calls.

Every call to an unreliable third-party service goes through the same stack:

    breaker.execute -> with_retry -> with_timeout -> operation

`guarded_call` composes the three. Operations are zero-argument callables
returning an awaitable, so each attempt creates a fresh coroutine.

Worst-case latency of one guarded call is
`timeout * (max_retries + 1) + sum(backoff delays)`.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Set, TypeVar

from app.core.errors import CallTimeoutError, RetryExhaustedError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]

# Upper bound of the additive jitter, in seconds
MAX_JITTER_SECONDS = 0.5

# Strong references to abandoned tasks so they aren't garbage-collected mid-flight
_abandoned: Set["asyncio.Future[Any]"] = set()


def _discard_abandoned(task: "asyncio.Future[Any]") -> None:
    _abandoned.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned call finished with error", error=str(task.exception()))


async def with_timeout(operation: Operation[T], timeout: float, label: str) -> T:
    """
    Run `operation` with a deadline of `timeout` seconds.

    On expiry raises CallTimeoutError. The in-flight call is abandoned, not
    cancelled: it may still complete (and perform its side effect) later, and
    its late result or exception is consumed and dropped.
    """
    task = asyncio.ensure_future(operation())
    done, _ = await asyncio.wait({task}, timeout=timeout)

    if task in done:
        return task.result()

    logger.error("External call timed out", label=label, timeout=timeout)
    _abandoned.add(task)
    task.add_done_callback(_discard_abandoned)
    raise CallTimeoutError(label, timeout)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """
    Delay before retry `attempt` (1-based).

    Exponential backoff plus additive jitter in [0, MAX_JITTER_SECONDS).
    """
    return base_delay * (2 ** (attempt - 1)) + random.random() * MAX_JITTER_SECONDS


async def with_retry(
    operation: Operation[T],
    *,
    label: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> T:
    """
    Run `operation`, retrying failures up to `max_retries` times.

    Attempt 0 runs immediately; at most `max_retries + 1` attempts are made.
    Raises RetryExhaustedError wrapping the last failure, and ValueError for
    a negative `max_retries`.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries:
                logger.error("All retry attempts exhausted", label=label, max_retries=max_retries)
                raise RetryExhaustedError(label, max_retries + 1, e) from e
            attempt += 1
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Retrying external call",
                label=label,
                attempt=attempt,
                max_retries=max_retries,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)


async def guarded_call(
    breaker,
    operation: Operation[T],
    *,
    timeout: float,
    max_retries: int = 3,
    base_delay: float = 1.0,
    label: str | None = None,
) -> T:
    """
    Run `operation` through circuit breaker, retry and timeout.

    The breaker sees one outcome per guarded call: either the result or the
    terminal RetryExhaustedError.
    """
    label = label or breaker.name

    async def attempt() -> T:
        return await with_timeout(operation, timeout, label)

    async def retried() -> T:
        return await with_retry(attempt, label=label, max_retries=max_retries, base_delay=base_delay)

    return await breaker.execute(retried)
