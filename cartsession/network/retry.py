from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

from cartsession.config import RetryPolicy
from cartsession.logging.logger import get_logger
from cartsession.network.cancellation import CancellationToken, OperationCancelledError

T = TypeVar("T")

ShouldRetry = Callable[[BaseException, int], bool]
OnRetry = Callable[[int, BaseException], None]
Sleep = Callable[[float], Awaitable[Any]]

logger = get_logger("retry")


class RetryError(Exception):
    """Raised when an operation fails for good; ``cause`` holds the last failure."""

    def __init__(self, message: str, attempt_count: int, cause: BaseException | None = None):
        super().__init__(message)
        self.attempt_count = attempt_count
        self.cause = cause


class RetryTimeoutError(Exception):
    def __init__(self, message: str = "Retry operation timed out."):
        super().__init__(message)


def backoff_delay(attempt: int, policy: RetryPolicy, rng: random.Random | None = None) -> float:
    """Delay in seconds to wait after the failed ``attempt`` (1-based)."""
    exponential = min(policy.max_delay, policy.base_delay * 2 ** (attempt - 1))
    if not policy.jitter:
        return exponential
    floor = min(policy.base_delay, exponential)
    return (rng or random).uniform(floor, exponential)


def _discard(task: asyncio.Future[Any]) -> None:
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        # Mark the exception as retrieved so the loop does not report it.
        task.exception()


async def _race(
    awaitable: Awaitable[T],
    cancel_token: CancellationToken | None,
    timeout: float | None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    task = asyncio.ensure_future(awaitable)
    helpers: list[asyncio.Future[Any]] = []
    if cancel_token is not None:
        helpers.append(asyncio.ensure_future(cancel_token.wait()))
    if timeout is not None:
        helpers.append(asyncio.ensure_future(sleep(max(timeout, 0.0))))
    try:
        done, _ = await asyncio.wait({task, *helpers}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        for helper in helpers:
            helper.cancel()

    if cancel_token is not None and cancel_token.cancelled:
        _discard(task)
        raise OperationCancelledError()
    if task in done:
        return task.result()
    _discard(task)
    raise RetryTimeoutError()


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    should_retry: ShouldRetry | None = None,
    on_retry: OnRetry | None = None,
    sleep: Sleep | None = None,
    monotonic: Callable[[], float] | None = None,
) -> T:
    """Run ``operation`` until it succeeds, retrying with exponential backoff.

    Outcomes:
      * the operation's result;
      * ``RetryTimeoutError`` once ``policy.timeout`` seconds have elapsed, even
        when retries remain;
      * ``OperationCancelledError`` as soon as ``cancel_token`` fires
        (``should_retry`` is not consulted);
      * ``RetryError`` wrapping the last failure when the budget is exhausted or
        ``should_retry`` declines.

    ``sleep`` and ``monotonic`` default to the running loop; pass a simulated
    clock's to drive backoff and the deadline without wall time.
    """
    policy = policy or RetryPolicy()
    sleep = sleep or asyncio.sleep
    monotonic = monotonic or asyncio.get_running_loop().time
    max_attempts = max(1, policy.retries + 1)
    deadline = monotonic() + policy.timeout if policy.timeout is not None else None

    def remaining() -> float | None:
        if deadline is None:
            return None
        return deadline - monotonic()

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        budget = remaining()
        if budget is not None and budget <= 0:
            raise RetryTimeoutError()

        try:
            return await _race(operation(), cancel_token, budget, sleep)
        except (OperationCancelledError, RetryTimeoutError):
            raise
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if attempt == max_attempts or (should_retry is not None and not should_retry(exc, attempt)):
                raise RetryError("Retry attempts exhausted.", attempt, exc) from exc

        if on_retry is not None:
            on_retry(attempt, last_error)
        delay = backoff_delay(attempt, policy)
        logger.debug("attempt %s failed (%s); retrying in %.3fs", attempt, last_error, delay)

        budget = remaining()
        if budget is not None and delay >= budget:
            await _race(sleep(max(budget, 0)), cancel_token, None)
            raise RetryTimeoutError()
        await _race(sleep(delay), cancel_token, None)

    raise RetryError("Retry attempts exhausted.", max_attempts, last_error)
