import asyncio
import random
import time

import pytest

from cartsession.config import RetryPolicy
from cartsession.network.cancellation import CancellationToken, OperationCancelledError
from cartsession.network.retry import RetryError, RetryTimeoutError, backoff_delay, retry_with_backoff
from cartsession.runtime.environment import SimulatedClock

FAST = RetryPolicy(retries=2, base_delay=0.001, max_delay=0.002, timeout=None)


class FlakyOperation:
    def __init__(self, failures: int, result: str = "ok", error: Exception | None = None):
        self.failures = failures
        self.result = result
        self.error = error or ConnectionError("network")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def test_resolves_on_first_attempt():
    operation = FlakyOperation(failures=0)
    result = asyncio.run(retry_with_backoff(operation, FAST))
    assert result == "ok"
    assert operation.calls == 1


def test_retries_until_success_and_reports_each_retry():
    operation = FlakyOperation(failures=1)
    retries = []

    result = asyncio.run(
        retry_with_backoff(operation, FAST, on_retry=lambda attempt, error: retries.append((attempt, str(error))))
    )

    assert result == "ok"
    assert operation.calls == 2
    assert retries == [(1, "network")]


def test_exhaustion_runs_four_attempts_within_timeout():
    operation = FlakyOperation(failures=100)
    policy = RetryPolicy(retries=3, base_delay=0.3, max_delay=2.0, timeout=5.0)

    started = time.monotonic()
    with pytest.raises(RetryError) as excinfo:
        asyncio.run(retry_with_backoff(operation, policy))
    elapsed = time.monotonic() - started

    assert operation.calls == 4
    assert excinfo.value.attempt_count == 4
    assert isinstance(excinfo.value.cause, ConnectionError)
    assert elapsed < 5.0


def test_should_retry_false_stops_immediately():
    operation = FlakyOperation(failures=100, error=ValueError("permanent"))

    with pytest.raises(RetryError) as excinfo:
        asyncio.run(
            retry_with_backoff(
                operation,
                RetryPolicy(retries=3, base_delay=0.001, max_delay=0.002, timeout=None),
                should_retry=lambda error, attempt: str(error) != "permanent",
            )
        )

    assert operation.calls == 1
    assert excinfo.value.attempt_count == 1
    assert str(excinfo.value.cause) == "permanent"


def test_overall_timeout_abandons_slow_attempt():
    async def never_finishes() -> str:
        await asyncio.sleep(10)
        return "late"

    started = time.monotonic()
    with pytest.raises(RetryTimeoutError):
        asyncio.run(retry_with_backoff(never_finishes, RetryPolicy(retries=3, timeout=0.05)))
    assert time.monotonic() - started < 1.0


def test_timeout_wins_over_remaining_retry_budget():
    operation = FlakyOperation(failures=100)
    policy = RetryPolicy(retries=10, base_delay=0.2, max_delay=0.2, timeout=0.05)

    with pytest.raises(RetryTimeoutError):
        asyncio.run(retry_with_backoff(operation, policy))
    assert operation.calls == 1


def test_cancelled_token_skips_operation():
    async def run() -> None:
        token = CancellationToken()
        token.cancel()
        operation = FlakyOperation(failures=0)
        with pytest.raises(OperationCancelledError):
            await retry_with_backoff(operation, FAST, cancel_token=token)
        assert operation.calls == 0

    asyncio.run(run())


def test_cancellation_mid_attempt_does_not_consult_should_retry():
    consulted = []

    async def hangs() -> str:
        await asyncio.sleep(10)
        return "late"

    async def run() -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(OperationCancelledError):
            await retry_with_backoff(
                hangs,
                RetryPolicy(retries=3, timeout=5.0),
                cancel_token=token,
                should_retry=lambda error, attempt: consulted.append(error) or True,
            )

    asyncio.run(run())
    assert consulted == []


def test_cancellation_during_backoff_wait():
    async def run() -> int:
        token = CancellationToken()
        operation = FlakyOperation(failures=100)
        with pytest.raises(OperationCancelledError):
            await retry_with_backoff(
                operation,
                RetryPolicy(retries=3, base_delay=5.0, max_delay=5.0, timeout=None),
                cancel_token=token,
                on_retry=lambda attempt, error: token.cancel(),
            )
        return operation.calls

    assert asyncio.run(run()) == 1


def test_backoff_delay_doubles_and_caps():
    policy = RetryPolicy(retries=5, base_delay=0.3, max_delay=2.0)
    delays = [backoff_delay(attempt, policy) for attempt in range(1, 5)]
    assert delays == pytest.approx([0.3, 0.6, 1.2, 2.0])


def test_jittered_backoff_stays_within_bounds():
    policy = RetryPolicy(base_delay=0.3, max_delay=2.0, jitter=True)
    rng = random.Random(7)
    for attempt in range(1, 6):
        ceiling = min(2.0, 0.3 * 2 ** (attempt - 1))
        delay = backoff_delay(attempt, policy, rng)
        assert 0.3 <= delay <= ceiling


async def _run_on_clock(clock: SimulatedClock, coroutine, step: float = 0.1):
    task = asyncio.ensure_future(coroutine)
    for _ in range(200):
        for _ in range(10):
            await asyncio.sleep(0)
        if task.done():
            break
        clock.advance(step)
    return await task


def test_exhaustion_on_simulated_clock_stays_within_deadline():
    clock = SimulatedClock()
    operation = FlakyOperation(failures=100)
    policy = RetryPolicy(retries=3, base_delay=0.3, max_delay=2.0, timeout=5.0)

    with pytest.raises(RetryError) as excinfo:
        asyncio.run(
            _run_on_clock(clock, retry_with_backoff(operation, policy, sleep=clock.sleep, monotonic=clock.monotonic))
        )

    assert operation.calls == 4
    assert excinfo.value.attempt_count == 4
    assert 2.1 <= clock.monotonic() < 5.0


def test_deadline_on_simulated_clock_cuts_remaining_retries():
    clock = SimulatedClock()
    operation = FlakyOperation(failures=100)
    policy = RetryPolicy(retries=10, base_delay=2.0, max_delay=2.0, timeout=5.0)

    with pytest.raises(RetryTimeoutError):
        asyncio.run(
            _run_on_clock(
                clock,
                retry_with_backoff(operation, policy, sleep=clock.sleep, monotonic=clock.monotonic),
                step=0.5,
            )
        )

    assert operation.calls == 3
    assert clock.monotonic() == pytest.approx(5.0)
