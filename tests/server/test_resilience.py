"""Tests for the circuit breaker and the error policy."""

from __future__ import annotations

import asyncio

import pytest

from lookout.server.errors import (
    CircuitOpenError,
    NotFoundError,
    OperationTimeoutError,
    ServiceError,
    TransientError,
    ValidationError,
)
from lookout.server.models.enums import CircuitState, ErrorKind
from lookout.server.resilience.breaker import CircuitBreaker
from lookout.server.resilience.policy import (
    ErrorPolicy,
    backoff_delay,
    is_retryable,
    sanitize_args,
    transform_error,
)


class Flaky:
    """Raises the queued exceptions in order, then returns ``result``."""

    def __init__(self, *failures: BaseException, result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class AlwaysFails:
    def __init__(self, exc_factory=lambda: TransientError("down")) -> None:
        self.exc_factory = exc_factory
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1
        raise self.exc_factory()


# -- Backoff and classification ------------------------------------------------


def test_backoff_grows_and_caps() -> None:
    no_jitter = [backoff_delay(attempt, rng=lambda: 0.0) for attempt in range(6)]
    assert no_jitter == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_backoff_jitter_is_at_most_ten_percent() -> None:
    assert backoff_delay(0, rng=lambda: 1.0) == pytest.approx(1.1)
    assert backoff_delay(10, rng=lambda: 0.5) == pytest.approx(10.5)


@pytest.mark.parametrize(
    ("exc", "retryable"),
    [
        (TimeoutError(), True),
        (OperationTimeoutError("slow"), True),
        (TransientError("down"), True),
        (ConnectionRefusedError(), True),
        (CircuitOpenError("x"), False),
        (ValidationError("bad"), False),
        (NotFoundError("gone"), False),
        (RuntimeError("bug"), False),
    ],
)
def test_is_retryable(exc, retryable) -> None:
    assert is_retryable(exc) is retryable


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (ValidationError("bad field"), ErrorKind.VALIDATION),
        (NotFoundError("no session"), ErrorKind.NOT_FOUND),
        (TimeoutError("took too long"), ErrorKind.TIMEOUT),
        (ConnectionResetError("reset"), ErrorKind.UNAVAILABLE),
        (RuntimeError("internal detail"), ErrorKind.INTERNAL),
    ],
)
def test_transform_error_kinds(exc, kind) -> None:
    dev = transform_error(exc)
    assert dev.kind is kind
    assert dev.message == str(exc)

    prod = transform_error(exc, production=True)
    assert prod.kind is kind
    assert str(exc) not in prod.message


def test_transform_error_passes_service_errors_through() -> None:
    error = ServiceError(ErrorKind.TIMEOUT, "already classified")
    assert transform_error(error) is error


def test_sanitize_args() -> None:
    args = {"api_key": "k", "Password": "p", "authToken": "t", "path": "/tmp", "client_secret": "s"}
    assert sanitize_args(args) == {
        "api_key": "[REDACTED]",
        "Password": "[REDACTED]",
        "authToken": "[REDACTED]",
        "path": "/tmp",
        "client_secret": "[REDACTED]",
    }


# -- Circuit breaker -----------------------------------------------------------


def test_breaker_opens_after_threshold(timer) -> None:
    breaker = CircuitBreaker("ctx", threshold=3, cooldown=60, clock=timer)
    for _ in range(2):
        breaker.record_failure()
    assert breaker.state is CircuitState.CLOSED
    breaker.record_failure()
    assert breaker.state is CircuitState.OPEN
    assert breaker.allow() is False


def test_breaker_single_trial_after_cooldown(timer) -> None:
    breaker = CircuitBreaker("ctx", threshold=1, cooldown=60, clock=timer)
    breaker.record_failure()

    timer.advance(59)
    assert breaker.allow() is False
    timer.advance(1)
    assert breaker.allow() is True
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.allow() is False

    breaker.record_success()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failures == 0


def test_breaker_failed_trial_reopens_with_fresh_cooldown(timer) -> None:
    breaker = CircuitBreaker("ctx", threshold=1, cooldown=60, clock=timer)
    breaker.record_failure()
    timer.advance(60)
    assert breaker.allow() is True

    breaker.record_failure()
    assert breaker.state is CircuitState.OPEN
    timer.advance(59)
    assert breaker.allow() is False
    timer.advance(1)
    assert breaker.allow() is True


def test_success_resets_consecutive_count(timer) -> None:
    breaker = CircuitBreaker("ctx", threshold=2, clock=timer)
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.state is CircuitState.CLOSED


# -- Policy --------------------------------------------------------------------


async def test_retries_until_success(policy, sleeps) -> None:
    fn = Flaky(TransientError("blip"), TransientError("blip"))

    result = await policy.call(fn, context="op", retries=3)

    assert result == "ok"
    assert fn.calls == 3
    assert sleeps.delays == [1.0, 2.0]


async def test_validation_error_is_not_retried(policy, sleeps) -> None:
    fn = Flaky(ValidationError("bad input"))

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(fn, context="op", retries=3)

    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert fn.calls == 1
    assert sleeps.delays == []


async def test_exhausted_retries_surface_classified_error(policy, monitor) -> None:
    fn = Flaky(*(TransientError("down") for _ in range(5)))

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(fn, context="op", retries=2)

    assert excinfo.value.kind is ErrorKind.UNAVAILABLE
    assert fn.calls == 3
    report = monitor.get_detailed_metrics()
    assert report.requests.total == 1
    assert report.requests.errors == 1
    assert report.recent_errors[0]["context"] == "op"


async def test_timeout_applies_to_awaitables(policy) -> None:
    async def slow() -> str:
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(slow, context="op", timeout=0.01)

    assert excinfo.value.kind is ErrorKind.TIMEOUT


async def test_sync_callables_are_supported(policy) -> None:
    assert await policy.call(lambda x: x * 2, 21, context="op") == 42


async def test_circuit_breaker_fails_fast_then_trials_once(monitor, sleeps, timer) -> None:
    policy = ErrorPolicy(monitor, sleep=sleeps, clock=timer, breaker_threshold=5, breaker_cooldown=60)
    fn = AlwaysFails()

    for _ in range(5):
        with pytest.raises(ServiceError):
            await policy.call(fn, context="op", circuit_breaker=True)
    assert fn.calls == 5

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(fn, context="op", circuit_breaker=True)
    assert excinfo.value.kind is ErrorKind.UNAVAILABLE
    assert fn.calls == 5

    timer.advance(60)
    with pytest.raises(ServiceError):
        await policy.call(fn, context="op", circuit_breaker=True)
    assert fn.calls == 6

    with pytest.raises(ServiceError):
        await policy.call(fn, context="op", circuit_breaker=True)
    assert fn.calls == 6


async def test_client_errors_do_not_trip_breaker(policy) -> None:
    fn = AlwaysFails(lambda: NotFoundError("missing"))
    for _ in range(10):
        with pytest.raises(ServiceError):
            await policy.call(fn, context="lookup", circuit_breaker=True)
    assert fn.calls == 10
    assert policy.breaker("lookup").state is CircuitState.CLOSED


async def test_breakers_are_per_context(policy) -> None:
    fn = AlwaysFails()
    for _ in range(5):
        with pytest.raises(ServiceError):
            await policy.call(fn, context="a", circuit_breaker=True)

    assert policy.breaker("a").state is CircuitState.OPEN
    assert await policy.call(lambda: "fine", context="b", circuit_breaker=True) == "fine"


async def test_fallback_used_after_failure(policy) -> None:
    fn = Flaky(RuntimeError("boom"))

    async def fallback() -> str:
        return "cached"

    assert await policy.call(fn, context="op", fallback=fallback) == "cached"


async def test_failing_fallback_surfaces_original_error(policy) -> None:
    fn = Flaky(TransientError("down"))

    def fallback() -> str:
        msg = "fallback broken"
        raise RuntimeError(msg)

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(fn, context="op", fallback=fallback)
    assert excinfo.value.kind is ErrorKind.UNAVAILABLE


async def test_production_mode_hides_detail(monitor, sleeps) -> None:
    policy = ErrorPolicy(monitor, production=True, sleep=sleeps)
    fn = Flaky(RuntimeError("secret table name"))

    with pytest.raises(ServiceError) as excinfo:
        await policy.call(fn, context="op")

    assert excinfo.value.message == "Internal server error"


async def test_wrap(policy) -> None:
    fn = Flaky(TransientError("blip"))
    wrapped = policy.wrap(fn, "wrapped", retries=1)
    assert await wrapped() == "ok"
    assert fn.calls == 2


async def test_error_stats(policy) -> None:
    fn = Flaky(TransientError("blip"))
    await policy.call(fn, context="op", retries=1, circuit_breaker=True)

    stats = policy.error_stats()
    assert stats["error_counts"] == {"op:TransientError": 1}
    assert stats["circuit_breakers"]["op"]["state"] == "closed"


async def test_cancelled_trial_does_not_wedge_breaker(monitor, sleeps, timer) -> None:
    policy = ErrorPolicy(monitor, sleep=sleeps, clock=timer, breaker_threshold=1, breaker_cooldown=60)
    with pytest.raises(ServiceError):
        await policy.call(AlwaysFails(), context="op", circuit_breaker=True)
    timer.advance(60)

    started = asyncio.Event()

    async def hang() -> None:
        started.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(policy.call(hang, context="op", circuit_breaker=True))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert policy.breaker("op").state is CircuitState.OPEN
    assert await policy.call(lambda: "fine", context="op", circuit_breaker=True) == "fine"
    assert policy.breaker("op").state is CircuitState.CLOSED


def test_release_trial_only_affects_half_open(timer) -> None:
    breaker = CircuitBreaker("ctx", threshold=1, cooldown=60, clock=timer)
    breaker.release_trial()
    assert breaker.state is CircuitState.CLOSED

    breaker.record_failure()
    timer.advance(60)
    assert breaker.allow() is True
    breaker.release_trial()
    assert breaker.state is CircuitState.OPEN
    assert breaker.allow() is True
