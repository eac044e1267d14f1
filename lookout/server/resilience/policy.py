"""Timeout / retry / circuit-breaker discipline for externally invoked operations.

``ErrorPolicy.call`` runs an operation through, in order:

1. the context's circuit breaker (fail fast while open),
2. up to ``retries + 1`` attempts, each bounded by ``timeout`` when the
   operation is awaitable, with exponential backoff between retryable
   failures,
3. health bookkeeping (one request sample per call, not per attempt),
4. an optional fallback, and finally
5. ``transform_error`` so callers only ever see a classified ``ServiceError``.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from functools import wraps
from typing import TYPE_CHECKING, Any, TypeVar

from loguru import logger

from lookout.server.errors import (
    CircuitOpenError,
    LookoutError,
    OperationTimeoutError,
    ServiceError,
)
from lookout.server.models.enums import ErrorKind
from lookout.server.resilience.breaker import CircuitBreaker

if TYPE_CHECKING:
    from lookout.server.health.monitor import HealthMonitor

T = TypeVar("T")

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 10_000
JITTER_RATIO = 0.1

SENSITIVE_KEYS = ("password", "token", "key", "secret", "auth")
REDACTED = "[REDACTED]"

_GENERIC_MESSAGES = {
    ErrorKind.VALIDATION: "Invalid request parameters",
    ErrorKind.NOT_FOUND: "Requested resource not found",
    ErrorKind.TIMEOUT: "Operation timed out",
    ErrorKind.UNAVAILABLE: "Service temporarily unavailable",
    ErrorKind.INTERNAL: "Internal server error",
}

_CLIENT_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.NOT_FOUND})


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def backoff_delay(attempt: int, rng: Callable[[], float] = random.random) -> float:
    """Delay before retry *attempt* (0-based), in seconds.

    ``min(1000 * 2**attempt, 10000)`` ms plus up to 10 % jitter.
    """
    base = min(BASE_DELAY_MS * 2**attempt, MAX_DELAY_MS)
    return (base + base * JITTER_RATIO * rng()) / 1000


def is_retryable(exc: BaseException) -> bool:
    """Only timeouts and transient availability failures are retried."""
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, LookoutError):
        return exc.kind in (ErrorKind.TIMEOUT, ErrorKind.UNAVAILABLE)
    return isinstance(exc, TimeoutError | ConnectionError)


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, LookoutError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorKind.UNAVAILABLE
    return ErrorKind.INTERNAL


def is_client_error(exc: BaseException) -> bool:
    return classify(exc) in _CLIENT_KINDS


def transform_error(exc: BaseException, *, production: bool = False, context: str | None = None) -> ServiceError:
    """Map any exception onto a caller-safe ``ServiceError``.

    Production mode replaces every message with a generic one for its kind.
    Unclassified errors are logged with their traceback here, since the
    caller only ever sees the classification.
    """
    if isinstance(exc, ServiceError):
        return exc

    kind = classify(exc)
    if kind is ErrorKind.INTERNAL:
        logger.opt(exception=exc).error("Internal error in {}", context or "unknown")

    if production:
        message = _GENERIC_MESSAGES[kind]
    else:
        message = str(exc) or _GENERIC_MESSAGES[kind]
    return ServiceError(kind, message, context=context)


def sanitize_args(args: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of *args* with credential-looking keys redacted, for logging."""
    return {
        key: REDACTED if any(word in str(key).lower() for word in SENSITIVE_KEYS) else value
        for key, value in args.items()
    }


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class ErrorPolicy:
    """Wraps operations with timeout, retry, circuit breaking and error classification.

    One breaker per ``context``.  Client errors (validation, not found) never
    trip a breaker and count as a healthy response from the operation.
    """

    def __init__(
        self,
        monitor: HealthMonitor | None = None,
        *,
        production: bool = False,
        breaker_threshold: int = 5,
        breaker_cooldown: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.monitor = monitor
        self.production = production
        self._breaker_threshold = breaker_threshold
        self._breaker_cooldown = breaker_cooldown
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._breakers: dict[str, CircuitBreaker] = {}
        self._error_counts: Counter[str] = Counter()

    def breaker(self, context: str) -> CircuitBreaker:
        breaker = self._breakers.get(context)
        if breaker is None:
            breaker = self._breakers[context] = CircuitBreaker(
                context,
                threshold=self._breaker_threshold,
                cooldown=self._breaker_cooldown,
                clock=self._clock,
            )
        return breaker

    async def call(
        self,
        fn: Callable[..., T | Awaitable[T]],
        *args: Any,
        context: str,
        retries: int = 0,
        timeout: float | None = None,
        circuit_breaker: bool = False,
        fallback: Callable[..., Any] | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn(*args, **kwargs)`` under the policy.  Raises ``ServiceError`` on failure."""
        breaker = self.breaker(context) if circuit_breaker else None
        if breaker is not None and not breaker.allow():
            exc = CircuitOpenError(context)
            self._count(exc, context)
            raise transform_error(exc, production=self.production, context=context) from exc

        start = time.perf_counter()
        last_exc: Exception | None = None
        try:
            for attempt in range(retries + 1):
                try:
                    result = await self._attempt(fn, args, kwargs, context, timeout)
                except Exception as exc:
                    last_exc = exc
                    self._log_attempt(exc, context, attempt)
                    if attempt < retries and is_retryable(exc):
                        await self._sleep(backoff_delay(attempt, self._rng))
                        continue
                    break
                else:
                    if self.monitor is not None:
                        self.monitor.record_request(context, start, True)
                    if breaker is not None:
                        breaker.record_success()
                    return result
        except BaseException:
            # Cancelled mid-call: the outcome is unknown, hand the trial back.
            if breaker is not None:
                breaker.release_trial()
            raise

        assert last_exc is not None
        if self.monitor is not None:
            self.monitor.record_request(context, start, False)
            self.monitor.record_error(last_exc, context)
        if breaker is not None:
            if is_client_error(last_exc):
                breaker.record_success()
            else:
                breaker.record_failure()

        if fallback is not None:
            logger.warning("Using fallback for {} after error: {}", context, last_exc)
            try:
                value = fallback(*args, **kwargs)
                if inspect.isawaitable(value):
                    value = await value
            except Exception:
                logger.opt(exception=True).error("Fallback failed for {}", context)
            else:
                return value

        raise transform_error(last_exc, production=self.production, context=context) from last_exc

    def wrap(self, fn: Callable[..., Any], context: str, **options: Any) -> Callable[..., Awaitable[Any]]:
        """Return an async callable that runs *fn* through ``call`` with fixed options."""

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await self.call(fn, *args, context=context, **options, **kwargs)

        return wrapper

    def error_stats(self) -> dict[str, Any]:
        return {
            "error_counts": dict(self._error_counts),
            "circuit_breakers": {name: b.snapshot() for name, b in self._breakers.items()},
        }

    # -- Internals -------------------------------------------------------------

    async def _attempt(
        self,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        context: str,
        timeout: float | None,
    ) -> Any:
        result = fn(*args, **kwargs)
        if not inspect.isawaitable(result):
            return result
        if timeout is None:
            return await result
        try:
            return await asyncio.wait_for(result, timeout)
        except TimeoutError:
            msg = f"{context} timed out after {timeout}s"
            raise OperationTimeoutError(msg) from None

    def _count(self, exc: BaseException, context: str) -> None:
        self._error_counts[f"{context}:{type(exc).__name__}"] += 1

    def _log_attempt(self, exc: Exception, context: str, attempt: int) -> None:
        self._count(exc, context)
        if attempt:
            logger.info("Retry {} failed in {}: {}", attempt, context, exc)
        elif isinstance(exc, MemoryError):
            logger.opt(exception=exc).critical("Critical error in {}", context)
        else:
            logger.warning("Error in {}: {}", context, exc)
