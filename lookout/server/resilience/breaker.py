"""Per-context circuit breaker.

State machine::

    closed --(threshold consecutive failures)--> open
    open   --(cooldown elapsed, next call)-----> half_open   (one trial call)
    half_open --(trial succeeds)---------------> closed
    half_open --(trial fails)------------------> open        (fresh cooldown)
    half_open --(trial cancelled)--------------> open        (next call trials again)

While open, or while the half-open trial is in flight, ``allow()`` is false
and callers must fail fast without invoking the operation.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from loguru import logger

from lookout.server.models.enums import CircuitState


class CircuitBreaker:
    def __init__(
        self,
        name: str = "default",
        *,
        threshold: int = 5,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def allow(self) -> bool:
        """Whether a call may proceed now.  Admits exactly one trial after the cooldown."""
        match self._state:
            case CircuitState.CLOSED:
                return True
            case CircuitState.OPEN:
                assert self._opened_at is not None
                if self._clock() - self._opened_at < self.cooldown:
                    return False
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker {} half-open, admitting one trial call", self.name)
                return True
            case _:
                return False

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit breaker {} closed", self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.threshold:
            self._open()

    def release_trial(self) -> None:
        """Return an unfinished half-open trial; the next call may try again."""
        if self._state is CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.info("Circuit breaker {} trial abandoned", self.name)

    def snapshot(self) -> dict[str, Any]:
        return {"state": self._state.value, "failures": self._failures, "opened_at": self._opened_at}

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning("Circuit breaker {} opened after {} consecutive failures", self.name, self._failures)
