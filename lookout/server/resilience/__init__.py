"""Timeout, retry and circuit-breaker policy."""

from lookout.server.resilience.breaker import CircuitBreaker
from lookout.server.resilience.policy import (
    ErrorPolicy,
    backoff_delay,
    classify,
    is_retryable,
    sanitize_args,
    transform_error,
)

__all__ = [
    "CircuitBreaker",
    "ErrorPolicy",
    "backoff_delay",
    "classify",
    "is_retryable",
    "sanitize_args",
    "transform_error",
]
