"""Retry, circuit breaking and tiered fallback for generation backends.

Modules exported
----------------
RetryPolicy, RetryConfig, with_retry
    Bounded, pattern-classified retries with jittered backoff.
CircuitBreaker, CircuitBreakerRegistry
    Per-dependency breakers shared through an explicit registry.
FallbackChain
    Ordered levels ending in a network-free terminal level.
"""

from __future__ import annotations

from .breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
    is_failure_for_breaker,
)
from .fallback import FallbackChain
from .retry import (
    RetryConfig,
    RetryPolicy,
    compute_delay,
    is_retryable_error,
    with_retry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "FallbackChain",
    "RetryConfig",
    "RetryPolicy",
    "compute_delay",
    "is_failure_for_breaker",
    "is_retryable_error",
    "with_retry",
]
