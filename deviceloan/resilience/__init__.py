"""Resilience layer for downstream calls.

This module provides:
- Retry with exponential backoff
- Per-dependency circuit breakers
- Timeout guards
"""

from .circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    ServiceCircuitBreaker,
)
from .retry import (
    NetworkError,
    RetryableError,
    RetryConfig,
    RetryExecutor,
    RetryExhaustedError,
    ServiceUnavailableError,
    is_transient,
    retry_with_backoff,
)
from .timeout import TimeoutConfig, TimeoutError, with_async_timeout, with_timeout

__all__ = [
    "retry_with_backoff",
    "RetryConfig",
    "RetryExecutor",
    "RetryExhaustedError",
    "RetryableError",
    "NetworkError",
    "ServiceUnavailableError",
    "is_transient",
    "ServiceCircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "with_timeout",
    "with_async_timeout",
    "TimeoutConfig",
    "TimeoutError",
]
