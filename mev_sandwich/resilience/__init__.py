"""Circuit breaking and retry policies"""

from mev_sandwich.resilience.circuit_breaker import CircuitBreaker, CircuitState
from mev_sandwich.resilience.retry import RetryPolicy, retry_async, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "retry_async",
    "with_retry",
]
