"""Retry with exponential backoff, optionally routed through a circuit breaker"""

import asyncio
import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from mev_sandwich.errors import is_retryable
from mev_sandwich.monitoring import metrics
from mev_sandwich.resilience.circuit_breaker import CircuitBreaker

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently an operation is retried"""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0
    retry_on: Tuple[Type[BaseException], ...] = ()

    def should_retry(self, error: BaseException) -> bool:
        if self.retry_on and isinstance(error, self.retry_on):
            return True
        return is_retryable(error)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (0-based)"""
        return min(self.base_delay * (2**attempt), self.max_delay)


async def retry_async(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    operation: str = "operation",
    breaker: Optional[CircuitBreaker] = None,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.time,
    **kwargs: Any,
) -> T:
    """
    Execute an async operation with bounded retries.

    Non-retryable errors (and CircuitOpenError) propagate immediately. A retry is
    skipped when its backoff would end past ``deadline``.

    Args:
        policy: Retry policy
        func: Coroutine function to call
        operation: Name used in logs and metrics
        breaker: Optional circuit breaker each attempt goes through
        deadline: Optional absolute wall-clock deadline

    Returns:
        The operation's result
    """
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            if breaker is not None:
                return await breaker.call(func, *args, **kwargs)
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if not policy.should_retry(e):
                raise

            logger.warning(
                "operation_attempt_failed",
                operation=operation,
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                error=str(e),
                error_type=type(e).__name__,
            )

            if attempt >= policy.max_attempts - 1:
                break

            delay = policy.delay_for(attempt)
            if deadline is not None and clock() + delay >= deadline:
                logger.info("operation_retry_skipped_deadline", operation=operation)
                break

            metrics.retry_attempts.labels(operation=operation).inc()
            await asyncio.sleep(delay)

    logger.error(
        "operation_failed_all_retries",
        operation=operation,
        max_attempts=policy.max_attempts,
        error=str(last_error),
    )
    raise last_error


def with_retry(
    policy: RetryPolicy,
    operation: Optional[str] = None,
    breaker: Optional[CircuitBreaker] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry_async`"""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(policy, func, *args, operation=name, breaker=breaker, **kwargs)

        return wrapper

    return decorator
