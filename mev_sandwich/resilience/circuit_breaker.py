"""Circuit breaker guarding one external dependency"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, TypeVar

import structlog

from mev_sandwich.errors import CircuitOpenError, RelayRejectedError, ValidationError
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures detected, stop calling
    HALF_OPEN = "half_open"  # Testing recovery

    @property
    def gauge_value(self) -> int:
        return {"closed": 0, "half_open": 1, "open": 2}[self.value]


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for a price source or relay.

    Transitions: CLOSED -> OPEN after ``failure_threshold`` consecutive failures,
    OPEN -> HALF_OPEN once ``timeout_seconds`` elapsed, then a single probe call
    either closes the circuit or re-opens it. All methods are synchronous, so on
    the event loop they run to completion without interleaving.
    """

    name: str = "default"
    failure_threshold: int = 5
    timeout_seconds: float = 60.0
    failure_count: int = 0
    state: CircuitState = CircuitState.CLOSED
    last_failure_time: float = 0.0
    clock: Callable[[], float] = field(default=time.time, repr=False)
    _probe_in_flight: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._publish()

    def _publish(self) -> None:
        metrics.circuit_breaker_state.labels(dependency=self.name).set(self.state.gauge_value)

    def _transition(self, state: CircuitState) -> None:
        self.state = state
        self._publish()

    def record_success(self) -> None:
        """Record successful call"""
        self.failure_count = 0
        self._probe_in_flight = False
        if self.state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
            logger.info("circuit_breaker_closed", dependency=self.name, state=self.state.value)

    def record_failure(self) -> None:
        """Record failed call"""
        self.failure_count += 1
        self.last_failure_time = self.clock()

        if self.state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False
            self._transition(CircuitState.OPEN)
            logger.warning(
                "circuit_breaker_reopened",
                dependency=self.name,
                state=self.state.value,
                failure_count=self.failure_count,
            )
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)
            logger.warning(
                "circuit_breaker_opened",
                dependency=self.name,
                state=self.state.value,
                failure_count=self.failure_count,
            )

    def can_attempt(self) -> bool:
        """Check if a call may proceed, claiming the half-open probe if so"""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.clock() - self.last_failure_time < self.timeout_seconds:
                return False
            self._transition(CircuitState.HALF_OPEN)
            logger.info("circuit_breaker_half_open", dependency=self.name, state=self.state.value)

        # HALF_OPEN state - allow exactly one probe
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def release_probe(self) -> None:
        """Give back a claimed probe without recording an outcome"""
        self._probe_in_flight = False

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run an async call through the breaker.

        Raises:
            CircuitOpenError: if the circuit rejects the call
        """
        if not self.can_attempt():
            raise CircuitOpenError(f"circuit open for {self.name}", code="CIRCUIT_OPEN")

        try:
            result = await func(*args, **kwargs)
        except (RelayRejectedError, ValidationError):
            # The dependency answered; the request itself was refused
            self.record_success()
            raise
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            self.release_probe()
            raise

        self.record_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
        }
