"""Tests for circuit breaker and retry policy"""

from unittest.mock import AsyncMock

import pytest

from mev_sandwich.errors import (
    CircuitOpenError,
    RelayConnectionError,
    RelayRejectedError,
    ValidationError,
)
from mev_sandwich.resilience import CircuitBreaker, CircuitState, RetryPolicy, retry_async, with_retry


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(name="test_dependency", failure_threshold=3, timeout_seconds=10.0, clock=clock)


class TestCircuitBreaker:
    """Test circuit breaker state transitions"""

    def test_opens_after_threshold(self, breaker):
        """Test CLOSED -> OPEN after consecutive failures"""
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.can_attempt() is False

    def test_success_resets_failure_count(self, breaker):
        """Test a success clears the consecutive failure count"""
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_allows_single_probe(self, breaker, clock):
        """Test only one probe is admitted once the timeout elapsed"""
        for _ in range(3):
            breaker.record_failure()

        clock.advance(10.0)

        assert breaker.can_attempt() is True
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_attempt() is False

    def test_probe_success_closes(self, breaker, clock):
        """Test HALF_OPEN -> CLOSED on probe success"""
        for _ in range(3):
            breaker.record_failure()
        clock.advance(11.0)
        breaker.can_attempt()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_attempt() is True

    def test_probe_failure_reopens(self, breaker, clock):
        """Test HALF_OPEN -> OPEN on probe failure"""
        for _ in range(3):
            breaker.record_failure()
        clock.advance(11.0)
        breaker.can_attempt()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.can_attempt() is False

    @pytest.mark.asyncio
    async def test_call_fails_fast_when_open(self, breaker):
        """Test that an open circuit never invokes the dependency"""
        for _ in range(3):
            breaker.record_failure()
        func = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError):
            await breaker.call(func)

        func.assert_not_called()

    @pytest.mark.asyncio
    async def test_call_records_outcomes(self, breaker):
        """Test call() counts dependency failures but not refusals"""
        failing = AsyncMock(side_effect=RelayConnectionError("down"))
        refusing = AsyncMock(side_effect=RelayRejectedError("reverted"))

        with pytest.raises(RelayConnectionError):
            await breaker.call(failing)
        assert breaker.failure_count == 1

        with pytest.raises(RelayRejectedError):
            await breaker.call(refusing)
        assert breaker.failure_count == 0

    def test_snapshot(self, breaker):
        """Test snapshot exposes name and state"""
        snapshot = breaker.snapshot()

        assert snapshot["name"] == "test_dependency"
        assert snapshot["state"] == "closed"


class TestRetryPolicy:
    """Test retry with exponential backoff"""

    def test_delay_is_exponential_and_capped(self):
        """Test base_delay * 2**attempt capped at max_delay"""
        policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=2.0)

        assert policy.delay_for(0) == 0.5
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 2.0

    def test_should_retry_uses_error_kind(self):
        """Test only retryable errors are retried"""
        policy = RetryPolicy()

        assert policy.should_retry(RelayConnectionError("timeout")) is True
        assert policy.should_retry(RelayRejectedError("revert")) is False
        assert policy.should_retry(ValueError("boom")) is False
        assert RetryPolicy(retry_on=(ValueError,)).should_retry(ValueError("boom")) is True

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, monkeypatch):
        """Test transient failures are retried until success"""
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr("mev_sandwich.resilience.retry.asyncio.sleep", fake_sleep)
        func = AsyncMock(side_effect=[RelayConnectionError("a"), RelayConnectionError("b"), "ok"])

        result = await retry_async(RetryPolicy(max_attempts=3, base_delay=0.1), func, operation="test")

        assert result == "ok"
        assert func.await_count == 3
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self):
        """Test terminal errors propagate after a single attempt"""
        func = AsyncMock(side_effect=RelayRejectedError("bundle reverted"))

        with pytest.raises(RelayRejectedError):
            await retry_async(RetryPolicy(max_attempts=5, base_delay=0), func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, monkeypatch):
        """Test the last error is raised once attempts are exhausted"""
        monkeypatch.setattr("mev_sandwich.resilience.retry.asyncio.sleep", AsyncMock())
        func = AsyncMock(side_effect=RelayConnectionError("down"))

        with pytest.raises(RelayConnectionError):
            await retry_async(RetryPolicy(max_attempts=3, base_delay=0.1), func)

        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_no_retry_past_deadline(self, clock):
        """Test a retry whose backoff ends past the deadline is skipped"""
        func = AsyncMock(side_effect=RelayConnectionError("down"))

        with pytest.raises(RelayConnectionError):
            await retry_async(
                RetryPolicy(max_attempts=5, base_delay=5.0),
                func,
                deadline=clock.now + 1.0,
                clock=clock,
            )

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_breaker_open_is_not_retried(self, breaker):
        """Test CircuitOpenError propagates immediately"""
        for _ in range(3):
            breaker.record_failure()
        func = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError):
            await retry_async(RetryPolicy(max_attempts=3, base_delay=0), func, breaker=breaker)

        func.assert_not_called()

    @pytest.mark.asyncio
    async def test_decorator(self, monkeypatch):
        """Test with_retry wraps a coroutine function"""
        monkeypatch.setattr("mev_sandwich.resilience.retry.asyncio.sleep", AsyncMock())
        calls = {"n": 0}

        @with_retry(RetryPolicy(max_attempts=2, base_delay=0.1), operation="flaky")
        async def flaky(value):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RelayConnectionError("first attempt")
            return value * 2

        assert await flaky(21) == 42
        assert calls["n"] == 2
