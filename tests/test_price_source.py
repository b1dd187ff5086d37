"""Tests for the guarded price source"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from mev_sandwich.errors import CircuitOpenError, PriceDataError
from mev_sandwich.interfaces import PriceSource
from mev_sandwich.models import Chain, PriceQuote
from mev_sandwich.pricing import GuardedPriceSource
from mev_sandwich.resilience import CircuitBreaker, CircuitState, RetryPolicy

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def oracle():
    source = Mock(spec=PriceSource)
    source.get_price = AsyncMock(return_value=PriceQuote(price=Decimal("3000"), confidence=0.95))
    return source


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def guarded(oracle, timer):
    return GuardedPriceSource(
        oracle,
        breaker=CircuitBreaker(name="price_oracle", failure_threshold=5, timeout_seconds=60.0),
        retry_policy=RetryPolicy(max_attempts=1),
        cache_seconds=30.0,
        timer=timer,
    )


class TestGuardedPriceSource:
    """Test caching, validation and circuit breaking of price lookups"""

    @pytest.mark.asyncio
    async def test_quote_is_cached(self, guarded, oracle, timer):
        """Test a second lookup within the TTL does not hit the oracle"""
        first = await guarded.get_price(WETH, Chain.ETHEREUM)
        second = await guarded.get_price(WETH.lower(), Chain.ETHEREUM)

        assert first is second
        assert oracle.get_price.await_count == 1
        assert guarded.cache_stats()["hits"] == 1

        timer.now += 31.0
        await guarded.get_price(WETH, Chain.ETHEREUM)
        assert oracle.get_price.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_chain(self, guarded, oracle):
        """Test the same address on two chains is looked up twice"""
        await guarded.get_price(WETH, Chain.ETHEREUM)
        await guarded.get_price(WETH, Chain.BSC)

        assert oracle.get_price.await_count == 2

    @pytest.mark.asyncio
    async def test_unusable_quote_is_rejected(self, guarded, oracle):
        """Test zero price and out-of-range confidence are price data errors"""
        oracle.get_price.return_value = PriceQuote(price=Decimal("0"), confidence=0.9)
        with pytest.raises(PriceDataError):
            await guarded.get_price(USDC, Chain.ETHEREUM)

        oracle.get_price.return_value = PriceQuote(price=Decimal("1"), confidence=1.5)
        with pytest.raises(PriceDataError):
            await guarded.get_price(USDC, Chain.ETHEREUM)

    @pytest.mark.asyncio
    async def test_oracle_exception_is_wrapped(self, guarded, oracle):
        """Test arbitrary oracle failures surface as PriceDataError"""
        oracle.get_price.side_effect = TimeoutError("oracle timeout")

        with pytest.raises(PriceDataError):
            await guarded.get_price(USDC, Chain.ETHEREUM)

    @pytest.mark.asyncio
    async def test_breaker_opens_after_five_failures(self, guarded, oracle):
        """Test five consecutive oracle failures open the circuit and later lookups fail fast"""
        oracle.get_price.side_effect = ConnectionError("oracle down")

        for _ in range(5):
            with pytest.raises(PriceDataError):
                await guarded.get_price(USDC, Chain.ETHEREUM)

        assert guarded.breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await guarded.get_price(USDC, Chain.ETHEREUM)
        assert oracle.get_price.await_count == 5

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, guarded, oracle):
        """Test a failed lookup is retried on the next call"""
        oracle.get_price.side_effect = [
            ConnectionError("blip"),
            PriceQuote(price=Decimal("1"), confidence=0.99),
        ]

        with pytest.raises(PriceDataError):
            await guarded.get_price(USDC, Chain.ETHEREUM)
        quote = await guarded.get_price(USDC, Chain.ETHEREUM)

        assert quote.price == Decimal("1")

    @pytest.mark.asyncio
    async def test_cache_disabled(self, oracle):
        """Test cache_seconds=0 turns caching off"""
        source = GuardedPriceSource(oracle, cache_seconds=0)

        await source.get_price(WETH, Chain.ETHEREUM)
        await source.get_price(WETH, Chain.ETHEREUM)

        assert oracle.get_price.await_count == 2
        assert source.cache_stats()["size"] == 0
