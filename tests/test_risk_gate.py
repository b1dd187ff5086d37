"""Tests for the risk gate"""

import asyncio
from decimal import Decimal

import pytest

from mev_sandwich.config import (
    RiskConfig,
    default_bsc_config,
    default_ethereum_config,
    default_solana_config,
)
from mev_sandwich.models import Chain, RiskCandidate
from mev_sandwich.risk import RiskGate

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now


def candidate(execution_id: str = "exec_1", **overrides) -> RiskCandidate:
    values = dict(
        execution_id=execution_id,
        chain=Chain.ETHEREUM,
        position_size=Decimal("0.5"),
        position_size_usd=Decimal("1500"),
        expected_profit_usd=Decimal("60"),
        price_impact=Decimal("0.05"),
        slippage=Decimal("1"),
        pool_liquidity_usd=Decimal("6000000"),
        gas_price_gwei=Decimal("20"),
        confidence=0.95,
    )
    values.update(overrides)
    return RiskCandidate(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def emergencies():
    return []


@pytest.fixture
def gate(clock, emergencies):
    return RiskGate(
        RiskConfig(),
        {Chain.ETHEREUM: default_ethereum_config(), Chain.BSC: default_bsc_config()},
        on_emergency=emergencies.append,
        clock=clock,
    )


class TestAssessment:
    """Test individual limits"""

    @pytest.mark.asyncio
    async def test_allows_reasonable_trade(self, gate):
        """Test a trade inside every limit is allowed"""
        assessment = await gate.assess(candidate())

        assert assessment.allowed is True
        assert assessment.reasons == ()
        assert 0 <= assessment.risk_score <= 100
        assert assessment.position_size_limit <= Decimal("1.0")

    @pytest.mark.asyncio
    async def test_lists_every_violation(self, gate):
        """Test all violated rules are reported, not only the first"""
        assessment = await gate.assess(
            candidate(
                position_size=Decimal("2"),
                pool_liquidity_usd=Decimal("1000"),
                slippage=Decimal("8"),
                expected_profit_usd=Decimal("3"),
            )
        )

        rules = {reason.split(":", 1)[0] for reason in assessment.reasons}
        assert assessment.allowed is False
        assert {"max_position_size", "min_liquidity", "max_slippage", "min_profit"} <= rules

    @pytest.mark.asyncio
    async def test_gas_limit_uses_stricter_chain_cap(self, gate):
        """Test BSC's 20 gwei cap applies even though the global cap is 100"""
        assessment = await gate.assess(
            candidate(chain=Chain.BSC, gas_price_gwei=Decimal("25"))
        )

        assert assessment.allowed is False
        assert any(r.startswith("max_gas_price") for r in assessment.reasons)

    @pytest.mark.asyncio
    async def test_solana_has_no_gas_rule(self, gate):
        """Test the gas price rule only applies to EVM chains"""
        gate.chains[Chain.SOLANA] = default_solana_config()

        assessment = await gate.assess(
            candidate(chain=Chain.SOLANA, gas_price_gwei=Decimal("5000"))
        )

        assert not any(r.startswith("max_gas_price") for r in assessment.reasons)

    @pytest.mark.asyncio
    async def test_concurrent_positions_limit(self, gate):
        """Test reserved positions count against the concurrency limit"""
        for i in range(3):
            assert (await gate.assess(candidate(f"exec_{i}"), reserve=True)).allowed

        assessment = await gate.assess(candidate("exec_4"))

        assert assessment.allowed is False
        assert any(r.startswith("max_concurrent_positions") for r in assessment.reasons)

    @pytest.mark.asyncio
    async def test_daily_volume_limit(self, clock):
        """Test daily volume accumulates per chain"""
        gate = RiskGate(
            RiskConfig(max_daily_volume=Decimal("1")),
            {Chain.ETHEREUM: default_ethereum_config()},
            clock=clock,
        )
        await gate.assess(candidate("a", position_size=Decimal("0.6")), reserve=True)
        await gate.record_outcome("a", True, Decimal("60"))

        assessment = await gate.assess(candidate("b", position_size=Decimal("0.6")))

        assert any(r.startswith("max_daily_volume") for r in assessment.reasons)

    @pytest.mark.asyncio
    async def test_concurrent_assessments_are_serialized(self, clock):
        """Test parallel reservations never exceed the position limit"""
        gate = RiskGate(
            RiskConfig(max_concurrent_positions=2),
            {Chain.ETHEREUM: default_ethereum_config()},
            clock=clock,
        )

        results = await asyncio.gather(
            *(gate.assess(candidate(f"exec_{i}"), reserve=True) for i in range(5))
        )

        assert sum(1 for r in results if r.allowed) == 2
        assert len(gate.open_positions()) == 2

    def test_size_multiplier(self):
        """Test position size scaling by risk score"""
        assert RiskGate.size_multiplier(70) == Decimal("0.5")
        assert RiskGate.size_multiplier(50) == Decimal("0.7")
        assert RiskGate.size_multiplier(30) == Decimal("0.9")
        assert RiskGate.size_multiplier(10) == Decimal("1")


class TestOutcomes:
    """Test cooldown, hourly limits and the emergency stop"""

    @pytest.mark.asyncio
    async def test_cooldown_after_consecutive_failures(self, gate, clock, emergencies):
        """Test five straight failures start a cooldown without an emergency stop"""
        for i in range(5):
            await gate.record_outcome(f"exec_{i}", False)

        assessment = await gate.assess(candidate())
        assert any(r.startswith("cooldown") for r in assessment.reasons)
        assert emergencies == []

        clock.now += 6
        assert (await gate.assess(candidate())).allowed is True

    @pytest.mark.asyncio
    async def test_emergency_on_stop_loss(self, gate, emergencies):
        """Test a daily loss beyond the stop loss engages the emergency stop once"""
        await gate.record_outcome("exec_1", False, Decimal("-600"))
        await gate.record_outcome("exec_2", False, Decimal("-10"))

        assert gate.emergency_stop_active is True
        assert len(emergencies) == 1
        assert "daily loss" in emergencies[0]

        assessment = await gate.assess(candidate())
        assert any(r.startswith("emergency_stop") for r in assessment.reasons)

    @pytest.mark.asyncio
    async def test_emergency_on_drawdown(self, gate, emergencies):
        """Test a drawdown beyond 20% of the day's peak engages the emergency stop"""
        await gate.record_outcome("exec_1", True, Decimal("100"))
        await gate.record_outcome("exec_2", False, Decimal("-30"))

        assert gate.emergency_stop_active is True
        assert "drawdown" in emergencies[0]

    @pytest.mark.asyncio
    async def test_reset_emergency_stop(self, gate):
        """Test a manual reset re-enables trading"""
        gate.trigger_emergency_stop("operator")
        assert gate.is_trading_allowed() is False

        gate.reset_emergency_stop()

        assert gate.is_trading_allowed() is True
        assert (await gate.assess(candidate())).allowed is True

    @pytest.mark.asyncio
    async def test_external_trigger_does_not_notify(self, gate, emergencies):
        """Test an operator stop does not call back into the orchestrator"""
        gate.trigger_emergency_stop("operator")

        assert emergencies == []
        assert gate.snapshot()["emergency_reason"] == "operator"

    @pytest.mark.asyncio
    async def test_hourly_trade_limit(self, clock):
        """Test trades in the last hour are capped"""
        gate = RiskGate(
            RiskConfig(max_trades_per_hour=2),
            {Chain.ETHEREUM: default_ethereum_config()},
            clock=clock,
        )
        await gate.record_outcome("a", True, Decimal("20"))
        await gate.record_outcome("b", True, Decimal("20"))

        assert (await gate.assess(candidate())).allowed is False

        clock.now += 3601
        assert (await gate.assess(candidate())).allowed is True

    @pytest.mark.asyncio
    async def test_daily_reset(self, gate, clock):
        """Test volume and P&L reset at the UTC day boundary"""
        await gate.assess(candidate("a"), reserve=True)
        await gate.record_outcome("a", True, Decimal("50"))
        assert gate.snapshot()["daily_pnl_usd"] == 50.0

        clock.now += 86400
        await gate.assess(candidate("b"))

        snapshot = gate.snapshot()
        assert snapshot["daily_pnl_usd"] == 0.0
        assert snapshot["daily_volume"] == {}
