"""Tests for the profit optimizer"""

from decimal import Decimal

import pytest

from conftest import make_opportunity, make_pool
from mev_sandwich.config import OptimizerConfig, default_bsc_config, default_ethereum_config
from mev_sandwich.detectors.amm import simulate_sandwich
from mev_sandwich.detectors.profit_optimizer import ProfitOptimizer
from mev_sandwich.models import Chain, PriceQuote


@pytest.fixture
def optimizer():
    return ProfitOptimizer(
        OptimizerConfig(),
        {Chain.ETHEREUM: default_ethereum_config(), Chain.BSC: default_bsc_config()},
    )


@pytest.fixture
def weth_price():
    return PriceQuote(price=Decimal("3000"), confidence=0.95)


@pytest.fixture
def usdc_price():
    return PriceQuote(price=Decimal("1"), confidence=0.99)


class TestOptimize:
    """Test front-run sizing"""

    def test_profitable_opportunity(self, optimizer, opportunity, weth_price, usdc_price):
        """Test a large victim yields a positive, confidence-weighted profit"""
        result = optimizer.optimize(opportunity, weth_price, usdc_price)

        assert result.valid is True
        assert result.is_profitable is True
        assert Decimal("0") < result.optimal_front_run_amount <= Decimal("1")
        assert result.max_profit_usd == result.raw_profit_usd * Decimal("0.95")
        assert result.price_confidence == 0.95
        assert result.gas_cost_usd > 0
        assert result.profitability > 0
        assert 0.1 <= result.execution_confidence <= 1.0
        assert 0.0 <= result.risk_score <= 1.0
        assert result.victim_loss_usd > 0

    def test_gas_cost_model(self, optimizer):
        """Test two swaps at the chain's gas units and MEV multiplier"""
        # 2 * 150k gas * 20 gwei * 1.5 = 0.009 ETH at $3000
        assert optimizer.gas_cost_usd(Chain.ETHEREUM, Decimal("20")) == Decimal("27")

    def test_position_cap(self, optimizer):
        """Test the chain's max position is converted into token-in units"""
        assert optimizer.position_cap(Chain.ETHEREUM, Decimal("3000")) == Decimal("1")
        assert optimizer.position_cap(Chain.ETHEREUM, Decimal("1")) == Decimal("3000")

    def test_respects_victim_min_out(self, optimizer, weth_price, usdc_price):
        """Test the chosen size never makes the victim revert"""
        opportunity = make_opportunity(min_amount_out=Decimal("142300"))
        reserve_in, reserve_out = opportunity.pool.reserves_for(opportunity.token_in)

        result = optimizer.optimize(opportunity, weth_price, usdc_price)

        assert result.valid is True
        assert result.optimal_front_run_amount < Decimal("1")
        replay = simulate_sandwich(
            result.optimal_front_run_amount,
            opportunity.amount_in,
            reserve_in,
            reserve_out,
            opportunity.pool.fee_bps,
            opportunity.min_amount_out,
        )
        assert replay.victim_reverts is False

    def test_low_price_confidence_zeroes_profit(self, optimizer, opportunity, usdc_price):
        """Test quotes below the confidence floor make the result unprofitable"""
        shaky = PriceQuote(price=Decimal("3000"), confidence=0.5)

        result = optimizer.optimize(opportunity, shaky, usdc_price)

        assert result.max_profit_usd == 0
        assert result.raw_profit_usd > 0
        assert result.is_profitable is False
        assert result.reason == "low_price_confidence"

    def test_invalid_reserves(self, optimizer, opportunity, weth_price, usdc_price):
        """Test empty pools produce an invalid zero result"""
        result = optimizer.optimize(
            opportunity, weth_price, usdc_price, pool_reserves=(Decimal("0"), Decimal("100"))
        )

        assert result.valid is False
        assert result.max_profit_usd == 0
        assert result.reason == "invalid_reserves"

    def test_clamped_to_pool_reserve(self, optimizer, weth_price, usdc_price):
        """Test the search never exceeds the pool's input reserve"""
        opportunity = make_opportunity(
            pool=make_pool(reserve0=Decimal("0.5"), reserve1=Decimal("1500")),
            min_amount_out=Decimal("0"),
        )

        result = optimizer.optimize(opportunity, weth_price, usdc_price)

        assert result.clamped is True
        assert result.optimal_front_run_amount <= Decimal("0.5")

    def test_high_gas_makes_it_unprofitable(self, optimizer, opportunity, weth_price, usdc_price):
        """Test gas cost is subtracted from gross profit"""
        result = optimizer.optimize(
            opportunity, weth_price, usdc_price, gas_price_gwei=Decimal("2000")
        )

        assert result.is_profitable is False

    def test_deterministic(self, optimizer, opportunity, weth_price, usdc_price):
        """Test identical inputs produce identical results"""
        first = optimizer.optimize(opportunity, weth_price, usdc_price)
        second = optimizer.optimize(opportunity, weth_price, usdc_price)

        assert first == second


class TestAnalysisHelpers:
    """Test minimum-size search, gas sensitivity and scoring helpers"""

    def test_find_min_profitable_amount(self, optimizer, weth_price):
        """Test the binary search finds a size that clears the target"""
        opportunity = make_opportunity(min_amount_out=Decimal("0"))

        amount = optimizer.find_min_profitable_amount(opportunity, weth_price, Decimal("10"))

        assert amount is not None
        assert amount > 0

    def test_find_min_profitable_amount_unreachable(self, optimizer, opportunity, weth_price):
        """Test an impossible target returns None"""
        assert (
            optimizer.find_min_profitable_amount(opportunity, weth_price, Decimal("100000000"))
            is None
        )

    def test_gas_sensitivity(self, optimizer, opportunity, weth_price, usdc_price):
        """Test profit falls as the gas price rises"""
        report = optimizer.gas_sensitivity(opportunity, weth_price, usdc_price)

        rows = report["gas_price"]
        assert [row["change_percent"] for row in rows] == [-50, -25, -10, 10, 25, 50, 100]
        profits = [row["max_profit_usd"] for row in rows]
        assert profits == sorted(profits, reverse=True)
        assert rows[0]["max_profit_usd"] > report["base_profit_usd"] > rows[-1]["max_profit_usd"]

    def test_execution_confidence_penalties(self):
        """Test impact and liquidity penalties and the 0.1 floor"""
        clean = ProfitOptimizer.execution_confidence(
            Chain.ETHEREUM, Decimal("1"), Decimal("5000000"), 30, Decimal("20")
        )
        worst = ProfitOptimizer.execution_confidence(
            Chain.ETHEREUM, Decimal("15"), Decimal("5000"), 3000, Decimal("300")
        )

        assert clean == 1.0
        assert worst == 0.1

    def test_risk_score_by_chain(self):
        """Test chain and DEX type add risk"""
        eth = ProfitOptimizer.risk_score(Chain.ETHEREUM, "uniswap-v2", Decimal("0"), Decimal("0"), Decimal("20"))
        sol = ProfitOptimizer.risk_score(Chain.SOLANA, "raydium", Decimal("0"), Decimal("0"), Decimal("20"))
        v3 = ProfitOptimizer.risk_score(Chain.ETHEREUM, "uniswap-v3", Decimal("0"), Decimal("0"), Decimal("20"))

        assert eth == 0.0
        assert sol == pytest.approx(0.1)
        assert v3 == pytest.approx(0.1)
