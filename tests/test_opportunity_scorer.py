"""Tests for the opportunity scorer"""

import time
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from web3 import Web3

from conftest import UNISWAP_V2_ROUTER, USDC, WETH, make_pool
from mev_sandwich.config import AppConfig, ScorerConfig, default_ethereum_config
from mev_sandwich.detectors.decoder import UNISWAP_V2_ROUTER_ABI
from mev_sandwich.detectors.opportunity_scorer import (
    OpportunityScorer,
    TradeAnalysis,
    calculate_mev_score,
    calculate_token_quality,
)
from mev_sandwich.events import EventBus, EventType
from mev_sandwich.interfaces import ChainClient
from mev_sandwich.models import Chain, DecodedSwap, PendingTransaction

RECIPIENT = "0x000000000000000000000000000000000000dEaD"


def swap_calldata(min_out: int, path=(WETH, USDC), deadline: int = 0) -> str:
    router = Web3().eth.contract(abi=UNISWAP_V2_ROUTER_ABI)
    return router.encode_abi(
        "swapExactETHForTokens",
        args=[min_out, list(path), RECIPIENT, deadline or int(time.time()) + 300],
    )


def pending(data: str, value: int = 50 * 10**18, gas_price: int = 20 * 10**9, to=UNISWAP_V2_ROUTER):
    return PendingTransaction(
        tx_hash="0x" + "cd" * 32,
        chain=Chain.ETHEREUM,
        raw_transaction="0x02f8b1",
        to=to,
        data=data,
        value=value,
        gas_limit=250000,
        gas_price=gas_price,
    )


@pytest.fixture
def config():
    return AppConfig.build(
        chains={Chain.ETHEREUM: default_ethereum_config()},
        scorer=ScorerConfig(profitability_threshold=Decimal("0.1")),
    )


@pytest.fixture
def client(weth_info, usdc_info):
    tokens = {WETH.lower(): weth_info, USDC.lower(): usdc_info}
    chain_client = Mock(spec=ChainClient)
    chain_client.chain = Chain.ETHEREUM
    chain_client.get_token = AsyncMock(side_effect=lambda address: tokens.get(address.lower()))
    chain_client.get_pool = AsyncMock(return_value=make_pool())
    return chain_client


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def scorer(config, client, bus):
    return OpportunityScorer(config, {Chain.ETHEREUM: client}, event_bus=bus)


class TestScoring:
    """Test end-to-end scoring of pending swaps"""

    @pytest.mark.asyncio
    async def test_profitable_swap_becomes_opportunity(self, scorer, bus):
        """Test a large WETH->USDC swap passes every filter"""
        found = []
        bus.subscribe(found.append, event_types=[EventType.OPPORTUNITY_FOUND])
        tx = pending(swap_calldata(min_out=140000 * 10**6))

        opportunity = await scorer.score(tx)

        assert opportunity is not None
        assert opportunity.victim_tx_hash == tx.tx_hash
        assert opportunity.dex == "uniswap-v2"
        assert opportunity.token_in == WETH
        assert opportunity.token_out == USDC
        assert opportunity.amount_in == Decimal("50")
        assert opportunity.min_amount_out == Decimal("140000")
        assert opportunity.trade_value_usd == Decimal("150000")
        assert opportunity.gas_price_gwei == Decimal("20")
        assert opportunity.profitability > Decimal("0.1")
        assert 0 < opportunity.mev_score <= 100
        assert opportunity.time_to_expiry() > 0
        assert len(found) == 1
        assert found[0].payload["victim_tx_hash"] == tx.tx_hash

    @pytest.mark.asyncio
    async def test_unknown_router_is_discarded(self, scorer):
        """Test transactions to unknown contracts are ignored"""
        tx = pending(swap_calldata(min_out=1), to="0x0000000000000000000000000000000000000042")

        assert await scorer.score(tx) is None

    @pytest.mark.asyncio
    async def test_gas_price_filter(self, scorer):
        """Test victims bidding above the gas ceiling are ignored"""
        tx = pending(swap_calldata(min_out=1), gas_price=150 * 10**9)

        assert await scorer.score(tx) is None

    @pytest.mark.asyncio
    async def test_small_trade_is_discarded(self, scorer):
        """Test trades below the minimum USD value are ignored"""
        tx = pending(swap_calldata(min_out=1), value=10**17)

        assert await scorer.score(tx) is None

    @pytest.mark.asyncio
    async def test_blacklisted_token(self, client):
        """Test blacklisted tokens are never sandwiched"""
        config = AppConfig.build(
            chains={Chain.ETHEREUM: default_ethereum_config()},
            scorer=ScorerConfig(
                profitability_threshold=Decimal("0.1"),
                blacklisted_tokens=(USDC.lower(),),
            ),
        )
        scorer = OpportunityScorer(config, {Chain.ETHEREUM: client})

        assert await scorer.score(pending(swap_calldata(min_out=1))) is None
        client.get_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_honeypot_is_discarded(self, scorer, client, weth_info, usdc_info):
        """Test honeypot tokens are rejected"""
        honeypot = replace(usdc_info, is_honeypot=True)
        client.get_token.side_effect = lambda a: weth_info if a.lower() == WETH.lower() else honeypot

        assert await scorer.score(pending(swap_calldata(min_out=1))) is None

    @pytest.mark.asyncio
    async def test_thin_pool_is_discarded(self, scorer, client):
        """Test pools below the minimum liquidity are ignored"""
        client.get_pool.return_value = make_pool(liquidity_usd=Decimal("50000"))

        assert await scorer.score(pending(swap_calldata(min_out=1))) is None

    @pytest.mark.asyncio
    async def test_reverting_victim_is_discarded(self, scorer):
        """Test a victim whose min-out exceeds the unsandwiched output"""
        tx = pending(swap_calldata(min_out=143000 * 10**6))

        assert await scorer.score(tx) is None

    @pytest.mark.asyncio
    async def test_client_failure_is_contained(self, scorer, client):
        """Test RPC errors discard the transaction instead of raising"""
        client.get_token.side_effect = ConnectionError("rpc down")

        assert await scorer.score(pending(swap_calldata(min_out=1))) is None

    @pytest.mark.asyncio
    async def test_metadata_is_cached(self, scorer, client):
        """Test token and pool metadata are fetched once for repeated swaps"""
        await scorer.score(pending(swap_calldata(min_out=140000 * 10**6)))
        await scorer.score(pending(swap_calldata(min_out=140000 * 10**6)))

        assert client.get_token.await_count == 2
        assert client.get_pool.await_count == 1


class TestHeuristics:
    """Test token quality, MEV score and expiry helpers"""

    def test_token_quality(self, weth_info, usdc_info):
        """Test verified, low-tax, deep tokens score 1.0"""
        assert calculate_token_quality(weth_info, usdc_info) == 1.0

        unverified = replace(usdc_info, verified=False, liquidity_usd=Decimal("1000"))
        assert calculate_token_quality(weth_info, unverified) == pytest.approx(0.7)

    def test_mev_score_scaled_by_confidence(self, weth_info, usdc_info):
        """Test the score is bounded and scales with confidence"""
        analysis = TradeAnalysis(
            is_profitable=True,
            estimated_profit=Decimal("0.1"),
            profitability=Decimal("2"),
            confidence=1.0,
            slippage=Decimal("3"),
        )
        low = replace(analysis, confidence=0.5)
        pool = make_pool()

        full = calculate_mev_score(analysis, Decimal("150000"), pool, weth_info, usdc_info)
        half = calculate_mev_score(low, Decimal("150000"), pool, weth_info, usdc_info)

        assert 0 < full <= 100
        assert half == pytest.approx(full / 2)

    def test_expiry_defaults_to_ten_minutes(self, scorer):
        """Test swaps without a deadline get the default window"""
        swap = DecodedSwap(method="swap", token_in=WETH, token_out=USDC, amount_in=1, min_amount_out=1)

        assert scorer.expiry_for(swap, now=1000.0) == 1600.0
