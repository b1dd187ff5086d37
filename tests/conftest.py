"""Shared fixtures for the pipeline test suite"""

import time
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from mev_sandwich.config import AppConfig, default_ethereum_config
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.relays import (
    Bundle,
    BundleStatus,
    RelayClient,
    RelayTransport,
    SimulationOutcome,
    StatusReport,
)
from mev_sandwich.models import (
    Chain,
    ExecutionParams,
    PoolSnapshot,
    SandwichOpportunity,
    TokenInfo,
    VictimTransaction,
)

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
VICTIM_HASH = "0x" + "ab" * 32


def make_pool(**overrides) -> PoolSnapshot:
    values = dict(
        address="0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc",
        dex="uniswap-v2",
        token0=WETH,
        token1=USDC,
        reserve0=Decimal("1000"),
        reserve1=Decimal("3000000"),
        fee_bps=30,
        liquidity_usd=Decimal("6000000"),
    )
    values.update(overrides)
    return PoolSnapshot(**values)


def make_opportunity(**overrides) -> SandwichOpportunity:
    """A 50 WETH -> USDC victim swap on a 1000 WETH / 3M USDC pool"""
    victim = overrides.pop(
        "victim",
        VictimTransaction(
            tx_hash=overrides.pop("victim_tx_hash", VICTIM_HASH),
            to=UNISWAP_V2_ROUTER,
            data="0x7ff36ab5" + "00" * 160,
            value=50 * 10**18,
            gas_limit=250000,
            gas_price=20 * 10**9,
            raw="0x02f8b1018203e8",
        ),
    )
    values = dict(
        victim=victim,
        chain=Chain.ETHEREUM,
        dex="uniswap-v2",
        token_in=WETH,
        token_out=USDC,
        amount_in=Decimal("50"),
        min_amount_out=Decimal("140000"),
        pool=make_pool(),
        gas_price_gwei=Decimal("20"),
        estimated_profit=Decimal("0.0956"),
        profitability=Decimal("0.17"),
        confidence=0.9,
        slippage=Decimal("5"),
        mev_score=60.0,
        trade_value_usd=Decimal("150000"),
        token_in_decimals=18,
        token_out_decimals=6,
        expires_at=time.time() + 600,
    )
    values.update(overrides)
    return SandwichOpportunity(**values)


def make_params(opportunity: SandwichOpportunity = None, **overrides) -> ExecutionParams:
    """Execution parameters for a 0.5 WETH front-run of the standard victim"""
    values = dict(
        execution_id="exec_test",
        opportunity=opportunity or make_opportunity(),
        front_run_amount=Decimal("0.5"),
        expected_front_run_output=Decimal("1490"),
        expected_profit_usd=Decimal("60"),
        expected_profit_native=Decimal("0.02"),
        profitability=Decimal("2"),
        max_gas_price_gwei=Decimal("100"),
        max_slippage=Decimal("1"),
        deadline=time.time() + 60,
        min_profit=Decimal("0.01"),
    )
    values.update(overrides)
    return ExecutionParams(**values)


@pytest.fixture
def weth_info():
    return TokenInfo(
        address=WETH,
        symbol="WETH",
        decimals=18,
        price_usd=Decimal("3000"),
        liquidity_usd=Decimal("1000000000"),
        volume_24h_usd=Decimal("500000000"),
        verified=True,
    )


@pytest.fixture
def usdc_info():
    return TokenInfo(
        address=USDC,
        symbol="USDC",
        decimals=6,
        price_usd=Decimal("1"),
        liquidity_usd=Decimal("1000000000"),
        volume_24h_usd=Decimal("800000000"),
        verified=True,
    )


@pytest.fixture
def eth_config():
    return default_ethereum_config()


@pytest.fixture
def app_config(eth_config):
    """Ethereum-only configuration"""
    return AppConfig.build(chains={Chain.ETHEREUM: eth_config})


@pytest.fixture
def opportunity():
    return make_opportunity()


class FakeRelay(RelayClient):
    """Scripted relay: simulation result, submit errors and a sequence of status reports"""

    name = "fake"
    chain = Chain.ETHEREUM

    def __init__(self, statuses=None, simulation=None, submit_errors=None, poll_interval=0.01):
        transport = Mock(spec=RelayTransport)
        transport.connect = AsyncMock()
        transport.close = AsyncMock()
        transport.is_connected = True
        super().__init__(Mock(spec=ChainClient), Mock(spec=Signer), transport)
        self.poll_interval = poll_interval
        self.statuses = list(statuses or [StatusReport(BundleStatus.INCLUDED, gas_used=310000)])
        self.simulation = simulation or SimulationOutcome(success=True, gas_used=310000)
        self.submit_errors = list(submit_errors or [])
        self.create_calls = 0
        self.submit_calls = 0

    async def create_bundle(self, params, bid_multiplier):
        self.create_calls += 1
        opportunity = params.opportunity
        return Bundle(
            bundle_id=Bundle.new_id(self.chain),
            chain=self.chain,
            relay=self.name,
            execution_id=params.execution_id,
            victim_tx_hash=opportunity.victim_tx_hash,
            transactions=["0xf0", opportunity.victim.raw, "0xb0"],
            target_block=101,
            tip=2 * 10**9,
            bid_multiplier=bid_multiplier,
            estimated_profit_usd=params.expected_profit_usd,
        )

    async def simulate_bundle(self, bundle):
        return self.simulation

    async def submit_bundle(self, bundle):
        self.submit_calls += 1
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return "0xrelaybundle"

    async def get_bundle_status(self, bundle):
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]
