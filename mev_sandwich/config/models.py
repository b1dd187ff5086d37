"""Configuration models for chains, relays and pipeline limits"""

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mev_sandwich.errors import ConfigurationError
from mev_sandwich.models import Chain


class BscRelayProvider(str, Enum):
    """Private bundle relays available on BSC"""

    BLOXROUTE = "bloxroute"
    NODEREAL = "nodereal"


class FlashbotsConfig(BaseModel):
    """Flashbots-style relay settings (Ethereum)"""

    relay_url: str = "https://relay.flashbots.net"
    reputation_bonus: float = Field(default=0.0, ge=0.0, le=1.0)
    max_priority_fee_gwei: Decimal = Field(default=Decimal("50"), gt=0)
    default_priority_fee_gwei: Decimal = Field(default=Decimal("2"), gt=0)
    profit_share: Decimal = Field(default=Decimal("0.7"), gt=0, le=1)
    request_timeout_seconds: float = 10.0

    model_config = ConfigDict(frozen=True)


class JitoConfig(BaseModel):
    """Jito block engine settings (Solana)"""

    block_engine_url: str = "https://mainnet.block-engine.jito.wtf"
    tip_account: str = "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY"
    min_tip_lamports: int = Field(default=1000, ge=0)
    max_tip_lamports: int = Field(default=100000, gt=0)
    tip_profit_share: Decimal = Field(default=Decimal("0.2"), gt=0, le=1)
    base_tps: float = Field(default=2000.0, gt=0)
    max_congestion_multiplier: float = Field(default=3.0, ge=1.0)
    compute_unit_limit: int = Field(default=200000, gt=0)
    request_timeout_seconds: float = 10.0

    model_config = ConfigDict(frozen=True)


class BscRelayConfig(BaseModel):
    """BSC private relay settings (bloXroute or NodeReal)"""

    provider: BscRelayProvider = BscRelayProvider.BLOXROUTE
    endpoint: str = ""
    api_key: str = ""
    gas_premium_percent: int = Field(default=20, ge=0, le=500)
    gas_cache_seconds: float = 30.0
    bundle_timeout_attempts: int = Field(default=20, gt=0)
    request_timeout_seconds: float = 10.0

    model_config = ConfigDict(frozen=True)


class ChainConfig(BaseModel):
    """Configuration for one chain family"""

    name: Chain
    enabled: bool = True
    native_token: str
    native_token_usd: Decimal = Field(gt=0)
    wrapped_native: str
    min_profit: Decimal = Field(gt=0)
    max_position_size: Decimal = Field(gt=0)
    max_gas_price_gwei: Decimal = Field(default=Decimal("100"), gt=0)
    swap_gas_units: int = Field(gt=0)
    gas_multiplier: Decimal = Field(default=Decimal("1.0"), gt=0)
    block_time_seconds: float = Field(gt=0)
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    dex_routers: Dict[str, str] = Field(default_factory=dict)
    flashbots: Optional[FlashbotsConfig] = None
    jito: Optional[JitoConfig] = None
    bsc_relay: Optional[BscRelayConfig] = None

    model_config = ConfigDict(frozen=True)

    def dex_for_router(self, address: str) -> Optional[str]:
        """Look up the DEX name behind a router / program address"""
        needle = address.lower()
        for dex, router in self.dex_routers.items():
            if router.lower() == needle:
                return dex
        return None


class ScorerConfig(BaseModel):
    """Mempool filters applied before an opportunity is emitted"""

    min_trade_value_usd: Decimal = Field(default=Decimal("1000"), gt=0)
    max_gas_price_gwei: Decimal = Field(default=Decimal("100"), gt=0)
    min_pool_liquidity_usd: Decimal = Field(default=Decimal("100000"), ge=0)
    blacklisted_tokens: Tuple[str, ...] = ()
    whitelisted_dexes: Tuple[str, ...] = (
        "uniswap-v2",
        "uniswap-v3",
        "sushiswap",
        "pancakeswap",
        "pancakeswap-v3",
        "raydium",
        "orca",
        "jupiter",
    )
    profitability_threshold: Decimal = Field(default=Decimal("1.0"), gt=0)
    min_token_quality: float = Field(default=0.5, ge=0.0, le=1.0)
    front_run_fraction: Decimal = Field(default=Decimal("0.4"), gt=0, le=1)
    victim_tolerance: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)
    default_expiry_seconds: float = Field(default=600.0, gt=0)

    model_config = ConfigDict(frozen=True)


class OptimizerConfig(BaseModel):
    """Profit optimizer tuning"""

    min_confidence: float = Field(default=0.8, gt=0.0, le=1.0)
    min_profitability: Decimal = Field(default=Decimal("1.0"), ge=0)
    grid_steps: int = Field(default=10, ge=2)
    refine_iterations: int = Field(default=40, ge=0)

    model_config = ConfigDict(frozen=True)


class RiskConfig(BaseModel):
    """Hard limits enforced by the risk gate"""

    max_concurrent_positions: int = Field(default=3, gt=0)
    max_daily_volume: Decimal = Field(default=Decimal("100"), gt=0)
    min_liquidity_usd: Decimal = Field(default=Decimal("50000"), gt=0)
    max_price_impact: Decimal = Field(default=Decimal("10"), gt=0)
    max_slippage: Decimal = Field(default=Decimal("5"), gt=0, le=100)
    max_gas_price_gwei: Decimal = Field(default=Decimal("100"), gt=0)
    min_profit_usd: Decimal = Field(default=Decimal("10"), gt=0)
    cooldown_seconds: float = Field(default=5.0, gt=0)
    consecutive_failure_limit: int = Field(default=5, gt=0)
    emergency_failure_limit: int = Field(default=10, gt=0)
    max_trades_per_hour: int = Field(default=20, gt=0)
    max_failures_per_hour: int = Field(default=10, gt=0)
    emergency_stop_loss_usd: Decimal = Field(default=Decimal("500"), gt=0)
    max_drawdown_percent: Decimal = Field(default=Decimal("20"), gt=0, le=100)
    portfolio_warning_ratio: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)

    model_config = ConfigDict(frozen=True)


class BiddingConfig(BaseModel):
    """Competition-aware gas/tip multiplier steps"""

    high_profitability: Decimal = Field(default=Decimal("10"), gt=0)
    high_profitability_multiplier: Decimal = Field(default=Decimal("1.5"), ge=1)
    medium_profitability: Decimal = Field(default=Decimal("5"), gt=0)
    medium_profitability_multiplier: Decimal = Field(default=Decimal("1.2"), ge=1)
    large_trade_usd: Decimal = Field(default=Decimal("100000"), gt=0)
    large_trade_multiplier: Decimal = Field(default=Decimal("1.5"), ge=1)
    medium_trade_usd: Decimal = Field(default=Decimal("25000"), gt=0)
    medium_trade_multiplier: Decimal = Field(default=Decimal("1.2"), ge=1)
    max_multiplier: Decimal = Field(default=Decimal("3.0"), ge=1)

    model_config = ConfigDict(frozen=True)


class AdmissionConfig(BaseModel):
    """Adaptive admission controller tuning"""

    min_success_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    min_samples: int = Field(default=10, gt=0)
    stats_window: int = Field(default=100, gt=0)
    stats_window_seconds: float = Field(default=300.0, gt=0)
    max_execution_latency_ms: float = Field(default=5000.0, gt=0)
    min_priority: float = Field(default=20.0, ge=0.0, le=100.0)
    token_cache_seconds: float = Field(default=600.0, gt=0)
    pool_cache_seconds: float = Field(default=300.0, gt=0)
    gas_cache_seconds: float = Field(default=30.0, gt=0)
    decision_cache_seconds: float = Field(default=30.0, gt=0)
    cache_size: int = Field(default=10000, gt=0)

    model_config = ConfigDict(frozen=True)


class ResilienceConfig(BaseModel):
    """Circuit breaker and retry policy"""

    failure_threshold: int = Field(default=5, gt=0)
    reset_timeout_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, gt=0)
    base_delay_seconds: float = Field(default=0.5, ge=0)
    max_delay_seconds: float = Field(default=4.0, ge=0)
    price_max_attempts: int = Field(default=1, gt=0)
    price_cache_seconds: float = Field(default=30.0, ge=0)

    model_config = ConfigDict(frozen=True)


class AppConfig(BaseModel):
    """Immutable, fully validated pipeline configuration"""

    chains: Dict[Chain, ChainConfig]
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    bidding: BiddingConfig = Field(default_factory=BiddingConfig)
    admission: AdmissionConfig = Field(default_factory=AdmissionConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    max_concurrent_bundles: int = Field(default=5, ge=1, le=50)
    paper_trading: bool = False
    execution_window_seconds: float = Field(default=60.0, gt=0)
    shutdown_max_wait_seconds: float = Field(default=60.0, ge=0)
    log_level: str = "INFO"
    prometheus_port: int = 9090
    health_port: int = 8000

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_chains(self) -> "AppConfig":
        enabled = [c for c in self.chains.values() if c.enabled]
        if not enabled:
            raise ValueError("at least one chain must be enabled")

        for key, chain_config in self.chains.items():
            if key != chain_config.name:
                raise ValueError(f"chain key {key.value} does not match {chain_config.name.value}")
            if not chain_config.enabled:
                continue
            if chain_config.name == Chain.ETHEREUM:
                if chain_config.flashbots is None or not chain_config.flashbots.relay_url:
                    raise ValueError("ethereum requires a Flashbots relay URL")
            elif chain_config.name == Chain.SOLANA:
                jito = chain_config.jito
                if jito is None or not jito.block_engine_url or not jito.tip_account:
                    raise ValueError("solana requires a Jito block engine URL and tip account")
                if jito.min_tip_lamports > jito.max_tip_lamports:
                    raise ValueError("jito min tip exceeds max tip")
            elif chain_config.name == Chain.BSC:
                relay = chain_config.bsc_relay
                if relay is None or not relay.endpoint:
                    raise ValueError("bsc requires a relay endpoint")
                if not relay.api_key:
                    raise ValueError(f"bsc relay {relay.provider.value} requires an API key")
        return self

    @classmethod
    def build(cls, **kwargs) -> "AppConfig":
        """Construct and validate, converting validation failures to ConfigurationError"""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"invalid configuration: {e}", cause=e) from e

    def enabled_chains(self) -> List[Chain]:
        return [name for name, c in self.chains.items() if c.enabled]

    def chain(self, chain: Chain) -> ChainConfig:
        try:
            return self.chains[chain]
        except KeyError:
            raise ConfigurationError(
                f"chain {chain.value} is not configured", chain=chain.value
            ) from None


def default_ethereum_config(**overrides) -> ChainConfig:
    """Ethereum mainnet defaults"""
    values = dict(
        name=Chain.ETHEREUM,
        native_token="ETH",
        native_token_usd=Decimal("3000"),
        wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        min_profit=Decimal("0.01"),
        max_position_size=Decimal("1.0"),
        max_gas_price_gwei=Decimal("100"),
        swap_gas_units=150000,
        gas_multiplier=Decimal("1.5"),
        block_time_seconds=12.0,
        poll_interval_seconds=2.0,
        dex_routers={
            "uniswap-v2": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
            "uniswap-v3": "0xE592427A0AEce92De3Edee1F18E0157C05861564",
            "sushiswap": "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
        },
        flashbots=FlashbotsConfig(),
    )
    values.update(overrides)
    return ChainConfig(**values)


def default_solana_config(**overrides) -> ChainConfig:
    """Solana mainnet defaults"""
    values = dict(
        name=Chain.SOLANA,
        native_token="SOL",
        native_token_usd=Decimal("100"),
        wrapped_native="So11111111111111111111111111111111111111112",
        min_profit=Decimal("0.1"),
        max_position_size=Decimal("10.0"),
        max_gas_price_gwei=Decimal("100"),
        swap_gas_units=200000,
        gas_multiplier=Decimal("2.0"),
        block_time_seconds=0.4,
        poll_interval_seconds=2.0,
        dex_routers={
            "raydium": "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
            "orca": "9W959DqEETiGZocYWCQPaJ6sBmUzgfxXfqGeTEdp3aQP",
            "jupiter": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
        },
        jito=JitoConfig(),
    )
    values.update(overrides)
    return ChainConfig(**values)


def default_bsc_config(**overrides) -> ChainConfig:
    """BSC mainnet defaults"""
    values = dict(
        name=Chain.BSC,
        native_token="BNB",
        native_token_usd=Decimal("300"),
        wrapped_native="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        min_profit=Decimal("0.05"),
        max_position_size=Decimal("5.0"),
        max_gas_price_gwei=Decimal("20"),
        swap_gas_units=120000,
        gas_multiplier=Decimal("1.3"),
        block_time_seconds=3.0,
        poll_interval_seconds=3.0,
        dex_routers={
            "pancakeswap": "0x10ED43C718714eb63d5aA57B78B54704E256024E",
            "pancakeswap-v3": "0x13f4EA83D0bd40E75C8222255bc855a974568Dd4",
        },
        bsc_relay=BscRelayConfig(),
    )
    values.update(overrides)
    return ChainConfig(**values)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Chains
    ethereum_enabled: bool = Field(default=True, alias="ETHEREUM_ENABLED")
    solana_enabled: bool = Field(default=False, alias="SOLANA_ENABLED")
    bsc_enabled: bool = Field(default=False, alias="BSC_ENABLED")

    # Profit thresholds (native units)
    eth_min_profit: Decimal = Field(default=Decimal("0.01"), alias="ETH_MIN_PROFIT")
    sol_min_profit: Decimal = Field(default=Decimal("0.1"), alias="SOL_MIN_PROFIT")
    bnb_min_profit: Decimal = Field(default=Decimal("0.05"), alias="BNB_MIN_PROFIT")

    # Native token reference prices
    eth_price_usd: Decimal = Field(default=Decimal("3000"), alias="ETH_PRICE_USD")
    sol_price_usd: Decimal = Field(default=Decimal("100"), alias="SOL_PRICE_USD")
    bnb_price_usd: Decimal = Field(default=Decimal("300"), alias="BNB_PRICE_USD")

    # Position sizes
    max_position_size_eth: Decimal = Field(default=Decimal("1.0"), alias="MAX_POSITION_SIZE_ETH")
    max_position_size_sol: Decimal = Field(default=Decimal("10.0"), alias="MAX_POSITION_SIZE_SOL")
    max_position_size_bnb: Decimal = Field(default=Decimal("5.0"), alias="MAX_POSITION_SIZE_BNB")

    # Flashbots
    flashbots_relay_url: str = Field(default="https://relay.flashbots.net", alias="FLASHBOTS_RELAY_URL")
    reputation_bonus: float = Field(default=0.0, alias="REPUTATION_BONUS")
    max_priority_fee_gwei: Decimal = Field(default=Decimal("50"), alias="MAX_PRIORITY_FEE")

    # Jito
    jito_block_engine_url: str = Field(
        default="https://mainnet.block-engine.jito.wtf", alias="JITO_BLOCK_ENGINE_URL"
    )
    jito_tip_account: str = Field(
        default="Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY", alias="JITO_TIP_ACCOUNT"
    )
    max_tip_lamports: int = Field(default=100000, alias="MAX_TIP_LAMPORTS")

    # BSC relay
    bsc_mev_provider: BscRelayProvider = Field(
        default=BscRelayProvider.BLOXROUTE, alias="BSC_MEV_PROVIDER"
    )
    bsc_mev_endpoint: str = Field(default="", alias="BSC_MEV_ENDPOINT")
    bsc_mev_api_key: str = Field(default="", alias="BSC_MEV_API_KEY")
    bsc_max_gas_price: Decimal = Field(default=Decimal("20"), alias="BSC_MAX_GAS_PRICE")
    bsc_gas_premium_percent: int = Field(default=20, alias="BSC_GAS_PREMIUM_PERCENT")

    # Mempool filters
    min_trade_value: Decimal = Field(default=Decimal("1000"), alias="MIN_TRADE_VALUE")
    max_gas_price: Decimal = Field(default=Decimal("100"), alias="MAX_GAS_PRICE")
    min_liquidity: Decimal = Field(default=Decimal("100000"), alias="MIN_LIQUIDITY")
    blacklisted_tokens: str = Field(default="", alias="BLACKLISTED_TOKENS")
    whitelisted_dexes: str = Field(default="", alias="WHITELISTED_DEXES")
    profitability_threshold: Decimal = Field(default=Decimal("1"), alias="PROFITABILITY_THRESHOLD")

    # Pipeline
    max_concurrent_bundles: int = Field(default=5, alias="MAX_CONCURRENT_BUNDLES")
    paper_trading_mode: bool = Field(default=False, alias="PAPER_TRADING_MODE")
    min_price_confidence: float = Field(default=0.8, alias="MIN_PRICE_CONFIDENCE")
    max_slippage: Decimal = Field(default=Decimal("5"), alias="MAX_SLIPPAGE")
    max_daily_volume: Decimal = Field(default=Decimal("100"), alias="MAX_DAILY_VOLUME")
    emergency_stop_loss: Decimal = Field(default=Decimal("500"), alias="EMERGENCY_STOP_LOSS")

    # Monitoring
    prometheus_port: int = Field(default=9090, alias="PROMETHEUS_PORT")
    health_check_port: int = Field(default=8000, alias="HEALTH_CHECK_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Deployment adapters ("package.module:factory")
    collaborators_factory: str = Field(default="", alias="COLLABORATORS_FACTORY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _split(value: str) -> Tuple[str, ...]:
        return tuple(item.strip() for item in value.split(",") if item.strip())

    def get_ethereum_config(self) -> ChainConfig:
        """Get Ethereum chain configuration"""
        return default_ethereum_config(
            enabled=self.ethereum_enabled,
            native_token_usd=self.eth_price_usd,
            min_profit=self.eth_min_profit,
            max_position_size=self.max_position_size_eth,
            flashbots=FlashbotsConfig(
                relay_url=self.flashbots_relay_url,
                reputation_bonus=self.reputation_bonus,
                max_priority_fee_gwei=self.max_priority_fee_gwei,
            ),
        )

    def get_solana_config(self) -> ChainConfig:
        """Get Solana chain configuration"""
        return default_solana_config(
            enabled=self.solana_enabled,
            native_token_usd=self.sol_price_usd,
            min_profit=self.sol_min_profit,
            max_position_size=self.max_position_size_sol,
            jito=JitoConfig(
                block_engine_url=self.jito_block_engine_url,
                tip_account=self.jito_tip_account,
                max_tip_lamports=self.max_tip_lamports,
            ),
        )

    def get_bsc_config(self) -> ChainConfig:
        """Get BSC chain configuration"""
        return default_bsc_config(
            enabled=self.bsc_enabled,
            native_token_usd=self.bnb_price_usd,
            min_profit=self.bnb_min_profit,
            max_position_size=self.max_position_size_bnb,
            max_gas_price_gwei=self.bsc_max_gas_price,
            bsc_relay=BscRelayConfig(
                provider=self.bsc_mev_provider,
                endpoint=self.bsc_mev_endpoint,
                api_key=self.bsc_mev_api_key,
                gas_premium_percent=self.bsc_gas_premium_percent,
            ),
        )

    def get_app_config(self) -> AppConfig:
        """Assemble the validated pipeline configuration

        Raises:
            ConfigurationError: if any chain, relay or limit setting is invalid
        """
        try:
            chains = {
                Chain.ETHEREUM: self.get_ethereum_config(),
                Chain.SOLANA: self.get_solana_config(),
                Chain.BSC: self.get_bsc_config(),
            }
            scorer_values = dict(
                min_trade_value_usd=self.min_trade_value,
                max_gas_price_gwei=self.max_gas_price,
                min_pool_liquidity_usd=self.min_liquidity,
                blacklisted_tokens=self._split(self.blacklisted_tokens),
                profitability_threshold=self.profitability_threshold,
            )
            whitelisted = self._split(self.whitelisted_dexes)
            if whitelisted:
                scorer_values["whitelisted_dexes"] = whitelisted
            scorer = ScorerConfig(**scorer_values)
            optimizer = OptimizerConfig(min_confidence=self.min_price_confidence)
            risk = RiskConfig(
                max_slippage=self.max_slippage,
                max_daily_volume=self.max_daily_volume,
                emergency_stop_loss_usd=self.emergency_stop_loss,
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid configuration: {e}", cause=e) from e

        return AppConfig.build(
            chains=chains,
            scorer=scorer,
            optimizer=optimizer,
            risk=risk,
            max_concurrent_bundles=self.max_concurrent_bundles,
            paper_trading=self.paper_trading_mode,
            log_level=self.log_level,
            prometheus_port=self.prometheus_port,
            health_port=self.health_check_port,
        )
