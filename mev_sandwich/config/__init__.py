"""Configuration module"""

from .models import (
    AdmissionConfig,
    AppConfig,
    BiddingConfig,
    BscRelayConfig,
    BscRelayProvider,
    ChainConfig,
    FlashbotsConfig,
    JitoConfig,
    OptimizerConfig,
    ResilienceConfig,
    RiskConfig,
    ScorerConfig,
    Settings,
    default_bsc_config,
    default_ethereum_config,
    default_solana_config,
)

__all__ = [
    "AdmissionConfig",
    "AppConfig",
    "BiddingConfig",
    "BscRelayConfig",
    "BscRelayProvider",
    "ChainConfig",
    "FlashbotsConfig",
    "JitoConfig",
    "OptimizerConfig",
    "ResilienceConfig",
    "RiskConfig",
    "ScorerConfig",
    "Settings",
    "default_bsc_config",
    "default_ethereum_config",
    "default_solana_config",
]
