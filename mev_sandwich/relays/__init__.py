"""Private relay clients, one per chain family"""

from typing import Dict

from mev_sandwich.config import AppConfig
from mev_sandwich.errors import ConfigurationError
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.models import Chain
from mev_sandwich.relays.base import Bundle, BundleStatus, RelayClient, SimulationOutcome, StatusReport
from mev_sandwich.relays.bsc import BscRelayClient
from mev_sandwich.relays.flashbots import FlashbotsRelayClient
from mev_sandwich.relays.jito import JitoRelayClient
from mev_sandwich.relays.transport import RelayTransport

_CLIENTS = {
    Chain.ETHEREUM: FlashbotsRelayClient,
    Chain.SOLANA: JitoRelayClient,
    Chain.BSC: BscRelayClient,
}


def build_relay_clients(
    config: AppConfig,
    chain_clients: Dict[Chain, ChainClient],
    signer: Signer,
) -> Dict[Chain, RelayClient]:
    """Instantiate the relay client of every enabled chain"""
    relays: Dict[Chain, RelayClient] = {}
    for chain in config.enabled_chains():
        if chain not in chain_clients:
            raise ConfigurationError(f"no chain client provided for {chain.value}", chain=chain.value)
        relays[chain] = _CLIENTS[chain](config.chain(chain), chain_clients[chain], signer)
    return relays


__all__ = [
    "Bundle",
    "BundleStatus",
    "BscRelayClient",
    "FlashbotsRelayClient",
    "JitoRelayClient",
    "RelayClient",
    "RelayTransport",
    "SimulationOutcome",
    "StatusReport",
    "build_relay_clients",
]
