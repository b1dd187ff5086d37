"""BSC private relay client (bloXroute or NodeReal)"""

import time
from decimal import Decimal
from typing import Callable, Dict, Optional

from cachetools import TTLCache

from mev_sandwich.config import BscRelayConfig, BscRelayProvider, ChainConfig
from mev_sandwich.errors import ConfigurationError, RelayRejectedError, ValidationError
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.models import Chain, ExecutionParams
from mev_sandwich.relays.base import Bundle, BundleStatus, RelayClient, SimulationOutcome, StatusReport
from mev_sandwich.relays.evm import CHAIN_IDS, GWEI, RouterCalldataBuilder, build_transaction, gwei_to_wei, tx_hash_of
from mev_sandwich.relays.transport import RelayTransport

# BSC produces a block roughly every 3 seconds
RECEIPT_POLL_SECONDS = 3.0


class BscRelayClient(RelayClient):
    """
    Submits sandwich bundles through bloXroute or NodeReal on BSC.

    Transactions are legacy (gasPrice) with a configurable premium over the
    network gas price. Inclusion is detected from the front-run receipt, giving
    up after ``bundle_timeout_attempts`` blocks past the target.
    """

    chain = Chain.BSC
    poll_interval = RECEIPT_POLL_SECONDS

    def __init__(
        self,
        chain_config: ChainConfig,
        chain_client: ChainClient,
        signer: Signer,
        transport: Optional[RelayTransport] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        if chain_config.bsc_relay is None:
            raise ConfigurationError("bsc relay is not configured", chain=self.chain.value)
        self.config: BscRelayConfig = chain_config.bsc_relay
        self.name = self.config.provider.value
        self.chain_config = chain_config
        self.calldata = RouterCalldataBuilder(chain_config)
        self._gas_cache: TTLCache = TTLCache(maxsize=1, ttl=self.config.gas_cache_seconds, timer=timer)
        super().__init__(
            chain_client,
            signer,
            transport or RelayTransport(self.name, self.config.request_timeout_seconds),
        )

    @property
    def is_bloxroute(self) -> bool:
        return self.config.provider == BscRelayProvider.BLOXROUTE

    @property
    def gas_limit(self) -> int:
        return int(Decimal(self.chain_config.swap_gas_units) * self.chain_config.gas_multiplier)

    def _auth_headers(self) -> Dict[str, str]:
        if self.is_bloxroute:
            return {"Authorization": self.config.api_key}
        return {"X-API-KEY": self.config.api_key}

    async def network_gas_price(self) -> int:
        """Network gas price in wei, cached for ``gas_cache_seconds``"""
        cached = self._gas_cache.get("gas_price")
        if cached is not None:
            return cached
        price = await self.chain_client.get_gas_price()
        self._gas_cache["gas_price"] = price
        return price

    async def calculate_gas_price(self, params: ExecutionParams, bid_multiplier: Decimal) -> int:
        """Network price plus premium, scaled by the bid and capped at the max gas price"""
        network = Decimal(await self.network_gas_price())
        premium = Decimal(100 + self.config.gas_premium_percent) / Decimal(100)
        price = int(network * premium * bid_multiplier)
        cap = gwei_to_wei(min(params.max_gas_price_gwei, self.chain_config.max_gas_price_gwei))
        if network > cap:
            raise ValidationError(
                f"network gas price {int(network)} wei exceeds max {cap} wei",
                chain=self.chain.value,
            )
        return min(price, cap)

    async def create_bundle(self, params: ExecutionParams, bid_multiplier: Decimal) -> Bundle:
        opportunity = params.opportunity
        block = await self.chain_client.get_block_number()
        gas_price = await self.calculate_gas_price(params, bid_multiplier)
        sender = self.signer.address(self.chain)
        nonce = await self.chain_client.get_nonce(sender)
        chain_id = CHAIN_IDS[self.chain]

        front = self.calldata.front_run(params, sender)
        back = self.calldata.back_run(params, sender)
        front_raw = await self.signer.sign_transaction(
            self.chain,
            build_transaction(front, chain_id, sender, nonce, self.gas_limit, gas_price=gas_price),
        )
        back_raw = await self.signer.sign_transaction(
            self.chain,
            build_transaction(back, chain_id, sender, nonce + 1, self.gas_limit, gas_price=gas_price),
        )

        bundle = Bundle(
            bundle_id=Bundle.new_id(self.chain),
            chain=self.chain,
            relay=self.name,
            execution_id=params.execution_id,
            victim_tx_hash=opportunity.victim_tx_hash,
            transactions=[front_raw, opportunity.victim.raw, back_raw],
            target_block=block + 1,
            tip=gas_price,
            bid_multiplier=bid_multiplier,
            estimated_profit_usd=params.expected_profit_usd,
            front_run_tx_hash=tx_hash_of(front_raw),
            metadata={"gas_price": gas_price, "provider": self.name},
        )
        self._logger.info(
            "bsc_bundle_created",
            bundle_id=bundle.bundle_id,
            victim_tx=bundle.victim_tx_hash,
            target_block=bundle.target_block,
            gas_price_gwei=float(Decimal(gas_price) / GWEI),
        )
        return bundle

    async def simulate_bundle(self, bundle: Bundle) -> SimulationOutcome:
        self._require_connection()
        if self.is_bloxroute:
            method = "blxr_simulate_bundle"
            payload = {
                "transaction": bundle.transactions,
                "block_number": hex(bundle.target_block),
            }
        else:
            method = "eth_callBundle"
            payload = {
                "txs": bundle.transactions,
                "blockNumber": hex(bundle.target_block),
                "stateBlockNumber": "latest",
            }
        result = await self.transport.call(
            self.config.endpoint, method, [payload], headers=self._auth_headers()
        )
        result = result or {}
        for tx_result in result.get("results", []):
            error = tx_result.get("error") or tx_result.get("revert")
            if error:
                return SimulationOutcome(success=False, error=str(error))
        return SimulationOutcome(success=True, gas_used=int(result.get("totalGasUsed", 0)))

    async def submit_bundle(self, bundle: Bundle) -> str:
        self._require_connection()
        if self.is_bloxroute:
            method = "blxr_submit_bundle"
            payload = {
                "transactions": bundle.transactions,
                "blockNumber": hex(bundle.target_block),
                "minTimestamp": 0,
                "maxTimestamp": 0,
            }
        else:
            method = "eth_sendBundle"
            payload = {"txs": bundle.transactions, "blockNumber": hex(bundle.target_block)}

        result = await self.transport.call(
            self.config.endpoint, method, [payload], headers=self._auth_headers()
        )
        if isinstance(result, dict):
            relay_id = result.get("bundleHash") or result.get("bundle_hash")
        else:
            relay_id = result
        if not relay_id:
            raise RelayRejectedError(f"{self.name} {method} returned no bundle hash", chain=self.chain.value)
        return str(relay_id)

    async def get_bundle_status(self, bundle: Bundle) -> StatusReport:
        receipt = await self.chain_client.get_transaction_receipt(bundle.front_run_tx_hash)
        if receipt is not None:
            block = receipt.get("blockNumber")
            if int(receipt.get("status", 0)) == 1:
                return StatusReport(BundleStatus.INCLUDED, gas_used=receipt.get("gasUsed"), block=block)
            return StatusReport(BundleStatus.FAILED, block=block, reason="front-run reverted")

        current = await self.chain_client.get_block_number()
        if current > bundle.target_block + self.config.bundle_timeout_attempts:
            return StatusReport(
                BundleStatus.FAILED,
                block=current,
                reason="bundle not included within timeout",
            )
        return StatusReport(BundleStatus.SUBMITTED, block=current)
