"""Flashbots relay client (Ethereum)"""

import json
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from web3 import Web3

from mev_sandwich.config import ChainConfig, FlashbotsConfig
from mev_sandwich.errors import ConfigurationError, RelayRejectedError, ValidationError
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.models import Chain, ExecutionParams
from mev_sandwich.relays.base import Bundle, BundleStatus, RelayClient, SimulationOutcome, StatusReport
from mev_sandwich.relays.evm import CHAIN_IDS, GWEI, RouterCalldataBuilder, build_transaction, gwei_to_wei, tx_hash_of
from mev_sandwich.relays.transport import RelayTransport


class FlashbotsRelayClient(RelayClient):
    """
    Submits sandwich bundles to a Flashbots-compatible relay.

    Bundles target the next block. Requests are authenticated with an
    ``X-Flashbots-Signature`` header over the exact request body. Inclusion is
    detected from the front-run transaction's receipt.
    """

    name = "flashbots"
    chain = Chain.ETHEREUM

    def __init__(
        self,
        chain_config: ChainConfig,
        chain_client: ChainClient,
        signer: Signer,
        transport: Optional[RelayTransport] = None,
    ):
        if chain_config.flashbots is None:
            raise ConfigurationError("flashbots relay is not configured", chain=self.chain.value)
        self.config: FlashbotsConfig = chain_config.flashbots
        self.chain_config = chain_config
        self.poll_interval = chain_config.poll_interval_seconds
        self.calldata = RouterCalldataBuilder(chain_config)
        super().__init__(
            chain_client,
            signer,
            transport or RelayTransport(self.name, self.config.request_timeout_seconds),
        )

    @property
    def gas_limit(self) -> int:
        return int(Decimal(self.chain_config.swap_gas_units) * self.chain_config.gas_multiplier)

    def priority_fee_wei(self, params: ExecutionParams, bid_multiplier: Decimal) -> int:
        """
        Competitive priority fee per gas.

        The base bid is scaled by the multiplier, capped at the configured
        maximum and at the profit share spread over both legs' gas.
        """
        bid = self.config.default_priority_fee_gwei * bid_multiplier
        bid = min(bid, self.config.max_priority_fee_gwei)
        budget_wei = params.expected_profit_native * self.config.profit_share * GWEI * GWEI
        per_gas_cap = budget_wei / Decimal(2 * self.gas_limit)
        return max(0, min(gwei_to_wei(bid), int(per_gas_cap)))

    def fee_caps(self, base_fee: int, priority_fee: int, params: ExecutionParams) -> Tuple[int, int]:
        max_gas = gwei_to_wei(params.max_gas_price_gwei)
        if base_fee > max_gas:
            raise ValidationError(
                f"base fee {base_fee} wei exceeds max gas price {max_gas} wei",
                chain=self.chain.value,
            )
        max_fee = min(2 * base_fee + priority_fee, max_gas)
        return max_fee, min(priority_fee, max_fee)

    async def create_bundle(self, params: ExecutionParams, bid_multiplier: Decimal) -> Bundle:
        opportunity = params.opportunity
        block = await self.chain_client.get_block_number()
        base_fee = await self.chain_client.get_base_fee()
        priority_fee = self.priority_fee_wei(params, bid_multiplier)
        max_fee, priority_fee = self.fee_caps(base_fee, priority_fee, params)

        sender = self.signer.address(self.chain)
        nonce = await self.chain_client.get_nonce(sender)
        chain_id = CHAIN_IDS[self.chain]

        front = self.calldata.front_run(params, sender)
        back = self.calldata.back_run(params, sender)
        front_raw = await self.signer.sign_transaction(
            self.chain,
            build_transaction(front, chain_id, sender, nonce, self.gas_limit, max_fee, priority_fee),
        )
        back_raw = await self.signer.sign_transaction(
            self.chain,
            build_transaction(back, chain_id, sender, nonce + 1, self.gas_limit, max_fee, priority_fee),
        )

        bundle = Bundle(
            bundle_id=Bundle.new_id(self.chain),
            chain=self.chain,
            relay=self.name,
            execution_id=params.execution_id,
            victim_tx_hash=opportunity.victim_tx_hash,
            transactions=[front_raw, opportunity.victim.raw, back_raw],
            target_block=block + 1,
            tip=priority_fee,
            bid_multiplier=bid_multiplier,
            estimated_profit_usd=params.expected_profit_usd,
            front_run_tx_hash=tx_hash_of(front_raw),
            metadata={
                "base_fee": base_fee,
                "max_fee_per_gas": max_fee,
                "max_priority_fee_per_gas": priority_fee,
                "front_run_min_out": front.min_amount_out,
                "back_run_min_out": back.min_amount_out,
            },
        )
        self._logger.info(
            "flashbots_bundle_created",
            bundle_id=bundle.bundle_id,
            victim_tx=bundle.victim_tx_hash,
            target_block=bundle.target_block,
            priority_fee_gwei=float(Decimal(priority_fee) / GWEI),
        )
        return bundle

    async def _signed_call(self, method: str, params: List[Any]) -> Any:
        self._require_connection()
        body = json.dumps(self.transport.build_payload(method, params))
        digest = Web3.to_hex(Web3.keccak(text=body))
        signature = await self.signer.sign_message(self.chain, digest)
        headers = {"X-Flashbots-Signature": f"{self.signer.address(self.chain)}:{signature}"}
        return await self.transport.call(self.config.relay_url, method, params, headers=headers, body=body)

    async def simulate_bundle(self, bundle: Bundle) -> SimulationOutcome:
        result = await self._signed_call(
            "eth_callBundle",
            [
                {
                    "txs": bundle.transactions,
                    "blockNumber": hex(bundle.target_block),
                    "stateBlockNumber": "latest",
                }
            ],
        )
        result = result or {}
        for tx_result in result.get("results", []):
            error = tx_result.get("error") or tx_result.get("revert")
            if error:
                return SimulationOutcome(
                    success=False,
                    gas_used=int(result.get("totalGasUsed", 0)),
                    error=str(error),
                )
        coinbase_diff = result.get("coinbaseDiff")
        return SimulationOutcome(
            success=True,
            gas_used=int(result.get("totalGasUsed", 0)),
            profit_native=(
                Decimal(int(coinbase_diff)) / (GWEI * GWEI) if coinbase_diff is not None else None
            ),
        )

    async def submit_bundle(self, bundle: Bundle) -> str:
        result = await self._signed_call(
            "eth_sendBundle",
            [{"txs": bundle.transactions, "blockNumber": hex(bundle.target_block)}],
        )
        bundle_hash = (result or {}).get("bundleHash")
        if not bundle_hash:
            raise RelayRejectedError("flashbots eth_sendBundle returned no bundle hash", chain=self.chain.value)
        return bundle_hash

    async def get_bundle_status(self, bundle: Bundle) -> StatusReport:
        receipt = await self.chain_client.get_transaction_receipt(bundle.front_run_tx_hash)
        if receipt is not None:
            block = receipt.get("blockNumber")
            if int(receipt.get("status", 0)) == 1:
                return StatusReport(
                    BundleStatus.INCLUDED,
                    gas_used=receipt.get("gasUsed"),
                    block=block,
                )
            return StatusReport(BundleStatus.FAILED, block=block, reason="front-run reverted")

        current = await self.chain_client.get_block_number()
        if current > bundle.target_block:
            return StatusReport(
                BundleStatus.FAILED,
                block=current,
                reason=f"not included in target block {bundle.target_block}",
            )
        return StatusReport(BundleStatus.SUBMITTED, block=current)
