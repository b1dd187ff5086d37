"""Jito block engine client (Solana)"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from mev_sandwich.config import ChainConfig, JitoConfig
from mev_sandwich.errors import ConfigurationError, RelayRejectedError
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.models import Chain, ExecutionParams
from mev_sandwich.relays.base import Bundle, BundleStatus, RelayClient, SimulationOutcome, StatusReport
from mev_sandwich.relays.evm import to_base_units
from mev_sandwich.relays.transport import RelayTransport

LAMPORTS_PER_SOL = Decimal(10) ** 9

# Congestion multiplier used when the TPS lookup fails
FALLBACK_CONGESTION = 1.5

_INFLIGHT_STATUS = {
    "Landed": BundleStatus.LANDED,
    "Failed": BundleStatus.FAILED,
    "Invalid": BundleStatus.FAILED,
    "Pending": BundleStatus.SUBMITTED,
}


class JitoRelayClient(RelayClient):
    """
    Submits sandwich bundles to the Jito block engine.

    The front-run carries a SOL transfer to the tip account; the tip scales
    with expected profit and current network congestion.
    """

    name = "jito"
    chain = Chain.SOLANA

    def __init__(
        self,
        chain_config: ChainConfig,
        chain_client: ChainClient,
        signer: Signer,
        transport: Optional[RelayTransport] = None,
    ):
        if chain_config.jito is None:
            raise ConfigurationError("jito block engine is not configured", chain=self.chain.value)
        self.config: JitoConfig = chain_config.jito
        self.chain_config = chain_config
        self.poll_interval = chain_config.poll_interval_seconds
        super().__init__(
            chain_client,
            signer,
            transport or RelayTransport(self.name, self.config.request_timeout_seconds),
        )

    @property
    def bundles_url(self) -> str:
        return f"{self.config.block_engine_url.rstrip('/')}/api/v1/bundles"

    async def congestion_multiplier(self) -> float:
        try:
            tps = await self.chain_client.get_recent_tps()
        except Exception as e:
            self._logger.warning("jito_tps_lookup_failed", error=str(e))
            return FALLBACK_CONGESTION
        ratio = tps / self.config.base_tps
        return max(1.0, min(ratio, self.config.max_congestion_multiplier))

    async def calculate_tip(self, params: ExecutionParams, bid_multiplier: Decimal) -> int:
        """Tip in lamports: a profit share scaled by congestion and bid, clamped to the tip range"""
        congestion = Decimal(str(await self.congestion_multiplier()))
        profit_lamports = params.expected_profit_native * LAMPORTS_PER_SOL
        tip = int(profit_lamports * self.config.tip_profit_share * congestion * bid_multiplier)
        tip = min(tip, self.config.max_tip_lamports)
        return max(tip, self.config.min_tip_lamports)

    def _swap_intent(
        self,
        params: ExecutionParams,
        owner: str,
        blockhash: str,
        leg: str,
    ) -> Dict[str, Any]:
        opportunity = params.opportunity
        if leg == "front_run":
            token_in, token_out = opportunity.token_in, opportunity.token_out
            amount_in = to_base_units(params.front_run_amount, opportunity.token_in_decimals)
            min_out = to_base_units(
                params.expected_front_run_output * (1 - params.max_slippage / Decimal(100)),
                opportunity.token_out_decimals,
            )
        else:
            token_in, token_out = opportunity.token_out, opportunity.token_in
            amount_in = to_base_units(params.expected_front_run_output, opportunity.token_out_decimals)
            min_out = to_base_units(params.front_run_amount, opportunity.token_in_decimals)
        return {
            "fee_payer": owner,
            "recent_blockhash": blockhash,
            "compute_unit_limit": self.config.compute_unit_limit,
            "instructions": [
                {
                    "type": "swap",
                    "program": self.chain_config.dex_routers.get(opportunity.dex, opportunity.victim.to),
                    "pool": opportunity.pool.address,
                    "token_in": token_in,
                    "token_out": token_out,
                    "amount_in": amount_in,
                    "min_amount_out": min_out,
                }
            ],
        }

    async def create_bundle(self, params: ExecutionParams, bid_multiplier: Decimal) -> Bundle:
        opportunity = params.opportunity
        slot = await self.chain_client.get_block_number()
        blockhash = await self.chain_client.get_recent_blockhash()
        tip = await self.calculate_tip(params, bid_multiplier)
        owner = self.signer.address(self.chain)

        front = self._swap_intent(params, owner, blockhash, "front_run")
        front["instructions"].insert(
            0,
            {"type": "transfer", "to": self.config.tip_account, "lamports": tip},
        )
        back = self._swap_intent(params, owner, blockhash, "back_run")

        front_encoded = await self.signer.sign_transaction(self.chain, front)
        back_encoded = await self.signer.sign_transaction(self.chain, back)

        bundle = Bundle(
            bundle_id=Bundle.new_id(self.chain),
            chain=self.chain,
            relay=self.name,
            execution_id=params.execution_id,
            victim_tx_hash=opportunity.victim_tx_hash,
            transactions=[front_encoded, opportunity.victim.raw, back_encoded],
            target_block=slot + 1,
            tip=tip,
            bid_multiplier=bid_multiplier,
            estimated_profit_usd=params.expected_profit_usd,
            metadata={"tip_account": self.config.tip_account, "recent_blockhash": blockhash},
        )
        self._logger.info(
            "jito_bundle_created",
            bundle_id=bundle.bundle_id,
            victim_tx=bundle.victim_tx_hash,
            tip_lamports=tip,
        )
        return bundle

    async def simulate_bundle(self, bundle: Bundle) -> SimulationOutcome:
        self._require_connection()
        result = await self.transport.call(
            self.bundles_url,
            "simulateBundle",
            [{"encodedTransactions": bundle.transactions}],
        )
        value = (result or {}).get("value") or {}
        summary = value.get("summary")
        if summary == "succeeded":
            units = sum(
                int(tx.get("unitsConsumed") or 0)
                for tx in value.get("transactionResults") or []
            )
            return SimulationOutcome(success=True, gas_used=units)
        error = summary.get("failed") if isinstance(summary, dict) else summary
        return SimulationOutcome(success=False, error=str(error or "simulation failed"))

    async def submit_bundle(self, bundle: Bundle) -> str:
        self._require_connection()
        result = await self.transport.call(
            self.bundles_url,
            "sendBundle",
            [bundle.transactions, {"encoding": "base64"}],
        )
        if not result:
            raise RelayRejectedError("jito sendBundle returned no bundle id", chain=self.chain.value)
        return str(result)

    async def get_bundle_status(self, bundle: Bundle) -> StatusReport:
        self._require_connection()
        result = await self.transport.call(
            self.bundles_url,
            "getInflightBundleStatuses",
            [[bundle.relay_bundle_id]],
        )
        statuses: List[Dict[str, Any]] = (result or {}).get("value") or []
        if not statuses:
            return StatusReport(BundleStatus.SUBMITTED)
        entry = statuses[0]
        raw_status = entry.get("status", "Pending")
        status = _INFLIGHT_STATUS.get(raw_status, BundleStatus.SUBMITTED)
        return StatusReport(
            status,
            block=entry.get("landed_slot"),
            reason=None if status != BundleStatus.FAILED else f"jito status {raw_status}",
        )

    async def get_validators(self) -> List[Dict[str, Any]]:
        """Jito-enabled validators currently known to the block engine"""
        self._require_connection()
        url = f"{self.config.block_engine_url.rstrip('/')}/api/v1/validators"
        return await self.transport.get_json(url)
