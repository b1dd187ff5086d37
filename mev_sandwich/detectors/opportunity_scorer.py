"""Opportunity scorer for filtering pending swaps into sandwich candidates"""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

import structlog

from mev_sandwich.cache import MetadataCache
from mev_sandwich.config import AppConfig, ChainConfig
from mev_sandwich.detectors.amm import get_amount_out, price_impact, simulate_sandwich
from mev_sandwich.detectors.decoder import SwapDecoder
from mev_sandwich.events import EventBus, EventType
from mev_sandwich.interfaces import ChainClient
from mev_sandwich.models import (
    Chain,
    DecodedSwap,
    PendingTransaction,
    PoolSnapshot,
    SandwichOpportunity,
    TokenInfo,
    VictimTransaction,
)
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()

GWEI = Decimal(10) ** 9


@dataclass(frozen=True)
class TradeAnalysis:
    """Heuristic replay of a sandwich around one victim swap"""

    is_profitable: bool
    estimated_profit: Decimal
    profitability: Decimal
    confidence: float
    slippage: Decimal
    victim_out: Decimal = Decimal("0")

    @classmethod
    def rejected(cls, slippage: Decimal = Decimal("0")) -> "TradeAnalysis":
        return cls(
            is_profitable=False,
            estimated_profit=Decimal("0"),
            profitability=Decimal("0"),
            confidence=0.0,
            slippage=slippage,
        )


def calculate_token_quality(token_in: TokenInfo, token_out: TokenInfo) -> float:
    """
    Score how safe a token pair is to sandwich.

    Starts at 0.5 and rewards verified contracts, low transfer taxes and deep
    liquidity on both sides. Capped at 1.0.
    """
    score = 0.5
    if token_in.verified and token_out.verified:
        score += 0.3
    low_tax = Decimal("5")
    if (
        token_in.tax_buy + token_in.tax_sell < low_tax
        and token_out.tax_buy + token_out.tax_sell < low_tax
    ):
        score += 0.2
    if min(token_in.liquidity_usd, token_out.liquidity_usd) > Decimal("1000000"):
        score += 0.2
    return min(score, 1.0)


def calculate_mev_score(
    analysis: TradeAnalysis,
    trade_value_usd: Decimal,
    pool: PoolSnapshot,
    token_in: TokenInfo,
    token_out: TokenInfo,
) -> float:
    """
    Combine trade size, slippage and pool depth into a 0-100 attractiveness score.

    The raw score is scaled by the trade analysis confidence.
    """
    score = min(float(analysis.profitability) * 10, 30.0)
    score += min(float(trade_value_usd) / 5000, 15.0)
    score += min(float(analysis.slippage) * 3, 15.0)

    # Pool depth
    if pool.liquidity_usd > Decimal("1000000"):
        score += 20
    elif pool.liquidity_usd > Decimal("100000"):
        score += 10

    if token_in.verified and token_out.verified:
        score += 10

    volume = token_in.volume_24h_usd + token_out.volume_24h_usd
    if volume > Decimal("1000000"):
        score += 10
    elif volume > Decimal("100000"):
        score += 5

    score *= analysis.confidence
    return max(0.0, min(score, 100.0))


class OpportunityScorer:
    """
    Turns pending transactions into scored SandwichOpportunity records.

    Filters, in order: enabled chain, whitelisted DEX, victim gas price, decodable
    swap, blacklist, token metadata (honeypot, quality), pool liquidity, trade
    value, and finally the heuristic profitability floor. Any miss discards the
    transaction silently.
    """

    def __init__(
        self,
        config: AppConfig,
        clients: Mapping[Chain, ChainClient],
        metadata_cache: Optional[MetadataCache] = None,
        decoder: Optional[SwapDecoder] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Initialize opportunity scorer.

        Args:
            config: Application configuration
            clients: Chain client per enabled chain
            metadata_cache: Shared token/pool cache
            decoder: Swap calldata decoder
            event_bus: Bus receiving opportunityFound events
        """
        self.config = config
        self.scorer_config = config.scorer
        self.clients: Dict[Chain, ChainClient] = dict(clients)
        self.metadata_cache = metadata_cache or MetadataCache(
            token_ttl=config.admission.token_cache_seconds,
            pool_ttl=config.admission.pool_cache_seconds,
            gas_ttl=config.admission.gas_cache_seconds,
        )
        self.decoder = decoder or SwapDecoder(
            {c.value: cfg.wrapped_native for c, cfg in config.chains.items()}
        )
        self.event_bus = event_bus
        self._blacklist = {t.lower() for t in self.scorer_config.blacklisted_tokens}
        self._whitelist = set(self.scorer_config.whitelisted_dexes)
        self._logger = logger.bind(component="opportunity_scorer")

    def identify_dex(self, tx: PendingTransaction, chain_config: ChainConfig) -> Optional[str]:
        """Map the transaction's target router/program to a DEX name"""
        if tx.decoded_swap is not None and tx.decoded_swap.dex:
            return tx.decoded_swap.dex
        if not tx.to:
            return None
        return chain_config.dex_for_router(tx.to)

    def is_token_blacklisted(self, address: str) -> bool:
        return address.lower() in self._blacklist

    async def score(self, tx: PendingTransaction) -> Optional[SandwichOpportunity]:
        """
        Evaluate a pending transaction.

        Args:
            tx: Pending transaction from the mempool feed

        Returns:
            SandwichOpportunity if the transaction clears every filter, None otherwise
        """
        start = time.perf_counter()
        try:
            opportunity = await self._evaluate(tx)
        except Exception as e:
            self._logger.warning(
                "opportunity_scoring_failed",
                tx_hash=tx.tx_hash,
                chain=tx.chain.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        finally:
            metrics.scoring_latency.labels(chain=tx.chain.value).observe(
                time.perf_counter() - start
            )

        if opportunity is None:
            return None

        metrics.opportunities_detected.labels(
            chain=opportunity.chain.value, dex=opportunity.dex
        ).inc()
        self._logger.info(
            "opportunity_found",
            tx_hash=opportunity.victim_tx_hash,
            chain=opportunity.chain.value,
            dex=opportunity.dex,
            trade_value_usd=float(opportunity.trade_value_usd),
            profitability=float(opportunity.profitability),
            mev_score=round(opportunity.mev_score, 2),
        )
        if self.event_bus is not None:
            await self.event_bus.emit(
                EventType.OPPORTUNITY_FOUND,
                chain=opportunity.chain.value,
                victim_tx_hash=opportunity.victim_tx_hash,
                dex=opportunity.dex,
                token_in=opportunity.token_in,
                token_out=opportunity.token_out,
                trade_value_usd=float(opportunity.trade_value_usd),
                estimated_profit=float(opportunity.estimated_profit),
                mev_score=opportunity.mev_score,
            )
        return opportunity

    def _discard(self, tx: PendingTransaction, reason: str) -> None:
        self._logger.debug("transaction_discarded", tx_hash=tx.tx_hash, chain=tx.chain.value, reason=reason)

    async def _evaluate(self, tx: PendingTransaction) -> Optional[SandwichOpportunity]:
        chain_config = self.config.chains.get(tx.chain)
        client = self.clients.get(tx.chain)
        if chain_config is None or not chain_config.enabled or client is None:
            self._discard(tx, "chain_disabled")
            return None

        dex = self.identify_dex(tx, chain_config)
        if dex is None or dex not in self._whitelist:
            self._discard(tx, "dex_not_whitelisted")
            return None

        gas_price_gwei = Decimal(tx.gas_price) / GWEI
        if gas_price_gwei > self.scorer_config.max_gas_price_gwei:
            self._discard(tx, "gas_price_too_high")
            return None

        swap = self.decoder.decode(tx, dex)
        if swap is None:
            self._discard(tx, "not_a_swap")
            return None

        if self.is_token_blacklisted(swap.token_in) or self.is_token_blacklisted(swap.token_out):
            self._discard(tx, "token_blacklisted")
            return None

        token_in = await self.metadata_cache.get_token(
            tx.chain, swap.token_in, lambda: client.get_token(swap.token_in)
        )
        token_out = await self.metadata_cache.get_token(
            tx.chain, swap.token_out, lambda: client.get_token(swap.token_out)
        )
        if token_in is None or token_out is None:
            self._discard(tx, "token_unknown")
            return None
        if token_in.is_honeypot or token_out.is_honeypot:
            self._discard(tx, "honeypot")
            return None
        if calculate_token_quality(token_in, token_out) < self.scorer_config.min_token_quality:
            self._discard(tx, "low_token_quality")
            return None

        pool = await self.metadata_cache.get_pool(
            tx.chain,
            swap.token_in,
            swap.token_out,
            dex,
            lambda: client.get_pool(swap.token_in, swap.token_out, dex),
        )
        if pool is None:
            self._discard(tx, "pool_unknown")
            return None
        if pool.liquidity_usd < self.scorer_config.min_pool_liquidity_usd:
            self._discard(tx, "insufficient_liquidity")
            return None

        amount_in = Decimal(swap.amount_in) / (Decimal(10) ** token_in.decimals)
        min_amount_out = Decimal(swap.min_amount_out) / (Decimal(10) ** token_out.decimals)
        trade_value_usd = amount_in * token_in.price_usd
        if trade_value_usd < self.scorer_config.min_trade_value_usd:
            self._discard(tx, "trade_too_small")
            return None

        analysis = self.analyze_trade(
            amount_in=amount_in,
            min_amount_out=min_amount_out,
            pool=pool,
            token_in=token_in,
            chain_config=chain_config,
            gas_price_gwei=gas_price_gwei,
        )
        if not analysis.is_profitable:
            self._discard(tx, "unprofitable")
            return None
        if analysis.profitability < self.scorer_config.profitability_threshold:
            self._discard(tx, "below_profitability_threshold")
            return None

        mev_score = calculate_mev_score(analysis, trade_value_usd, pool, token_in, token_out)

        return SandwichOpportunity(
            victim=VictimTransaction(
                tx_hash=tx.tx_hash,
                to=tx.to,
                data=tx.data,
                value=tx.value,
                gas_limit=tx.gas_limit,
                gas_price=tx.gas_price,
                raw=tx.raw_transaction,
            ),
            chain=tx.chain,
            dex=dex,
            token_in=token_in.address,
            token_out=token_out.address,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
            pool=pool,
            gas_price_gwei=gas_price_gwei,
            estimated_profit=analysis.estimated_profit,
            profitability=analysis.profitability,
            confidence=analysis.confidence,
            slippage=analysis.slippage,
            mev_score=mev_score,
            trade_value_usd=trade_value_usd,
            token_in_decimals=token_in.decimals,
            token_out_decimals=token_out.decimals,
            expires_at=self.expiry_for(swap),
        )

    def expiry_for(self, swap: DecodedSwap, now: Optional[float] = None) -> float:
        """Absolute expiry: the victim's deadline, or the default window"""
        now = now if now is not None else time.time()
        if swap.deadline:
            return float(swap.deadline)
        return now + self.scorer_config.default_expiry_seconds

    def analyze_trade(
        self,
        amount_in: Decimal,
        min_amount_out: Decimal,
        pool: PoolSnapshot,
        token_in: TokenInfo,
        chain_config: ChainConfig,
        gas_price_gwei: Decimal,
    ) -> TradeAnalysis:
        """
        Estimate the sandwich outcome with a fixed front-run heuristic.

        The front-run is sized at a fraction of the victim trade. The victim must
        still receive at least ``victim_tolerance`` of its minimum output after
        the front-run, otherwise the opportunity is discarded.
        """
        reserve_in, reserve_out = pool.reserves_for(token_in.address)
        if reserve_in <= 0 or reserve_out <= 0 or amount_in <= 0:
            return TradeAnalysis.rejected()

        victim_out = get_amount_out(amount_in, reserve_in, reserve_out, pool.fee_bps)
        if victim_out < min_amount_out:
            # The victim would revert on its own slippage check
            return TradeAnalysis.rejected(slippage=Decimal("100"))

        impact = price_impact(amount_in, reserve_in)
        front_run = min(
            amount_in * self.scorer_config.front_run_fraction,
            chain_config.max_position_size,
        )
        simulation = simulate_sandwich(front_run, amount_in, reserve_in, reserve_out, pool.fee_bps)
        if simulation.victim_out < min_amount_out * self.scorer_config.victim_tolerance:
            return TradeAnalysis.rejected(slippage=impact)

        profit = simulation.gross_profit
        profit_usd = profit * token_in.price_usd
        gas_cost_usd = (
            Decimal(2 * chain_config.swap_gas_units)
            * gas_price_gwei
            / GWEI
            * chain_config.native_token_usd
            * chain_config.gas_multiplier
        )
        net_profit_usd = profit_usd - gas_cost_usd
        trade_value_usd = amount_in * token_in.price_usd
        profitability = (
            net_profit_usd / trade_value_usd * Decimal(100) if trade_value_usd > 0 else Decimal("0")
        )

        confidence = 1.0
        if impact > 5:
            confidence *= 0.7
        if impact > 10:
            confidence *= 0.5
        if reserve_in * token_in.price_usd < Decimal("100000"):
            confidence *= 0.8
        if victim_out < min_amount_out * Decimal("1.1"):
            confidence *= 0.9

        return TradeAnalysis(
            is_profitable=net_profit_usd > 0 and profitability > 0,
            estimated_profit=profit,
            profitability=profitability,
            confidence=confidence,
            slippage=impact,
            victim_out=simulation.victim_out,
        )
