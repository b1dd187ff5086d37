"""Profit optimizer for sizing the front-run of a sandwich"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from mev_sandwich.config import ChainConfig, OptimizerConfig
from mev_sandwich.detectors.amm import SandwichSimulation, simulate_sandwich
from mev_sandwich.models import Chain, PriceQuote, ProfitOptimizationResult, SandwichOpportunity

logger = structlog.get_logger()

ZERO = Decimal("0")
GWEI = Decimal(10) ** 9
GOLDEN = Decimal("0.6180339887498948482")


@dataclass(frozen=True)
class _Candidate:
    """Net outcome of one front-run size"""

    amount: Decimal
    simulation: SandwichSimulation
    net_profit_usd: Decimal


class ProfitOptimizer:
    """
    Finds the front-run size that maximizes net profit for one opportunity.

    Pure calculation: no network calls and no shared state, so results are a
    deterministic function of the opportunity, the pool state and the prices.
    """

    def __init__(self, config: OptimizerConfig, chains: Mapping[Chain, ChainConfig]):
        """
        Initialize profit optimizer

        Args:
            config: Optimizer tuning (minimum price confidence, search resolution)
            chains: Chain configuration used for gas and position limits
        """
        self.config = config
        self.chains = dict(chains)

    def gas_cost_usd(self, chain: Chain, gas_price_gwei: Decimal) -> Decimal:
        """
        Cost of the front-run and back-run legs in USD.

        ``gas_price_gwei`` is the price per gas unit in 1e-9 native units
        (lamports per compute unit on Solana).
        """
        chain_config = self.chains[chain]
        units = Decimal(2 * chain_config.swap_gas_units)
        return (
            units
            * gas_price_gwei
            / GWEI
            * chain_config.native_token_usd
            * chain_config.gas_multiplier
        )

    def position_cap(self, chain: Chain, token_in_price: Decimal) -> Decimal:
        """Maximum front-run size in token-in units allowed by the chain's position limit"""
        chain_config = self.chains[chain]
        if token_in_price <= ZERO:
            return ZERO
        return chain_config.max_position_size * chain_config.native_token_usd / token_in_price

    def _evaluate(
        self,
        amount: Decimal,
        opportunity: SandwichOpportunity,
        reserve_in: Decimal,
        reserve_out: Decimal,
        fee_bps: int,
        price_in: Decimal,
        gas_cost_usd: Decimal,
    ) -> Optional[_Candidate]:
        victim_min_out = opportunity.min_amount_out if opportunity.min_amount_out > ZERO else None
        simulation = simulate_sandwich(
            amount, opportunity.amount_in, reserve_in, reserve_out, fee_bps, victim_min_out
        )
        if simulation.victim_reverts:
            return None
        net = simulation.gross_profit * price_in - gas_cost_usd
        return _Candidate(amount=amount, simulation=simulation, net_profit_usd=net)

    def _search(
        self,
        upper: Decimal,
        evaluate: Callable[[Decimal], Optional[_Candidate]],
    ) -> Optional[_Candidate]:
        """Coarse grid over (0, upper] followed by golden-section refinement"""
        steps = self.config.grid_steps
        step = upper / steps
        best: Optional[_Candidate] = None
        best_index = 0
        for i in range(1, steps + 1):
            candidate = evaluate(step * i)
            if candidate is None:
                continue
            if best is None or candidate.net_profit_usd > best.net_profit_usd:
                best = candidate
                best_index = i

        if best is None:
            return None

        low = step * (best_index - 1)
        high = min(step * (best_index + 1), upper)

        def score(amount: Decimal) -> Decimal:
            candidate = evaluate(amount)
            if candidate is None:
                return Decimal("-Infinity")
            return candidate.net_profit_usd

        # Profit is unimodal in the front-run size around the grid maximum
        x1 = high - GOLDEN * (high - low)
        x2 = low + GOLDEN * (high - low)
        f1, f2 = score(x1), score(x2)
        for _ in range(self.config.refine_iterations):
            if f1 < f2:
                low, x1, f1 = x1, x2, f2
                x2 = low + GOLDEN * (high - low)
                f2 = score(x2)
            else:
                high, x2, f2 = x2, x1, f1
                x1 = high - GOLDEN * (high - low)
                f1 = score(x1)

        refined = evaluate((low + high) / 2) if low + high > ZERO else None
        if refined is not None and refined.net_profit_usd > best.net_profit_usd:
            return refined
        return best

    def optimize(
        self,
        opportunity: SandwichOpportunity,
        token_in_price: PriceQuote,
        token_out_price: PriceQuote,
        pool_reserves: Optional[Tuple[Decimal, Decimal]] = None,
        pool_fee_bps: Optional[int] = None,
        gas_price_gwei: Optional[Decimal] = None,
    ) -> ProfitOptimizationResult:
        """
        Compute the optimal front-run size and its confidence-weighted profit.

        Args:
            opportunity: Scored opportunity
            token_in_price: USD quote for the input token
            token_out_price: USD quote for the output token
            pool_reserves: (reserve_in, reserve_out); defaults to the opportunity's pool
            pool_fee_bps: Pool fee in basis points; defaults to the opportunity's pool
            gas_price_gwei: Current gas price; defaults to the opportunity's

        Returns:
            ProfitOptimizationResult. Invalid input yields a zero-profit result,
            never an exception.
        """
        if pool_reserves is None:
            pool_reserves = opportunity.pool.reserves_for(opportunity.token_in)
        reserve_in, reserve_out = pool_reserves
        fee_bps = opportunity.pool.fee_bps if pool_fee_bps is None else pool_fee_bps
        gas_price = opportunity.gas_price_gwei if gas_price_gwei is None else gas_price_gwei

        if reserve_in <= ZERO or reserve_out <= ZERO:
            return self._empty("invalid_reserves")
        if opportunity.amount_in <= ZERO or token_in_price.price <= ZERO:
            return self._empty("invalid_amount")

        price_in = token_in_price.price
        price_out = token_out_price.price
        gas_cost = self.gas_cost_usd(opportunity.chain, gas_price)

        upper = min(opportunity.amount_in, self.position_cap(opportunity.chain, price_in))
        clamped = False
        if upper > reserve_in:
            upper = reserve_in
            clamped = True
        if upper <= ZERO:
            return self._empty("no_position_capacity")

        def evaluate(amount: Decimal) -> Optional[_Candidate]:
            if amount <= ZERO:
                return None
            return self._evaluate(
                min(amount, upper), opportunity, reserve_in, reserve_out, fee_bps, price_in, gas_cost
            )

        best = self._search(upper, evaluate)
        if best is None:
            return self._empty("victim_reverts", gas_cost_usd=gas_cost)

        price_confidence = min(token_in_price.confidence, token_out_price.confidence)
        raw_profit = best.net_profit_usd
        reason = None
        if price_confidence < self.config.min_confidence:
            max_profit = ZERO
            reason = "low_price_confidence"
        else:
            max_profit = raw_profit * Decimal(str(price_confidence))

        capital_usd = best.amount * price_in
        profitability = max_profit / capital_usd * Decimal(100) if capital_usd > ZERO else ZERO

        impact = best.amount / reserve_in * Decimal(100)
        victim_slippage = ZERO
        if best.simulation.victim_out_unsandwiched > ZERO:
            victim_slippage = (
                best.simulation.victim_loss / best.simulation.victim_out_unsandwiched * Decimal(100)
            )
        execution_confidence = self.execution_confidence(
            opportunity.chain, impact, reserve_in * price_in, fee_bps, gas_price
        )
        risk = self.risk_score(opportunity.chain, opportunity.dex, impact, victim_slippage, gas_price)
        gas_efficiency = max_profit / gas_cost if gas_cost > ZERO else ZERO
        risk_adjusted = (
            max_profit * Decimal(str(execution_confidence)) * (Decimal(1) - Decimal(str(risk)))
        )

        result = ProfitOptimizationResult(
            optimal_front_run_amount=best.amount,
            front_run_output=best.simulation.front_run_out,
            max_profit_usd=max_profit,
            raw_profit_usd=raw_profit,
            gross_profit_tokens=best.simulation.gross_profit,
            gas_cost_usd=gas_cost,
            profitability=profitability,
            gas_efficiency=gas_efficiency,
            risk_adjusted_return=risk_adjusted,
            price_confidence=price_confidence,
            execution_confidence=execution_confidence,
            risk_score=risk,
            price_impact=impact,
            victim_loss_usd=best.simulation.victim_loss * price_out,
            valid=True,
            clamped=clamped,
            reason=reason,
        )

        logger.debug(
            "profit_optimized",
            tx_hash=opportunity.victim_tx_hash,
            chain=opportunity.chain.value,
            front_run_amount=float(result.optimal_front_run_amount),
            max_profit_usd=float(result.max_profit_usd),
            profitability=float(result.profitability),
            price_confidence=price_confidence,
            clamped=clamped,
            reason=reason,
        )
        return result

    @staticmethod
    def execution_confidence(
        chain: Chain,
        impact: Decimal,
        liquidity_usd: Decimal,
        fee_bps: int,
        gas_price_gwei: Decimal,
    ) -> float:
        """Likelihood the simulated outcome holds on-chain, clamped to [0.1, 1]"""
        confidence = 1.0

        # Price impact penalty
        if impact > 10:
            confidence *= 0.3
        elif impact > 5:
            confidence *= 0.6
        elif impact > 2:
            confidence *= 0.8

        # Liquidity penalty
        if liquidity_usd < 10000:
            confidence *= 0.4
        elif liquidity_usd < 100000:
            confidence *= 0.7
        elif liquidity_usd < 1000000:
            confidence *= 0.9

        if fee_bps > 1000:
            confidence *= 0.8

        if chain == Chain.ETHEREUM and gas_price_gwei > 100:
            confidence *= 0.7
        if chain == Chain.BSC and gas_price_gwei > 20:
            confidence *= 0.7

        return max(0.1, min(1.0, confidence))

    @staticmethod
    def risk_score(
        chain: Chain,
        dex: str,
        impact: Decimal,
        victim_slippage: Decimal,
        gas_price_gwei: Decimal,
    ) -> float:
        """Risk of the sandwich failing or being outbid (0 = low, 1 = high)"""
        risk = min(float(impact) / 20, 0.3)
        risk += min(float(victim_slippage) / 10, 0.2)

        if "v3" in dex:
            risk += 0.1  # concentrated liquidity

        if chain == Chain.BSC:
            risk += 0.05
        elif chain == Chain.SOLANA:
            risk += 0.1

        if chain == Chain.ETHEREUM and gas_price_gwei > 150:
            risk += 0.15
        if chain == Chain.BSC and gas_price_gwei > 30:
            risk += 0.1

        return max(0.0, min(1.0, risk))

    def find_min_profitable_amount(
        self,
        opportunity: SandwichOpportunity,
        token_in_price: PriceQuote,
        min_profit_usd: Decimal = Decimal("10"),
        gas_price_gwei: Optional[Decimal] = None,
    ) -> Optional[Decimal]:
        """
        Binary search for the smallest front-run that nets ``min_profit_usd``.

        Returns:
            Front-run size in token-in units, or None if no size in range qualifies
        """
        reserve_in, reserve_out = opportunity.pool.reserves_for(opportunity.token_in)
        if reserve_in <= ZERO or reserve_out <= ZERO or opportunity.amount_in <= ZERO:
            return None
        gas_price = opportunity.gas_price_gwei if gas_price_gwei is None else gas_price_gwei
        gas_cost = self.gas_cost_usd(opportunity.chain, gas_price)
        price_in = token_in_price.price

        low = opportunity.amount_in * Decimal("0.01")
        high = min(opportunity.amount_in * 2, reserve_in)
        tolerance = opportunity.amount_in * Decimal("0.001")
        result: Optional[Decimal] = None

        for _ in range(20):
            mid = (low + high) / 2
            candidate = self._evaluate(
                mid, opportunity, reserve_in, reserve_out, opportunity.pool.fee_bps, price_in, gas_cost
            )
            if candidate is not None and candidate.net_profit_usd >= min_profit_usd:
                result = mid
                high = mid
            else:
                low = mid
            if high - low < tolerance:
                break

        return result

    def gas_sensitivity(
        self,
        opportunity: SandwichOpportunity,
        token_in_price: PriceQuote,
        token_out_price: PriceQuote,
        changes: Sequence[int] = (-50, -25, -10, 10, 25, 50, 100),
    ) -> Dict[str, object]:
        """
        Re-optimize under shifted gas prices.

        Returns:
            Dict with the base profit and one entry per percentage change
        """
        base = self.optimize(opportunity, token_in_price, token_out_price)
        rows: List[Dict[str, float]] = []
        for change in changes:
            gas_price = opportunity.gas_price_gwei * (1 + Decimal(change) / 100)
            shifted = self.optimize(
                opportunity, token_in_price, token_out_price, gas_price_gwei=gas_price
            )
            rows.append(
                {
                    "change_percent": change,
                    "gas_price_gwei": float(gas_price),
                    "max_profit_usd": float(shifted.max_profit_usd),
                }
            )
        return {"base_profit_usd": float(base.max_profit_usd), "gas_price": rows}

    @staticmethod
    def _empty(reason: str, gas_cost_usd: Decimal = ZERO) -> ProfitOptimizationResult:
        return ProfitOptimizationResult(
            optimal_front_run_amount=ZERO,
            front_run_output=ZERO,
            max_profit_usd=ZERO,
            raw_profit_usd=ZERO,
            gross_profit_tokens=ZERO,
            gas_cost_usd=gas_cost_usd,
            profitability=ZERO,
            gas_efficiency=ZERO,
            risk_adjusted_return=ZERO,
            price_confidence=0.0,
            execution_confidence=0.0,
            risk_score=1.0,
            price_impact=ZERO,
            valid=False,
            reason=reason,
        )
