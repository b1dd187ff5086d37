"""Risk gate enforcing position, liquidity, gas, profit and failure limits"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

import structlog

from mev_sandwich.config import ChainConfig, RiskConfig
from mev_sandwich.models import Chain, RiskAssessment, RiskCandidate
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()

ZERO = Decimal("0")
HOUR = 3600.0


@dataclass
class Position:
    """An execution that passed the gate and has not reported an outcome yet"""

    execution_id: str
    chain: Chain
    size: Decimal
    size_usd: Decimal
    opened_at: float
    token_in: str = ""
    token_out: str = ""


@dataclass
class TradeRecord:
    timestamp: float
    profit_usd: Decimal
    success: bool


@dataclass
class PortfolioState:
    """Rolling portfolio counters. Only the owning RiskGate mutates it."""

    positions: Dict[str, Position] = field(default_factory=dict)
    daily_volume: Dict[Chain, Decimal] = field(default_factory=dict)
    trades: Deque[TradeRecord] = field(default_factory=deque)
    consecutive_failures: int = 0
    cooldown_until: float = 0.0
    daily_pnl_usd: Decimal = ZERO
    peak_pnl_usd: Decimal = ZERO
    max_drawdown_percent: Decimal = ZERO
    emergency_stop: bool = False
    emergency_reason: Optional[str] = None
    day: Optional[date] = None

    def volume_for(self, chain: Chain) -> Decimal:
        return self.daily_volume.get(chain, ZERO)

    def trades_since(self, since: float) -> List[TradeRecord]:
        return [t for t in self.trades if t.timestamp > since]

    def win_rate(self) -> float:
        if not self.trades:
            return 0.0
        return sum(1 for t in self.trades if t.success) / len(self.trades)


class RiskGate:
    """
    Approves or denies candidates against hard portfolio limits.

    Every rule is evaluated (no short-circuit) so a denial lists all violations.
    The risk score is advisory and never denies on its own. Reads and writes of
    the portfolio state are serialized by a single asyncio lock.

    Consecutive failures reaching ``consecutive_failure_limit`` start a cooldown.
    Reaching ``emergency_failure_limit``, the emergency stop loss or the maximum
    drawdown engages the emergency stop and notifies ``on_emergency``.
    """

    def __init__(
        self,
        config: RiskConfig,
        chains: Mapping[Chain, ChainConfig],
        on_emergency: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize risk gate.

        Args:
            config: Risk limits
            chains: Chain configuration (position size and gas limits per chain)
            on_emergency: Called once with the reason when the emergency stop engages
            clock: Wall-clock source (injectable for tests)
        """
        self.config = config
        self.chains = dict(chains)
        self.on_emergency = on_emergency
        self.clock = clock
        self.state = PortfolioState()
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="risk_gate")

    # ------------------------------------------------------------------ #
    # Assessment
    # ------------------------------------------------------------------ #

    async def assess(self, candidate: RiskCandidate, reserve: bool = False) -> RiskAssessment:
        """
        Assess a candidate against the live portfolio state.

        Args:
            candidate: Prospective trade
            reserve: Open a position atomically when the candidate is allowed

        Returns:
            RiskAssessment
        """
        async with self._lock:
            now = self.clock()
            self._roll_day(now)
            assessment = self.evaluate(candidate, self.state, now)
            if assessment.allowed and reserve:
                self._open(candidate, now)

        metrics.risk_score.labels(chain=candidate.chain.value).observe(assessment.risk_score)
        if assessment.allowed:
            self._logger.info(
                "risk_assessment_allowed",
                execution_id=candidate.execution_id,
                chain=candidate.chain.value,
                risk_score=assessment.risk_score,
                position_size_limit=float(assessment.position_size_limit),
            )
        else:
            for reason in assessment.reasons:
                metrics.risk_denials.labels(
                    chain=candidate.chain.value, rule=reason.split(":", 1)[0]
                ).inc()
            self._logger.info(
                "risk_assessment_denied",
                execution_id=candidate.execution_id,
                chain=candidate.chain.value,
                reasons=list(assessment.reasons),
                risk_score=assessment.risk_score,
            )
        return assessment

    def evaluate(
        self,
        candidate: RiskCandidate,
        state: PortfolioState,
        now: Optional[float] = None,
    ) -> RiskAssessment:
        """
        Pure evaluation of a candidate against a portfolio state.

        Reasons are prefixed with the rule name (``rule: detail``).
        """
        now = self.clock() if now is None else now
        config = self.config
        chain_config = self.chains.get(candidate.chain)
        reasons: List[str] = []
        warnings: List[str] = []

        if state.emergency_stop:
            reasons.append(f"emergency_stop: emergency stop is active ({state.emergency_reason})")

        if now < state.cooldown_until:
            reasons.append(
                f"cooldown: {state.consecutive_failures} consecutive failures, "
                f"{state.cooldown_until - now:.1f}s remaining"
            )

        max_position = chain_config.max_position_size if chain_config else ZERO
        if candidate.position_size > max_position:
            reasons.append(
                f"max_position_size: position {candidate.position_size} exceeds limit "
                f"{max_position} for {candidate.chain.value}"
            )

        if len(state.positions) >= config.max_concurrent_positions:
            reasons.append(
                f"max_concurrent_positions: {len(state.positions)} open positions"
            )

        projected_volume = state.volume_for(candidate.chain) + candidate.position_size
        if projected_volume > config.max_daily_volume:
            reasons.append(
                f"max_daily_volume: {projected_volume} > {config.max_daily_volume}"
            )
        elif projected_volume > config.max_daily_volume * config.portfolio_warning_ratio:
            warnings.append("Position would bring daily volume close to its limit")

        if candidate.pool_liquidity_usd < config.min_liquidity_usd:
            reasons.append(
                f"min_liquidity: {candidate.pool_liquidity_usd} < {config.min_liquidity_usd}"
            )

        if candidate.price_impact > config.max_price_impact:
            reasons.append(
                f"max_price_impact: {candidate.price_impact}% > {config.max_price_impact}%"
            )

        if candidate.slippage > config.max_slippage:
            reasons.append(f"max_slippage: {candidate.slippage}% > {config.max_slippage}%")

        if candidate.chain.is_evm:
            gas_limit = config.max_gas_price_gwei
            if chain_config is not None:
                gas_limit = min(gas_limit, chain_config.max_gas_price_gwei)
            if candidate.gas_price_gwei > gas_limit:
                reasons.append(f"max_gas_price: {candidate.gas_price_gwei} > {gas_limit} gwei")

        if candidate.expected_profit_usd < config.min_profit_usd:
            reasons.append(
                f"min_profit: ${candidate.expected_profit_usd} < ${config.min_profit_usd}"
            )

        recent = state.trades_since(now - HOUR)
        if len(recent) >= config.max_trades_per_hour:
            reasons.append(f"max_trades_per_hour: {len(recent)} trades in last hour")
        recent_failures = sum(1 for t in recent if not t.success)
        if recent_failures >= config.max_failures_per_hour:
            reasons.append(f"max_failures_per_hour: {recent_failures} failures in last hour")

        score = self.risk_score(candidate, max_position)
        limit = candidate.position_size * self.size_multiplier(score)
        if max_position > ZERO:
            limit = min(limit, max_position)

        return RiskAssessment(
            allowed=not reasons,
            reasons=tuple(reasons),
            risk_score=score,
            position_size_limit=limit,
            recommendations=tuple(self._recommendations(candidate, score, state)),
            warnings=tuple(warnings),
        )

    def risk_score(self, candidate: RiskCandidate, max_position: Decimal) -> float:
        """Continuous 0-100 score (higher = riskier)"""
        score = min(float(candidate.price_impact) * 3, 30.0)
        score += min(float(candidate.slippage) * 2, 20.0)
        if self.config.max_gas_price_gwei > ZERO:
            score += min(float(candidate.gas_price_gwei / self.config.max_gas_price_gwei) * 15, 15.0)
        score += (1.0 - max(0.0, min(candidate.confidence, 1.0))) * 20
        if max_position > ZERO:
            score += min(float(candidate.position_size / max_position) * 15, 15.0)
        return float(min(round(score), 100))

    @staticmethod
    def size_multiplier(score: float) -> Decimal:
        if score > 60:
            return Decimal("0.5")
        if score > 40:
            return Decimal("0.7")
        if score > 20:
            return Decimal("0.9")
        return Decimal("1")

    def _recommendations(
        self, candidate: RiskCandidate, score: float, state: PortfolioState
    ) -> List[str]:
        recommendations = []
        if score > 60:
            recommendations.append("Consider reducing position size due to high risk score")
        if candidate.price_impact > 5:
            recommendations.append("High price impact detected - consider waiting for better liquidity")
        if candidate.slippage > 3:
            recommendations.append("High slippage detected - reduce size")
        if candidate.gas_price_gwei > self.config.max_gas_price_gwei * Decimal("0.8"):
            recommendations.append("Gas price is near limit - monitor network congestion")
        if len(state.trades) > 10 and state.win_rate() < 0.5:
            recommendations.append("Low win rate detected - consider reviewing strategy")
        return recommendations

    # ------------------------------------------------------------------ #
    # Position bookkeeping
    # ------------------------------------------------------------------ #

    def _open(self, candidate: RiskCandidate, now: float) -> None:
        self.state.positions[candidate.execution_id] = Position(
            execution_id=candidate.execution_id,
            chain=candidate.chain,
            size=candidate.position_size,
            size_usd=candidate.position_size_usd,
            opened_at=now,
            token_in=candidate.token_in,
            token_out=candidate.token_out,
        )
        self.state.daily_volume[candidate.chain] = (
            self.state.volume_for(candidate.chain) + candidate.position_size
        )

    async def record_outcome(
        self,
        execution_id: str,
        success: bool,
        profit_usd: Decimal = ZERO,
    ) -> None:
        """
        Close a position and update the rolling counters with its outcome.

        Args:
            execution_id: Execution that reached a terminal state
            success: Whether the bundle landed (or simulated successfully in paper mode)
            profit_usd: Realized profit, negative for a loss
        """
        emergency_reason: Optional[str] = None
        async with self._lock:
            now = self.clock()
            self._roll_day(now)
            state = self.state
            state.positions.pop(execution_id, None)
            state.trades.append(TradeRecord(timestamp=now, profit_usd=profit_usd, success=success))
            while state.trades and state.trades[0].timestamp <= now - 86400:
                state.trades.popleft()

            if success:
                state.consecutive_failures = 0
            else:
                state.consecutive_failures += 1
                if state.consecutive_failures >= self.config.consecutive_failure_limit:
                    state.cooldown_until = now + self.config.cooldown_seconds
                    self._logger.warning(
                        "risk_cooldown_started",
                        consecutive_failures=state.consecutive_failures,
                        cooldown_seconds=self.config.cooldown_seconds,
                    )

            state.daily_pnl_usd += profit_usd
            if state.daily_pnl_usd > state.peak_pnl_usd:
                state.peak_pnl_usd = state.daily_pnl_usd
            if state.peak_pnl_usd > ZERO:
                drawdown = (state.peak_pnl_usd - state.daily_pnl_usd) / state.peak_pnl_usd * 100
                state.max_drawdown_percent = max(state.max_drawdown_percent, drawdown)

            if not state.emergency_stop:
                emergency_reason = self._emergency_condition(state)
                if emergency_reason is not None:
                    self._engage(emergency_reason)

        if emergency_reason is not None:
            self._notify(emergency_reason)

    def _emergency_condition(self, state: PortfolioState) -> Optional[str]:
        if state.daily_pnl_usd < -self.config.emergency_stop_loss_usd:
            return f"daily loss threshold exceeded: ${state.daily_pnl_usd}"
        if state.max_drawdown_percent > self.config.max_drawdown_percent:
            return f"maximum drawdown exceeded: {state.max_drawdown_percent:.2f}%"
        if state.consecutive_failures >= self.config.emergency_failure_limit:
            return f"too many consecutive failures: {state.consecutive_failures}"
        return None

    # ------------------------------------------------------------------ #
    # Emergency stop
    # ------------------------------------------------------------------ #

    def _engage(self, reason: str) -> None:
        self.state.emergency_stop = True
        self.state.emergency_reason = reason
        metrics.emergency_stop_active.set(1)
        self._logger.critical("risk_emergency_stop_triggered", reason=reason)

    def _notify(self, reason: str) -> None:
        if self.on_emergency is None:
            return
        try:
            self.on_emergency(reason)
        except Exception as e:
            self._logger.error("emergency_callback_failed", error=str(e), error_type=type(e).__name__)

    def trigger_emergency_stop(self, reason: str) -> None:
        """Engage the emergency stop from outside the gate (operator or orchestrator)"""
        if self.state.emergency_stop:
            return
        self._engage(reason)

    def reset_emergency_stop(self) -> None:
        """Clear the emergency stop (manual intervention)"""
        self.state.emergency_stop = False
        self.state.emergency_reason = None
        self.state.consecutive_failures = 0
        self.state.cooldown_until = 0.0
        metrics.emergency_stop_active.set(0)
        self._logger.warning("risk_emergency_stop_reset")

    @property
    def emergency_stop_active(self) -> bool:
        return self.state.emergency_stop

    def is_trading_allowed(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return not self.state.emergency_stop and now >= self.state.cooldown_until

    # ------------------------------------------------------------------ #
    # Daily reset / reporting
    # ------------------------------------------------------------------ #

    def _roll_day(self, now: float) -> None:
        today = datetime.fromtimestamp(now, tz=timezone.utc).date()
        if self.state.day is None:
            self.state.day = today
            return
        if today != self.state.day:
            self.state.day = today
            self.state.daily_volume.clear()
            self.state.daily_pnl_usd = ZERO
            self.state.peak_pnl_usd = ZERO
            self.state.max_drawdown_percent = ZERO
            self._logger.info("risk_daily_reset", day=today.isoformat())

    def snapshot(self) -> Dict[str, Any]:
        """Current risk metrics"""
        state = self.state
        return {
            "open_positions": len(state.positions),
            "daily_volume": {c.value: float(v) for c, v in state.daily_volume.items()},
            "daily_pnl_usd": float(state.daily_pnl_usd),
            "max_drawdown_percent": float(state.max_drawdown_percent),
            "consecutive_failures": state.consecutive_failures,
            "cooldown_until": state.cooldown_until,
            "win_rate": state.win_rate(),
            "emergency_stop": state.emergency_stop,
            "emergency_reason": state.emergency_reason,
        }

    def open_positions(self) -> Tuple[Position, ...]:
        return tuple(self.state.positions.values())
