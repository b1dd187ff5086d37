"""Execution orchestrator: admission-controlled dispatch of sandwich opportunities"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, List, Mapping, Optional, Set, Tuple

import structlog

from mev_sandwich.config import AppConfig
from mev_sandwich.detectors.opportunity_scorer import OpportunityScorer
from mev_sandwich.detectors.profit_optimizer import ProfitOptimizer
from mev_sandwich.errors import CircuitOpenError, PriceDataError
from mev_sandwich.events import EventBus, EventType
from mev_sandwich.execution.admission import AdmissionController
from mev_sandwich.execution.bundle_manager import BundleManager, BundleOutcome
from mev_sandwich.interfaces import ChainClient, PendingTransactionFeed
from mev_sandwich.models import (
    Chain,
    ErrorKind,
    ExecutionParams,
    ExecutionResult,
    LatencyBreakdown,
    PendingTransaction,
    PriceQuote,
    ProfitOptimizationResult,
    RiskCandidate,
    SandwichOpportunity,
)
from mev_sandwich.monitoring import metrics
from mev_sandwich.pricing import GuardedPriceSource
from mev_sandwich.relays.base import BundleStatus, RelayClient
from mev_sandwich.risk import RiskGate

logger = structlog.get_logger()

ZERO = Decimal("0")
GWEI = Decimal(10) ** 9
MAX_EXECUTION_SLIPPAGE = Decimal("5")
SLIPPAGE_BUFFER = Decimal("1.2")


def new_execution_id() -> str:
    return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass
class HealthCounters:
    """Pipeline-wide counters. Mutated only from the event loop."""

    opportunities_received: int = 0
    executions_started: int = 0
    successful: int = 0
    failed: int = 0
    expired: int = 0
    simulated: int = 0
    total_profit_usd: Decimal = ZERO
    rejected: Dict[str, int] = field(default_factory=dict)
    latencies_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=100))

    def reject(self, kind: ErrorKind) -> None:
        self.rejected[kind.value] = self.rejected.get(kind.value, 0) + 1

    @property
    def average_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return sum(self.latencies_ms) / len(self.latencies_ms)

    @property
    def success_rate(self) -> float:
        finished = self.successful + self.failed
        return self.successful / finished if finished else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunities_received": self.opportunities_received,
            "executions_started": self.executions_started,
            "successful": self.successful,
            "failed": self.failed,
            "expired": self.expired,
            "simulated": self.simulated,
            "success_rate": self.success_rate,
            "total_profit_usd": float(self.total_profit_usd),
            "average_latency_ms": self.average_latency_ms,
            "rejected": dict(self.rejected),
        }


class _Rejection(Exception):
    """Internal signal that an opportunity was dropped at a pipeline stage"""

    def __init__(self, kind: ErrorKind, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.reasons = reasons or []


class ExecutionOrchestrator:
    """
    Admission-controlled dispatcher.

    For every opportunity: reserve a slot (drop when ``max_concurrent_bundles``
    executions are in flight), ask the admission controller, size the trade
    with the profit optimizer, pass the risk gate, then hand the execution to
    the bundle manager. One opportunity's failure never affects another.

    The kill switch is checked only when a new opportunity is dispatched;
    in-flight executions are allowed to finish during shutdown.
    """

    def __init__(
        self,
        config: AppConfig,
        optimizer: ProfitOptimizer,
        risk_gate: RiskGate,
        bundle_manager: BundleManager,
        admission: AdmissionController,
        price_source: GuardedPriceSource,
        relays: Mapping[Chain, RelayClient],
        scorer: Optional[OpportunityScorer] = None,
        feed: Optional[PendingTransactionFeed] = None,
        chain_clients: Optional[Mapping[Chain, ChainClient]] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Initialize execution orchestrator.

        Args:
            config: Application configuration
            optimizer: Profit optimizer
            risk_gate: Risk gate (its emergency callback is bound to this orchestrator)
            bundle_manager: Bundle lifecycle manager
            admission: Adaptive admission controller
            price_source: Guarded price source
            relays: Relay client per enabled chain
            scorer: Opportunity scorer used by the feed loop
            feed: Pending transaction feed consumed after start()
            chain_clients: Chain clients used for live gas prices
            event_bus: Receives lifecycle events
        """
        self.config = config
        self.optimizer = optimizer
        self.risk_gate = risk_gate
        self.bundle_manager = bundle_manager
        self.admission = admission
        self.price_source = price_source
        self.relays = dict(relays)
        self.scorer = scorer
        self.feed = feed
        self.chain_clients = dict(chain_clients or {})
        self.event_bus = event_bus or EventBus()

        self.counters = HealthCounters()
        self._in_flight: Dict[str, Optional[asyncio.Task]] = {}
        self._scoring_tasks: Set[asyncio.Task] = set()
        self._feed_task: Optional[asyncio.Task] = None
        self._emergency_task: Optional[asyncio.Task] = None
        self._running = False
        self._kill_switch = False
        self._stopping = False
        self._started_at: Optional[float] = None

        self.risk_gate.on_emergency = self._on_risk_emergency
        self._logger = logger.bind(component="execution_orchestrator")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def kill_switch_engaged(self) -> bool:
        return self._kill_switch

    async def start(self) -> None:
        """Connect relays and begin consuming the pending transaction feed"""
        if self._running:
            self._logger.warning("orchestrator_already_running")
            return

        for relay in self.relays.values():
            await relay.connect()

        self._running = True
        self._stopping = False
        self._started_at = time.time()
        if self.feed is not None and self.scorer is not None:
            self._feed_task = asyncio.create_task(self._feed_loop())

        self._logger.info(
            "orchestrator_started",
            chains=[c.value for c in self.relays],
            max_concurrent_bundles=self.config.max_concurrent_bundles,
            paper_trading=self.config.paper_trading,
        )

    async def stop(self, max_wait: Optional[float] = None) -> None:
        """
        Stop originating new work and shut down.

        In-flight executions get up to ``max_wait`` seconds to reach a terminal
        state; relays are then disconnected and any remaining execution is
        cancelled. Submitted bundles cannot be recalled.
        """
        current = asyncio.current_task()
        emergency = self._emergency_task
        if emergency is not None and emergency is not current and not emergency.done():
            await asyncio.wait([emergency])
        if self._stopping:
            return
        self._stopping = True
        self._running = False
        max_wait = self.config.shutdown_max_wait_seconds if max_wait is None else max_wait

        if self._feed_task is not None:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                self._logger.info("orchestrator_feed_task_cancelled")
            self._feed_task = None

        for task in list(self._scoring_tasks):
            task.cancel()

        pending = [t for t in self._in_flight.values() if t is not None and t is not current]
        if pending:
            self._logger.info("orchestrator_waiting_for_executions", in_flight=len(pending))
            _, still_pending = await asyncio.wait(pending, timeout=max_wait)
        else:
            still_pending = set()

        for chain, relay in self.relays.items():
            try:
                await relay.disconnect()
            except Exception as e:
                self._logger.error(
                    "relay_disconnect_failed",
                    chain=chain.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if still_pending:
            self._logger.warning("orchestrator_cancelling_executions", remaining=len(still_pending))
            for task in still_pending:
                task.cancel()
            await asyncio.gather(*still_pending, return_exceptions=True)

        self._logger.info("orchestrator_stopped", counters=self.counters.to_dict())

    async def emergency_stop(self, reason: str = "manual", max_wait: Optional[float] = None) -> None:
        """Engage the kill switch, announce it and shut down"""
        self._kill_switch = True
        self.risk_gate.trigger_emergency_stop(reason)
        self._logger.critical("emergency_stop", reason=reason, in_flight=self.in_flight_count)
        await self.event_bus.emit(EventType.EMERGENCY_STOP, reason=reason, in_flight=self.in_flight_count)
        await self.stop(max_wait)

    def _on_risk_emergency(self, reason: str) -> None:
        """Risk gate callback: engage the kill switch now, shut down in a separate task"""
        self._kill_switch = True
        if self._emergency_task is not None and not self._emergency_task.done():
            return
        self._emergency_task = asyncio.ensure_future(self.emergency_stop(reason))
        self._emergency_task.add_done_callback(self._on_emergency_done)

    def _on_emergency_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._logger.warning("emergency_stop_cancelled")
            return
        error = task.exception()
        if error is not None:
            self._logger.error(
                "emergency_stop_failed",
                error=str(error),
                error_type=type(error).__name__,
            )

    async def _feed_loop(self) -> None:
        self._logger.info("orchestrator_feed_loop_started")
        try:
            async for tx in self.feed.stream():
                if not self._running:
                    break
                task = asyncio.create_task(self._score_and_dispatch(tx))
                self._scoring_tasks.add(task)
                task.add_done_callback(self._scoring_tasks.discard)
        except asyncio.CancelledError:
            self._logger.info("orchestrator_feed_loop_cancelled")
            raise
        except Exception as e:
            self._logger.error(
                "orchestrator_feed_loop_error",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._logger.info("orchestrator_feed_loop_exited")

    async def _score_and_dispatch(self, tx: PendingTransaction) -> None:
        opportunity = await self.scorer.score(tx)
        if opportunity is not None:
            self.dispatch(opportunity)

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def dispatch(self, opportunity: SandwichOpportunity) -> Optional[asyncio.Task]:
        """
        Reserve an execution slot and start the pipeline for one opportunity.

        Synchronous, so the capacity check and the reservation cannot interleave
        with another dispatch.

        Returns:
            The execution task, or None when the opportunity was dropped
        """
        self.counters.opportunities_received += 1
        chain = opportunity.chain

        if not self._running or self._kill_switch:
            self._drop(opportunity, ErrorKind.STOPPED, "orchestrator is not accepting work")
            return None

        if len(self._in_flight) >= self.config.max_concurrent_bundles:
            self._drop(
                opportunity,
                ErrorKind.CAPACITY,
                f"{len(self._in_flight)} executions in flight",
            )
            return None

        execution_id = new_execution_id()
        self._in_flight[execution_id] = None
        metrics.executions_in_flight.set(len(self._in_flight))
        task = asyncio.create_task(self._run_pipeline(execution_id, opportunity))
        self._in_flight[execution_id] = task

        self._logger.debug(
            "opportunity_dispatched",
            execution_id=execution_id,
            victim_tx=opportunity.victim_tx_hash,
            chain=chain.value,
            in_flight=len(self._in_flight),
        )
        return task

    async def process(self, opportunity: SandwichOpportunity) -> ExecutionResult:
        """Dispatch an opportunity and wait for its terminal result"""
        task = self.dispatch(opportunity)
        if task is None:
            kind = ErrorKind.STOPPED if (not self._running or self._kill_switch) else ErrorKind.CAPACITY
            return ExecutionResult.rejected("", opportunity, kind, "opportunity dropped at dispatch")
        return await task

    def _drop(self, opportunity: SandwichOpportunity, kind: ErrorKind, message: str) -> None:
        self.counters.reject(kind)
        metrics.opportunities_rejected.labels(chain=opportunity.chain.value, reason=kind.value).inc()
        self._logger.info(
            "opportunity_rejected",
            victim_tx=opportunity.victim_tx_hash,
            chain=opportunity.chain.value,
            reason=kind.value,
            detail=message,
        )

    async def _run_pipeline(self, execution_id: str, opportunity: SandwichOpportunity) -> ExecutionResult:
        start = time.perf_counter()
        detection_ms = max(0.0, (time.time() - opportunity.detected_at) * 1000)
        try:
            result = await self._execute(execution_id, opportunity)
        except _Rejection as r:
            result = ExecutionResult.rejected(execution_id, opportunity, r.kind, r.message, r.reasons)
            self._drop(opportunity, r.kind, r.message)
            await self.event_bus.emit(
                EventType.OPPORTUNITY_REJECTED,
                chain=opportunity.chain.value,
                execution_id=execution_id,
                victim_tx_hash=opportunity.victim_tx_hash,
                reason=r.kind.value,
                detail=r.message,
                reasons=r.reasons,
            )
        except asyncio.CancelledError:
            self._logger.warning("execution_cancelled", execution_id=execution_id)
            raise
        except Exception as e:
            self._logger.error(
                "execution_pipeline_error",
                execution_id=execution_id,
                victim_tx=opportunity.victim_tx_hash,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = ExecutionResult.rejected(execution_id, opportunity, ErrorKind.INTERNAL, str(e))
            self.counters.reject(ErrorKind.INTERNAL)
            await self.event_bus.emit(
                EventType.ERROR,
                chain=opportunity.chain.value,
                execution_id=execution_id,
                error=str(e),
            )
        finally:
            self._in_flight.pop(execution_id, None)
            metrics.executions_in_flight.set(len(self._in_flight))

        result.latency.detection_ms = detection_ms
        result.latency.total_ms = detection_ms + (time.perf_counter() - start) * 1000
        return result

    # ------------------------------------------------------------------ #
    # Pipeline stages
    # ------------------------------------------------------------------ #

    async def _execute(self, execution_id: str, opportunity: SandwichOpportunity) -> ExecutionResult:
        chain = opportunity.chain
        chain_config = self.config.chain(chain)

        decision = self.admission.evaluate(opportunity)
        if not decision.should_process:
            raise _Rejection(ErrorKind.ADMISSION, decision.reason or "admission declined")

        price_in, price_out = await self._prices(opportunity)
        gas_price_gwei = await self._gas_price_gwei(opportunity)

        stage_start = time.perf_counter()
        optimization = self.optimizer.optimize(
            opportunity, price_in, price_out, gas_price_gwei=gas_price_gwei
        )
        metrics.execution_stage_latency.labels(chain=chain.value, stage="optimize").observe(
            time.perf_counter() - stage_start
        )
        profit_native = optimization.max_profit_usd / chain_config.native_token_usd
        self._check_profitability(optimization, profit_native, chain_config.min_profit)

        candidate = self._risk_candidate(execution_id, opportunity, optimization, price_in, gas_price_gwei)
        assessment = await self.risk_gate.assess(candidate, reserve=True)
        if not assessment.allowed:
            raise _Rejection(ErrorKind.RISK_DENIED, "risk gate denied", list(assessment.reasons))

        outcome: Optional[BundleOutcome] = None
        try:
            params = self._build_params(execution_id, opportunity, optimization, profit_native)
            self.counters.executions_started += 1
            self._logger.info(
                "execution_started",
                execution_id=execution_id,
                victim_tx=opportunity.victim_tx_hash,
                chain=chain.value,
                front_run_amount=float(params.front_run_amount),
                expected_profit_usd=float(params.expected_profit_usd),
                simulation_only=params.simulation_only,
            )
            await self.event_bus.emit(
                EventType.EXECUTION_STARTED,
                chain=chain.value,
                execution_id=execution_id,
                victim_tx_hash=opportunity.victim_tx_hash,
                expected_profit_usd=float(params.expected_profit_usd),
                simulation_only=params.simulation_only,
            )
            outcome = await self.bundle_manager.execute(params)
        finally:
            success = outcome is not None and outcome.success
            profit = outcome.profit_usd if outcome is not None and outcome.profit_usd else ZERO
            await self.risk_gate.record_outcome(execution_id, success, profit)

        metrics.execution_stage_latency.labels(chain=chain.value, stage="bundle").observe(
            outcome.execution_ms / 1000
        )
        self.admission.record(chain, outcome.success, outcome.execution_ms)
        return await self._finish(execution_id, opportunity, outcome)

    async def _prices(self, opportunity: SandwichOpportunity) -> Tuple[PriceQuote, PriceQuote]:
        chain = opportunity.chain
        quotes = await asyncio.gather(
            self.price_source.get_price(opportunity.token_in, chain),
            self.price_source.get_price(opportunity.token_out, chain),
            return_exceptions=True,
        )
        for quote in quotes:
            if isinstance(quote, CircuitOpenError):
                raise _Rejection(ErrorKind.CIRCUIT_OPEN, str(quote))
            if isinstance(quote, PriceDataError):
                raise _Rejection(ErrorKind.PRICE_DATA, str(quote))
            if isinstance(quote, BaseException):
                raise _Rejection(ErrorKind.PRICE_DATA, f"price lookup failed: {quote}")
        return quotes[0], quotes[1]

    async def _gas_price_gwei(self, opportunity: SandwichOpportunity) -> Decimal:
        client = self.chain_clients.get(opportunity.chain)
        if client is None or not opportunity.chain.is_evm:
            return opportunity.gas_price_gwei
        try:
            wei = await self.admission.metadata_cache.get_gas_price(opportunity.chain, client.get_gas_price)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning("gas_price_lookup_failed", chain=opportunity.chain.value, error=str(e))
            return opportunity.gas_price_gwei
        if not wei:
            return opportunity.gas_price_gwei
        return Decimal(wei) / GWEI

    def _check_profitability(
        self,
        optimization: ProfitOptimizationResult,
        profit_native: Decimal,
        min_profit: Decimal,
    ) -> None:
        if not optimization.is_profitable:
            raise _Rejection(
                ErrorKind.UNPROFITABLE,
                optimization.reason or "no positive confidence-adjusted profit",
            )
        if optimization.profitability < self.optimizer.config.min_profitability:
            raise _Rejection(
                ErrorKind.UNPROFITABLE,
                f"profitability {optimization.profitability:.2f}% below minimum",
            )
        if profit_native < min_profit:
            raise _Rejection(
                ErrorKind.UNPROFITABLE,
                f"profit {profit_native:.6f} below chain minimum {min_profit}",
            )

    def _risk_candidate(
        self,
        execution_id: str,
        opportunity: SandwichOpportunity,
        optimization: ProfitOptimizationResult,
        price_in: PriceQuote,
        gas_price_gwei: Decimal,
    ) -> RiskCandidate:
        native_usd = self.config.chain(opportunity.chain).native_token_usd
        size_usd = optimization.optimal_front_run_amount * price_in.price
        return RiskCandidate(
            execution_id=execution_id,
            chain=opportunity.chain,
            position_size=size_usd / native_usd,
            position_size_usd=size_usd,
            expected_profit_usd=optimization.max_profit_usd,
            price_impact=optimization.price_impact,
            slippage=opportunity.slippage,
            pool_liquidity_usd=opportunity.pool.liquidity_usd,
            gas_price_gwei=gas_price_gwei,
            confidence=optimization.price_confidence,
            token_in=opportunity.token_in,
            token_out=opportunity.token_out,
        )

    def _build_params(
        self,
        execution_id: str,
        opportunity: SandwichOpportunity,
        optimization: ProfitOptimizationResult,
        profit_native: Decimal,
    ) -> ExecutionParams:
        chain_config = self.config.chain(opportunity.chain)
        now = time.time()
        deadline = now + self.config.execution_window_seconds
        if opportunity.expires_at is not None:
            deadline = min(deadline, opportunity.expires_at)
        return ExecutionParams(
            execution_id=execution_id,
            opportunity=opportunity,
            front_run_amount=optimization.optimal_front_run_amount,
            expected_front_run_output=optimization.front_run_output,
            expected_profit_usd=optimization.max_profit_usd,
            expected_profit_native=profit_native,
            profitability=optimization.profitability,
            max_gas_price_gwei=chain_config.max_gas_price_gwei,
            max_slippage=min(MAX_EXECUTION_SLIPPAGE, opportunity.slippage * SLIPPAGE_BUFFER),
            deadline=deadline,
            min_profit=chain_config.min_profit,
            simulation_only=self.config.paper_trading,
        )

    async def _finish(
        self,
        execution_id: str,
        opportunity: SandwichOpportunity,
        outcome: BundleOutcome,
    ) -> ExecutionResult:
        chain = opportunity.chain
        result = ExecutionResult(
            execution_id=execution_id,
            chain=chain,
            success=outcome.success,
            victim_tx_hash=opportunity.victim_tx_hash,
            bundle_id=outcome.bundle_id,
            status=outcome.status.value if outcome.status is not None else None,
            estimated_profit_usd=(
                outcome.bundle.estimated_profit_usd if outcome.bundle is not None else ZERO
            ),
            actual_profit_usd=outcome.profit_usd,
            gas_used=outcome.gas_used,
            simulated_only=outcome.simulated_only,
            latency=LatencyBreakdown(
                simulation_ms=outcome.simulation_ms,
                execution_ms=outcome.execution_ms,
            ),
            error_kind=outcome.error_kind,
            error=outcome.error,
        )

        if outcome.success:
            self.counters.successful += 1
            if outcome.simulated_only:
                self.counters.simulated += 1
            if outcome.profit_usd is not None and not outcome.simulated_only:
                self.counters.total_profit_usd += outcome.profit_usd
                metrics.realized_profit_usd.labels(chain=chain.value).inc(float(outcome.profit_usd))
            label = "simulated" if outcome.simulated_only else "success"
            event_type = EventType.EXECUTION_COMPLETED
        else:
            self.counters.failed += 1
            if outcome.status == BundleStatus.EXPIRED:
                self.counters.expired += 1
                label = "expired"
            else:
                label = "failed"
            event_type = EventType.EXECUTION_FAILED
        self.counters.latencies_ms.append(outcome.execution_ms)
        metrics.executions_total.labels(chain=chain.value, outcome=label).inc()

        self._logger.info(
            "execution_finished",
            execution_id=execution_id,
            victim_tx=opportunity.victim_tx_hash,
            chain=chain.value,
            outcome=label,
            bundle_id=result.bundle_id,
            error=result.error,
        )
        await self.event_bus.emit(event_type, chain=chain.value, result=result.to_dict())
        return result

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_status(self) -> Dict[str, Any]:
        """Running flag, per-chain state, in-flight count and health counters"""
        return {
            "running": self._running,
            "emergency_stop": self._kill_switch,
            "paper_trading": self.config.paper_trading,
            "uptime_seconds": time.time() - self._started_at if self._started_at else 0.0,
            "chains": {
                chain.value: {
                    "enabled": chain_config.enabled,
                    "relay": self.relays[chain].name if chain in self.relays else None,
                    "relay_connected": (
                        self.relays[chain].is_connected if chain in self.relays else False
                    ),
                }
                for chain, chain_config in self.config.chains.items()
            },
            "in_flight": self.in_flight_count,
            "max_concurrent_bundles": self.config.max_concurrent_bundles,
            "counters": self.counters.to_dict(),
            "breakers": {
                "price_oracle": self.price_source.breaker.snapshot(),
                **{
                    f"relay_{chain.value}": breaker.snapshot()
                    for chain, breaker in self.bundle_manager.breakers.items()
                },
            },
            "bundles": self.bundle_manager.snapshot()["chains"],
            "admission": self.admission.snapshot(),
            "risk": self.risk_gate.snapshot(),
        }
