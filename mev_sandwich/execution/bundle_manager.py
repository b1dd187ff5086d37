"""Bundle lifecycle manager: bid, build, simulate, submit and track one bundle per execution"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Set

import structlog

from mev_sandwich.config import AppConfig
from mev_sandwich.errors import (
    BundleExpiredError,
    CircuitOpenError,
    DuplicateSubmissionError,
    ExecutionError,
    RelayConnectionError,
    RelayRejectedError,
    ValidationError,
)
from mev_sandwich.events import EventBus, EventType
from mev_sandwich.execution.bidding import calculate_bid_multiplier
from mev_sandwich.models import Chain, ErrorKind, ExecutionParams
from mev_sandwich.monitoring import metrics
from mev_sandwich.relays.base import Bundle, BundleStatus, RelayClient
from mev_sandwich.resilience import CircuitBreaker, RetryPolicy, retry_async

logger = structlog.get_logger()

ZERO = Decimal("0")

ALLOWED_TRANSITIONS = {
    BundleStatus.CREATED: frozenset(
        {BundleStatus.SIMULATED, BundleStatus.SUBMITTED, BundleStatus.FAILED, BundleStatus.EXPIRED}
    ),
    BundleStatus.SIMULATED: frozenset(
        {
            BundleStatus.SUBMITTED,
            BundleStatus.INCLUDED,
            BundleStatus.LANDED,
            BundleStatus.FAILED,
            BundleStatus.EXPIRED,
        }
    ),
    BundleStatus.SUBMITTED: frozenset(
        {
            BundleStatus.SIMULATED,
            BundleStatus.INCLUDED,
            BundleStatus.LANDED,
            BundleStatus.FAILED,
            BundleStatus.EXPIRED,
        }
    ),
}

_STATUS_EVENTS = {
    BundleStatus.CREATED: EventType.BUNDLE_CREATED,
    BundleStatus.SIMULATED: EventType.BUNDLE_SIMULATED,
    BundleStatus.SUBMITTED: EventType.BUNDLE_SUBMITTED,
    BundleStatus.INCLUDED: EventType.BUNDLE_INCLUDED,
    BundleStatus.LANDED: EventType.BUNDLE_LANDED,
    BundleStatus.FAILED: EventType.BUNDLE_FAILED,
    BundleStatus.EXPIRED: EventType.BUNDLE_EXPIRED,
}


@dataclass
class BundleOutcome:
    """Terminal result of one bundle lifecycle"""

    execution_id: str
    chain: Chain
    success: bool
    status: Optional[BundleStatus]
    bundle: Optional[Bundle] = None
    simulated_only: bool = False
    profit_usd: Optional[Decimal] = None
    gas_used: Optional[int] = None
    simulation_ms: float = 0.0
    execution_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def bundle_id(self) -> Optional[str]:
        return self.bundle.bundle_id if self.bundle is not None else None


@dataclass
class ChainExecutionStats:
    """Per-chain bundle statistics"""

    total: int = 0
    successful: int = 0
    failed: int = 0
    expired: int = 0
    simulated: int = 0
    total_profit_usd: Decimal = ZERO
    total_execution_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0

    @property
    def average_execution_ms(self) -> float:
        return self.total_execution_ms / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "expired": self.expired,
            "simulated": self.simulated,
            "total_profit_usd": float(self.total_profit_usd),
            "success_rate": self.success_rate,
            "average_execution_ms": self.average_execution_ms,
        }


class BundleManager:
    """
    Drives each bundle through ``created -> simulated -> submitted -> terminal``.

    At most one bundle per victim transaction is active at a time. Transient
    relay errors are retried with backoff through the relay's circuit breaker;
    relay rejections are terminal. A bundle without a terminal status at the
    execution deadline is marked expired and never retried.
    """

    def __init__(
        self,
        config: AppConfig,
        relays: Mapping[Chain, RelayClient],
        event_bus: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize bundle manager.

        Args:
            config: Application configuration
            relays: Relay client per enabled chain
            event_bus: Receives bundle lifecycle events
            retry_policy: Policy for transient relay errors (built from config when None)
            clock: Wall-clock source compared against execution deadlines
        """
        self.config = config
        self.relays = dict(relays)
        self.event_bus = event_bus
        self.clock = clock
        resilience = config.resilience
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=resilience.max_attempts,
            base_delay=resilience.base_delay_seconds,
            max_delay=resilience.max_delay_seconds,
        )
        self.breakers: Dict[Chain, CircuitBreaker] = {
            chain: CircuitBreaker(
                name=f"relay_{relay.name}",
                failure_threshold=resilience.failure_threshold,
                timeout_seconds=resilience.reset_timeout_seconds,
            )
            for chain, relay in self.relays.items()
        }
        self.stats: Dict[Chain, ChainExecutionStats] = {
            chain: ChainExecutionStats() for chain in self.relays
        }
        self._active_victims: Set[str] = set()
        self._bundles: Dict[str, Bundle] = {}
        self._by_execution: Dict[str, Bundle] = {}
        self._logger = logger.bind(component="bundle_manager")

    @property
    def active_count(self) -> int:
        return len(self._active_victims)

    def is_active(self, victim_tx_hash: str) -> bool:
        return victim_tx_hash.lower() in self._active_victims

    def get_bundle(self, bundle_id: str) -> Optional[Bundle]:
        """In-flight bundle by id. Terminal bundles are reported and discarded."""
        return self._bundles.get(bundle_id)

    def reputation_bonus(self, chain: Chain) -> float:
        chain_config = self.config.chains.get(chain)
        if chain_config is not None and chain_config.flashbots is not None:
            return chain_config.flashbots.reputation_bonus
        return 0.0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def execute(self, params: ExecutionParams) -> BundleOutcome:
        """
        Run one execution's bundle to a terminal state.

        Never raises for relay, validation or timeout failures; they are
        reported in the returned BundleOutcome.
        """
        chain = params.chain
        victim = params.opportunity.victim_tx_hash.lower()
        start = time.perf_counter()

        try:
            self._claim(victim)
        except DuplicateSubmissionError as e:
            self._logger.warning(
                "bundle_duplicate_rejected",
                execution_id=params.execution_id,
                victim_tx=params.opportunity.victim_tx_hash,
            )
            return BundleOutcome(
                execution_id=params.execution_id,
                chain=chain,
                success=False,
                status=None,
                error_kind=ErrorKind.DUPLICATE,
                error=str(e),
            )

        try:
            outcome = await self._execute_claimed(params)
        finally:
            self._active_victims.discard(victim)
            bundle = self._by_execution.pop(params.execution_id, None)
            if bundle is not None:
                self._bundles.pop(bundle.bundle_id, None)

        outcome.execution_ms = (time.perf_counter() - start) * 1000
        self._record(outcome)
        return outcome

    def _claim(self, victim: str) -> None:
        if victim in self._active_victims:
            raise DuplicateSubmissionError(f"bundle already active for victim {victim}")
        self._active_victims.add(victim)

    async def _execute_claimed(self, params: ExecutionParams) -> BundleOutcome:
        chain = params.chain
        relay = self.relays.get(chain)
        if relay is None:
            return self._failure(params, None, ErrorKind.VALIDATION, f"no relay for {chain.value}")

        try:
            self.validate(params)
        except ValidationError as e:
            return self._failure(params, None, ErrorKind.VALIDATION, str(e))

        remaining = params.remaining(self.clock())
        if remaining <= 0:
            return await self._expire(params, None)

        try:
            return await asyncio.wait_for(self._run(params, relay), timeout=remaining)
        except asyncio.TimeoutError:
            return await self._expire(params, self._by_execution.get(params.execution_id))

    def validate(self, params: ExecutionParams) -> None:
        """
        Reject execution parameters that could never produce a valid bundle.

        Raises:
            ValidationError: if any parameter is out of range
        """
        chain = params.chain.value
        if params.front_run_amount <= ZERO:
            raise ValidationError("front-run amount must be positive", chain=chain)
        if params.expected_front_run_output <= ZERO:
            raise ValidationError("expected front-run output must be positive", chain=chain)
        if not ZERO < params.max_slippage <= Decimal("100"):
            raise ValidationError(f"max slippage {params.max_slippage} out of range", chain=chain)
        if params.max_gas_price_gwei <= ZERO:
            raise ValidationError("max gas price must be positive", chain=chain)

    async def _run(self, params: ExecutionParams, relay: RelayClient) -> BundleOutcome:
        chain = params.chain
        breaker = self.breakers[chain]
        bundle: Optional[Bundle] = None

        try:
            multiplier = calculate_bid_multiplier(
                self.config.bidding,
                params.profitability,
                params.opportunity.trade_value_usd,
                self.reputation_bonus(chain),
                chain,
            )
            bundle = await retry_async(
                self.retry_policy,
                relay.create_bundle,
                params,
                multiplier,
                operation=f"{relay.name}_create_bundle",
                deadline=params.deadline,
                clock=self.clock,
            )
            self._bundles[bundle.bundle_id] = bundle
            self._by_execution[params.execution_id] = bundle
            await self._emit(bundle, EventType.BUNDLE_CREATED)

            sim_start = time.perf_counter()
            simulation = await retry_async(
                self.retry_policy,
                relay.simulate_bundle,
                bundle,
                operation=f"{relay.name}_simulate_bundle",
                breaker=breaker,
                deadline=params.deadline,
                clock=self.clock,
            )
            simulation_ms = (time.perf_counter() - sim_start) * 1000
            if not simulation.success:
                self._logger.warning(
                    "bundle_simulation_failed",
                    bundle_id=bundle.bundle_id,
                    victim_tx=bundle.victim_tx_hash,
                    error=simulation.error,
                )
                outcome = await self._fail_bundle(
                    params,
                    bundle,
                    ErrorKind.RELAY_REJECTED,
                    f"simulation failed: {simulation.error}",
                )
                outcome.simulation_ms = simulation_ms
                return outcome

            bundle.gas_used = simulation.gas_used or None
            await self._advance(bundle, BundleStatus.SIMULATED)

            if params.simulation_only:
                self._logger.info(
                    "paper_trade_simulated",
                    bundle_id=bundle.bundle_id,
                    victim_tx=bundle.victim_tx_hash,
                    estimated_profit_usd=float(params.expected_profit_usd),
                )
                return BundleOutcome(
                    execution_id=params.execution_id,
                    chain=chain,
                    success=True,
                    status=BundleStatus.SIMULATED,
                    bundle=bundle,
                    simulated_only=True,
                    profit_usd=params.expected_profit_usd,
                    gas_used=bundle.gas_used,
                    simulation_ms=simulation_ms,
                )

            bundle.relay_bundle_id = await retry_async(
                self.retry_policy,
                relay.submit_bundle,
                bundle,
                operation=f"{relay.name}_submit_bundle",
                breaker=breaker,
                deadline=params.deadline,
                clock=self.clock,
            )
            metrics.bundles_submitted.labels(chain=chain.value, relay=relay.name).inc()
            await self._advance(bundle, BundleStatus.SUBMITTED)

            outcome = await self._track(params, relay, bundle)
            outcome.simulation_ms = simulation_ms
            return outcome

        except CircuitOpenError as e:
            return await self._fail_bundle(params, bundle, ErrorKind.CIRCUIT_OPEN, str(e))
        except RelayRejectedError as e:
            return await self._fail_bundle(params, bundle, ErrorKind.RELAY_REJECTED, str(e))
        except ValidationError as e:
            return await self._fail_bundle(params, bundle, ErrorKind.VALIDATION, str(e))
        except (RelayConnectionError, ExecutionError) as e:
            return await self._fail_bundle(params, bundle, ErrorKind.EXECUTION, str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "bundle_execution_error",
                execution_id=params.execution_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._fail_bundle(params, bundle, ErrorKind.INTERNAL, str(e))

    async def _track(self, params: ExecutionParams, relay: RelayClient, bundle: Bundle) -> BundleOutcome:
        """Poll the relay until the bundle reaches a terminal status"""
        while True:
            try:
                report = await relay.get_bundle_status(bundle)
            except RelayConnectionError as e:
                self._logger.warning(
                    "bundle_status_poll_failed",
                    bundle_id=bundle.bundle_id,
                    error=str(e),
                )
            else:
                if report.gas_used is not None:
                    bundle.gas_used = int(report.gas_used)
                if report.status.is_terminal:
                    if report.status == BundleStatus.FAILED:
                        bundle.failure_reason = report.reason
                    await self._advance(bundle, report.status)
                    if report.status.is_success:
                        bundle.realized_profit_usd = params.expected_profit_usd
                        return BundleOutcome(
                            execution_id=params.execution_id,
                            chain=params.chain,
                            success=True,
                            status=report.status,
                            bundle=bundle,
                            profit_usd=bundle.realized_profit_usd,
                            gas_used=bundle.gas_used,
                        )
                    return BundleOutcome(
                        execution_id=params.execution_id,
                        chain=params.chain,
                        success=False,
                        status=report.status,
                        bundle=bundle,
                        gas_used=bundle.gas_used,
                        error_kind=ErrorKind.EXECUTION,
                        error=report.reason or f"bundle {report.status.value}",
                    )

            await asyncio.sleep(relay.poll_interval)

    # ------------------------------------------------------------------ #
    # State transitions
    # ------------------------------------------------------------------ #

    def _transition(self, bundle: Bundle, status: BundleStatus) -> None:
        allowed = ALLOWED_TRANSITIONS.get(bundle.status, frozenset())
        if status not in allowed:
            raise ExecutionError(
                f"illegal bundle transition {bundle.status.value} -> {status.value}",
                chain=bundle.chain.value,
            )
        bundle.status = status
        bundle.timestamps[status.value] = self.clock()

    async def _advance(self, bundle: Bundle, status: BundleStatus) -> None:
        self._transition(bundle, status)
        log = self._logger.warning if status in (BundleStatus.FAILED, BundleStatus.EXPIRED) else self._logger.info
        log(
            f"bundle_{status.value}",
            bundle_id=bundle.bundle_id,
            execution_id=bundle.execution_id,
            chain=bundle.chain.value,
            relay=bundle.relay,
            victim_tx=bundle.victim_tx_hash,
            reason=bundle.failure_reason,
        )
        if status.is_terminal:
            metrics.bundles_terminal.labels(
                chain=bundle.chain.value, relay=bundle.relay, status=status.value
            ).inc()
        await self._emit(bundle, _STATUS_EVENTS[status])

    async def _emit(self, bundle: Bundle, event_type: EventType) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.emit(event_type, chain=bundle.chain.value, bundle=bundle.to_dict())

    async def _fail_bundle(
        self,
        params: ExecutionParams,
        bundle: Optional[Bundle],
        kind: ErrorKind,
        error: str,
    ) -> BundleOutcome:
        if bundle is not None and not bundle.status.is_terminal:
            bundle.failure_reason = error
            await self._advance(bundle, BundleStatus.FAILED)
        return self._failure(params, bundle, kind, error)

    def _failure(
        self,
        params: ExecutionParams,
        bundle: Optional[Bundle],
        kind: ErrorKind,
        error: str,
    ) -> BundleOutcome:
        self._logger.warning(
            "bundle_execution_failed",
            execution_id=params.execution_id,
            victim_tx=params.opportunity.victim_tx_hash,
            error_kind=kind.value,
            error=error,
        )
        return BundleOutcome(
            execution_id=params.execution_id,
            chain=params.chain,
            success=False,
            status=bundle.status if bundle is not None else BundleStatus.FAILED,
            bundle=bundle,
            error_kind=kind,
            error=error,
        )

    async def _expire(self, params: ExecutionParams, bundle: Optional[Bundle]) -> BundleOutcome:
        expired = BundleExpiredError("deadline elapsed before a terminal status", chain=params.chain.value)
        if bundle is not None and not bundle.status.is_terminal:
            bundle.failure_reason = expired.message
            await self._advance(bundle, BundleStatus.EXPIRED)
        else:
            self._logger.warning(
                "bundle_expired",
                execution_id=params.execution_id,
                victim_tx=params.opportunity.victim_tx_hash,
            )
        return BundleOutcome(
            execution_id=params.execution_id,
            chain=params.chain,
            success=False,
            status=BundleStatus.EXPIRED,
            bundle=bundle,
            error_kind=ErrorKind.TIMEOUT,
            error=str(expired),
        )

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def _record(self, outcome: BundleOutcome) -> None:
        if outcome.error_kind == ErrorKind.DUPLICATE:
            return
        stats = self.stats.setdefault(outcome.chain, ChainExecutionStats())
        stats.total += 1
        stats.total_execution_ms += outcome.execution_ms
        if outcome.success:
            stats.successful += 1
            if outcome.simulated_only:
                stats.simulated += 1
            if outcome.profit_usd is not None:
                stats.total_profit_usd += outcome.profit_usd
        elif outcome.status == BundleStatus.EXPIRED:
            stats.expired += 1
            stats.failed += 1
        else:
            stats.failed += 1

    def snapshot(self) -> Dict[str, Any]:
        return {
            "active_bundles": self.active_count,
            "chains": {chain.value: stats.to_dict() for chain, stats in self.stats.items()},
            "breakers": {chain.value: b.snapshot() for chain, b in self.breakers.items()},
        }
