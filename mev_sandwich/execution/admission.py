"""Adaptive admission controller: advisory throughput protection under load"""

import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, Optional

import structlog
from cachetools import TTLCache

from mev_sandwich.cache import MetadataCache
from mev_sandwich.config import AdmissionConfig
from mev_sandwich.models import Chain, SandwichOpportunity
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()

# Processing latency before any execution has been observed (ms)
BASE_LATENCY_MS = {
    Chain.ETHEREUM: 150.0,
    Chain.BSC: 120.0,
    Chain.SOLANA: 110.0,
}


@dataclass(frozen=True)
class AdmissionDecision:
    """Advice for one opportunity"""

    should_process: bool
    priority: float
    estimated_latency_ms: float
    reason: Optional[str] = None
    cached: bool = False


@dataclass(frozen=True)
class ExecutionSample:
    success: bool
    latency_ms: float
    timestamp: float


class AdmissionController:
    """
    Advises whether an opportunity is worth a slot.

    Drops opportunities whose estimated end-to-end latency exceeds the
    latency budget or the time left before the victim's deadline, and all
    opportunities of a chain whose rolling success rate has fallen below
    ``min_success_rate`` (once ``min_samples`` outcomes are known). Outcomes
    older than ``stats_window_seconds`` fall out of the window, so a paused
    chain is admitted again once its failures age out. Never
    overrides the risk gate.
    """

    def __init__(
        self,
        config: AdmissionConfig,
        metadata_cache: Optional[MetadataCache] = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.metadata_cache = metadata_cache or MetadataCache(
            token_ttl=config.token_cache_seconds,
            pool_ttl=config.pool_cache_seconds,
            gas_ttl=config.gas_cache_seconds,
            maxsize=config.cache_size,
            timer=timer,
        )
        self.clock = clock
        self._samples: Dict[Chain, Deque[ExecutionSample]] = {}
        self._decisions: TTLCache = TTLCache(
            maxsize=config.cache_size, ttl=config.decision_cache_seconds, timer=timer
        )
        self._admitted = 0
        self._dropped = 0
        self._logger = logger.bind(component="admission_controller")

    # ------------------------------------------------------------------ #
    # Rolling statistics
    # ------------------------------------------------------------------ #

    def record(self, chain: Chain, success: bool, latency_ms: float) -> None:
        """Add one terminal execution outcome to the chain's rolling window"""
        samples = self._samples.setdefault(chain, deque(maxlen=self.config.stats_window))
        samples.append(ExecutionSample(success=success, latency_ms=latency_ms, timestamp=self.clock()))

        rate = self.success_rate(chain)
        if rate is not None:
            metrics.admission_success_rate.labels(chain=chain.value).set(rate)
            if rate < self.config.min_success_rate:
                self._decisions.clear()

    def _window(self, chain: Chain) -> Deque[ExecutionSample]:
        """Samples of the chain still inside ``stats_window_seconds``"""
        samples = self._samples.get(chain)
        if not samples:
            return deque()
        cutoff = self.clock() - self.config.stats_window_seconds
        while samples and samples[0].timestamp < cutoff:
            samples.popleft()
        return samples

    def sample_count(self, chain: Chain) -> int:
        return len(self._window(chain))

    def success_rate(self, chain: Chain) -> Optional[float]:
        """Rolling success rate, None until ``min_samples`` recent outcomes are known"""
        samples = self._window(chain)
        if len(samples) < self.config.min_samples:
            return None
        return sum(1 for s in samples if s.success) / len(samples)

    def average_latency_ms(self, chain: Chain) -> Optional[float]:
        samples = self._window(chain)
        if not samples:
            return None
        return sum(s.latency_ms for s in samples) / len(samples)

    # ------------------------------------------------------------------ #
    # Decisions
    # ------------------------------------------------------------------ #

    def estimate_latency_ms(self, opportunity: SandwichOpportunity) -> float:
        """
        Estimated end-to-end latency.

        Uses the observed average once ``min_samples`` executions are known,
        otherwise a per-chain base adjusted for calldata size and trade size.
        """
        chain = opportunity.chain
        observed = self.average_latency_ms(chain)
        if observed is not None and self.sample_count(chain) >= self.config.min_samples:
            return observed

        latency = BASE_LATENCY_MS.get(chain, 150.0)
        if len(opportunity.victim.data) > 1000:
            latency += 30.0
        if opportunity.amount_in > 10:
            latency += 20.0
        return latency

    def priority(self, opportunity: SandwichOpportunity, latency_ms: float) -> float:
        """Priority 0-100 from MEV score, trade size and speed"""
        priority = 0.5 * opportunity.mev_score
        priority += min(float(opportunity.trade_value_usd) / 1000.0, 30.0)
        priority += max(0.0, (1000.0 - latency_ms) / 1000.0 * 20.0)
        return max(0.0, min(priority, 100.0))

    def evaluate(self, opportunity: SandwichOpportunity, now: Optional[float] = None) -> AdmissionDecision:
        """Advise whether to spend an execution slot on the opportunity"""
        key = (opportunity.chain.value, opportunity.victim_tx_hash.lower())
        cached = self._decisions.get(key)
        if cached is not None:
            return replace(cached, cached=True)

        now = self.clock() if now is None else now
        decision = self._decide(opportunity, now)
        self._decisions[key] = decision

        if decision.should_process:
            self._admitted += 1
        else:
            self._dropped += 1
            self._logger.info(
                "admission_dropped",
                victim_tx=opportunity.victim_tx_hash,
                chain=opportunity.chain.value,
                reason=decision.reason,
                priority=decision.priority,
                estimated_latency_ms=decision.estimated_latency_ms,
            )
        return decision

    def _decide(self, opportunity: SandwichOpportunity, now: float) -> AdmissionDecision:
        chain = opportunity.chain
        latency = self.estimate_latency_ms(opportunity)
        priority = self.priority(opportunity, latency)

        rate = self.success_rate(chain)
        if rate is not None and rate < self.config.min_success_rate:
            return AdmissionDecision(
                False, priority, latency, reason=f"success rate {rate:.2f} below minimum"
            )

        if latency > self.config.max_execution_latency_ms:
            return AdmissionDecision(False, priority, latency, reason="latency budget exceeded")

        window_ms = opportunity.time_to_expiry(now) * 1000
        if latency > window_ms:
            return AdmissionDecision(False, priority, latency, reason="economic window too short")

        if priority < self.config.min_priority:
            return AdmissionDecision(False, priority, latency, reason="priority below minimum")

        return AdmissionDecision(True, priority, latency)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "admitted": self._admitted,
            "dropped": self._dropped,
            "chains": {
                chain.value: {
                    "samples": self.sample_count(chain),
                    "success_rate": self.success_rate(chain),
                    "average_latency_ms": self.average_latency_ms(chain),
                }
                for chain in self._samples
            },
            "caches": self.metadata_cache.stats(),
        }
