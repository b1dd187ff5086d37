"""Bidding, bundle lifecycle, admission control and orchestration"""

from mev_sandwich.execution.admission import AdmissionController, AdmissionDecision
from mev_sandwich.execution.bidding import calculate_bid_multiplier
from mev_sandwich.execution.bundle_manager import BundleManager, BundleOutcome, ChainExecutionStats
from mev_sandwich.execution.orchestrator import ExecutionOrchestrator, HealthCounters

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "BundleManager",
    "BundleOutcome",
    "ChainExecutionStats",
    "ExecutionOrchestrator",
    "HealthCounters",
    "calculate_bid_multiplier",
]
