"""Detectors for sandwich opportunity scoring and sizing"""

from .amm import get_amount_out, simulate_sandwich
from .decoder import SwapDecoder
from .opportunity_scorer import OpportunityScorer
from .profit_optimizer import ProfitOptimizer

__all__ = [
    "OpportunityScorer",
    "ProfitOptimizer",
    "SwapDecoder",
    "get_amount_out",
    "simulate_sandwich",
]
