"""Price data access"""

from mev_sandwich.pricing.guarded_source import GuardedPriceSource

__all__ = ["GuardedPriceSource"]
