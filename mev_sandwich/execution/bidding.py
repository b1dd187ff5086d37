"""Competition-aware bid multiplier"""

from decimal import Decimal

from mev_sandwich.config import BiddingConfig
from mev_sandwich.models import Chain
from mev_sandwich.monitoring import metrics


def calculate_bid_multiplier(
    config: BiddingConfig,
    profitability: Decimal,
    trade_value_usd: Decimal,
    reputation_bonus: float = 0.0,
    chain: Chain = Chain.ETHEREUM,
) -> Decimal:
    """
    Scale the base gas / tip bid for one opportunity.

    Starts at 1.0, steps up with profitability and with victim trade size, is
    scaled by the relay reputation bonus and capped at ``max_multiplier``.

    Args:
        config: Bidding thresholds
        profitability: Expected profit as a percentage of the front-run value
        trade_value_usd: Victim trade value in USD
        reputation_bonus: Relay reputation bonus in [0, 1]
        chain: Chain label for the metric

    Returns:
        Multiplier in [1.0, max_multiplier]
    """
    multiplier = Decimal("1.0")

    if profitability > config.high_profitability:
        multiplier *= config.high_profitability_multiplier
    elif profitability > config.medium_profitability:
        multiplier *= config.medium_profitability_multiplier

    if trade_value_usd > config.large_trade_usd:
        multiplier *= config.large_trade_multiplier
    elif trade_value_usd > config.medium_trade_usd:
        multiplier *= config.medium_trade_multiplier

    multiplier *= Decimal(1) + Decimal(str(reputation_bonus))
    multiplier = min(multiplier, config.max_multiplier)

    metrics.bid_multiplier.labels(chain=chain.value).observe(float(multiplier))
    return multiplier
