"""Tests for the competition-aware bid multiplier"""

from decimal import Decimal

import pytest

from mev_sandwich.config import BiddingConfig
from mev_sandwich.execution.bidding import calculate_bid_multiplier
from mev_sandwich.models import Chain


@pytest.fixture
def config():
    return BiddingConfig()


@pytest.mark.parametrize(
    "profitability,trade_value,expected",
    [
        (Decimal("2"), Decimal("10000"), Decimal("1.0")),
        (Decimal("6"), Decimal("10000"), Decimal("1.2")),
        (Decimal("12"), Decimal("10000"), Decimal("1.5")),
        (Decimal("2"), Decimal("50000"), Decimal("1.2")),
        (Decimal("2"), Decimal("150000"), Decimal("1.5")),
        (Decimal("12"), Decimal("150000"), Decimal("2.25")),
    ],
)
def test_steps(config, profitability, trade_value, expected):
    """Test profitability and trade-size steps multiply together"""
    assert calculate_bid_multiplier(config, profitability, trade_value) == expected


def test_reputation_bonus(config):
    """Test the relay reputation bonus scales the bid"""
    multiplier = calculate_bid_multiplier(
        config, Decimal("2"), Decimal("10000"), reputation_bonus=0.2, chain=Chain.ETHEREUM
    )

    assert multiplier == Decimal("1.2")


def test_capped(config):
    """Test the multiplier never exceeds the configured maximum"""
    multiplier = calculate_bid_multiplier(
        config, Decimal("50"), Decimal("1000000"), reputation_bonus=1.0, chain=Chain.SOLANA
    )

    assert multiplier == Decimal("3.0")


def test_thresholds_are_exclusive(config):
    """Test values exactly at a threshold do not step up"""
    assert calculate_bid_multiplier(config, Decimal("5"), Decimal("25000")) == Decimal("1.0")
