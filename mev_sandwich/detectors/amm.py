"""Constant-product (x * y = k) pool math for sandwich sizing"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

BPS = Decimal(10000)
ZERO = Decimal(0)


def fee_multiplier(fee_bps: int) -> Decimal:
    """Fraction of the input that reaches the curve after the pool fee"""
    return (BPS - Decimal(fee_bps)) / BPS


def get_amount_out(
    amount_in: Decimal, reserve_in: Decimal, reserve_out: Decimal, fee_bps: int
) -> Decimal:
    """
    Output of a single swap against a constant-product pool.

    Returns zero for non-positive inputs or reserves.
    """
    if amount_in <= ZERO or reserve_in <= ZERO or reserve_out <= ZERO:
        return ZERO
    amount_in_with_fee = amount_in * fee_multiplier(fee_bps)
    return (reserve_out * amount_in_with_fee) / (reserve_in + amount_in_with_fee)


def price_impact(amount_in: Decimal, reserve_in: Decimal) -> Decimal:
    """Trade size relative to the input reserve, in percent"""
    if reserve_in <= ZERO:
        return ZERO
    return amount_in / reserve_in * Decimal(100)


@dataclass(frozen=True)
class SandwichSimulation:
    """Three-step replay of front-run, victim swap and back-run"""

    front_run_in: Decimal
    front_run_out: Decimal
    victim_out: Decimal
    victim_out_unsandwiched: Decimal
    back_run_out: Decimal
    gross_profit: Decimal
    victim_reverts: bool

    @property
    def victim_loss(self) -> Decimal:
        """Output the victim gives up because of the front-run (token-out units)"""
        return self.victim_out_unsandwiched - self.victim_out


def simulate_sandwich(
    front_run_in: Decimal,
    victim_in: Decimal,
    reserve_in: Decimal,
    reserve_out: Decimal,
    fee_bps: int,
    victim_min_out: Optional[Decimal] = None,
) -> SandwichSimulation:
    """
    Replay a sandwich against pool reserves.

    1. Front-run sells ``front_run_in`` of token-in for token-out.
    2. Victim sells ``victim_in`` at the worsened price.
    3. Back-run sells the front-run output back into token-in.

    Gross profit is expressed in token-in units. When the victim's minimum
    output would not be met the victim swap reverts, so the back-run only
    unwinds the front-run against the post-front-run pool.
    """
    victim_unsandwiched = get_amount_out(victim_in, reserve_in, reserve_out, fee_bps)

    front_out = get_amount_out(front_run_in, reserve_in, reserve_out, fee_bps)
    reserve_in_1 = reserve_in + front_run_in
    reserve_out_1 = reserve_out - front_out

    victim_out = get_amount_out(victim_in, reserve_in_1, reserve_out_1, fee_bps)
    victim_reverts = victim_min_out is not None and victim_out < victim_min_out

    if victim_reverts:
        reserve_in_2 = reserve_in_1
        reserve_out_2 = reserve_out_1
        victim_out = ZERO
    else:
        reserve_in_2 = reserve_in_1 + victim_in
        reserve_out_2 = reserve_out_1 - victim_out

    back_out = get_amount_out(front_out, reserve_out_2, reserve_in_2, fee_bps)

    return SandwichSimulation(
        front_run_in=front_run_in,
        front_run_out=front_out,
        victim_out=victim_out,
        victim_out_unsandwiched=victim_unsandwiched,
        back_run_out=back_out,
        gross_profit=back_out - front_run_in,
        victim_reverts=victim_reverts,
    )
