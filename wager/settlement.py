"""
settlement.py - Pari-mutuel fee and reward arithmetic

Pure functions, no ledger access. All results are truncated toward zero
so the market can never promise more than it escrows:

    fee     = trunc(loser_pool * FEE_RATE)
    ratio   = trunc_18(stake / winning_pool)
    reward  = trunc(losing_pool_after_fee * ratio)
    payout  = stake + reward

trunc() quantizes to the token's precision; trunc_18() quantizes to
REWARD_PRECISION decimal places. Because every winner's ratio is
truncated, the rewards of all winners sum to at most the losing pool and
the remainder ("dust") stays escrowed.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from .core import FEE_RATE, REWARD_PRECISION, SIDE_A, SIDE_B


RATIO_QUANTUM = Decimal(10) ** -REWARD_PRECISION


def _truncate(value: Decimal, quantum: Optional[Decimal]) -> Decimal:
    if quantum is None:
        return value
    return value.quantize(quantum, rounding=ROUND_DOWN)


def other_side(side: int) -> int:
    """Return the opposing outcome side."""
    if side == SIDE_A:
        return SIDE_B
    if side == SIDE_B:
        return SIDE_A
    raise ValueError(f"not an outcome side: {side!r}")


def pool_key(side: int) -> str:
    """Name of the state field accumulating stakes for a side."""
    if side == SIDE_A:
        return 'pool_a'
    if side == SIDE_B:
        return 'pool_b'
    raise ValueError(f"not an outcome side: {side!r}")


def compute_fee(
    loser_pool: Decimal,
    quantum: Optional[Decimal] = None,
    fee_rate: Decimal = FEE_RATE,
) -> Decimal:
    """
    Protocol fee taken from the losing pool at resolution.

    Example:
        compute_fee(Decimal("5"), Decimal("1e-18"))  # Decimal("1.25")
    """
    if loser_pool < 0:
        raise ValueError(f"loser_pool must be non-negative, got {loser_pool}")
    return _truncate(loser_pool * fee_rate, quantum)


def compute_reward_ratio(stake: Decimal, winning_pool: Decimal) -> Decimal:
    """Share of the winning pool held by stake, as an 18-decimal fixed-point value."""
    if winning_pool <= 0:
        raise ValueError(f"winning_pool must be positive, got {winning_pool}")
    if stake < 0 or stake > winning_pool:
        raise ValueError(f"stake {stake} outside winning pool {winning_pool}")
    return _truncate(stake / winning_pool, RATIO_QUANTUM)


def compute_reward(
    stake: Decimal,
    winning_pool: Decimal,
    losing_pool: Decimal,
    quantum: Optional[Decimal] = None,
) -> Decimal:
    """Winner's share of the (fee-deducted) losing pool."""
    ratio = compute_reward_ratio(stake, winning_pool)
    return _truncate(losing_pool * ratio, quantum)


def compute_payout(
    stake: Decimal,
    winning_pool: Decimal,
    losing_pool: Decimal,
    quantum: Optional[Decimal] = None,
) -> Decimal:
    """Stake returned plus pro-rata reward."""
    return stake + compute_reward(stake, winning_pool, losing_pool, quantum)
