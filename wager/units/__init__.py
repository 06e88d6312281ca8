"""
Units module - Factory functions and transaction builders for market units.

The market unit carries a wager market's pools, bets and outcome as unit
state; the builders here read that state through a LedgerView and return
PendingTransactions for the ledger to apply atomically.
"""

from .market import (
    MarketStatus,
    create_market_unit,
    compute_bet,
    compute_declare_result,
    compute_claim_reward,
    compute_pause,
    compute_unpause,
    compute_emergency_withdraw,
    get_market_status,
    get_bet,
    expected_escrow,
    verify_market_conservation,
)

__all__ = [
    'MarketStatus',
    'create_market_unit',
    'compute_bet',
    'compute_declare_result',
    'compute_claim_reward',
    'compute_pause',
    'compute_unpause',
    'compute_emergency_withdraw',
    'get_market_status',
    'get_bet',
    'expected_escrow',
    'verify_market_conservation',
]
