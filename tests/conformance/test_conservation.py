"""
Conservation Conformance Tests

INVARIANT: Value is neither created nor destroyed.

    ∀ operation sequences S (without emergency sweep):
        Σ token balances over all wallets = 0
        escrow(market) = pool_a + pool_b - total_claimed
        escrow(market) ≥ 0

    ∀ resolved markets:
        fee + Σ payouts ≤ Σ stakes
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from wager import FEE_RATE

from tests.conformance.market_ops import (
    ADMIN, PARTICIPANTS, TOKEN, BALANCE, new_market, apply, operations,
    operations_with_sweeps,
)


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(st.lists(operations, max_size=30))
    @settings(max_examples=60, deadline=None)
    def test_escrow_matches_accounting(self, ops):
        """
        PROPERTY: After any sequence of market operations, the escrow
        equals the pools minus what was claimed.
        """
        ledger, registry, market = new_market()
        for op in ops:
            apply(registry, market, op)
            check = market.verify_conservation()
            assert check['valid'], (op, check)
            assert check['actual'] >= 0
        assert ledger.verify_double_entry({TOKEN: Decimal("0")})['valid']

    @given(st.lists(operations_with_sweeps, max_size=30))
    @settings(max_examples=60, deadline=None)
    def test_token_conserved_with_sweeps(self, ops):
        """
        PROPERTY: Emergency sweeps move value, they never create it.
        """
        ledger, registry, market = new_market()
        for op in ops:
            apply(registry, market, op)
        held = sum(
            (ledger.get_balance(w, TOKEN) for w in PARTICIPANTS + (ADMIN, market.wallet)),
            Decimal("0"),
        )
        assert held == BALANCE * len(PARTICIPANTS)
        state = market.state
        assert market.escrow_balance() == (
            state['pool_a'] + state['pool_b'] - state['total_claimed'] - state['swept']
        )

    @given(st.lists(operations, max_size=30), st.sampled_from([1, 2]))
    @settings(max_examples=60, deadline=None)
    def test_fee_plus_payouts_bounded_by_stakes(self, ops, winner):
        """
        PROPERTY: Once every winner has claimed, fee + payouts never exceed
        the total staked and the remainder is at most rounding dust, unless
        nobody backed the winning side.
        """
        ledger, registry, market = new_market()
        for op in ops:
            apply(registry, market, op)
        if market.winner is None:
            market.declare_result(ADMIN, winner)
        for p in PARTICIPANTS:
            apply(registry, market, ("claim", p))

        state = market.state
        winning = state['pool_a'] if state['outcome'] == 1 else state['pool_b']
        paid_out = state['fee_collected'] + state['total_claimed']
        total_in = sum(
            (BALANCE - ledger.get_balance(p, TOKEN) for p in PARTICIPANTS), Decimal("0")
        ) + state['total_claimed']

        assert paid_out <= total_in
        if winning > 0:
            assert market.escrow_balance() < Decimal("1e-14")
        else:
            assert market.escrow_balance() == state['pool_a'] + state['pool_b']


class TestConservationExamples:
    """Explicit conservation examples."""

    def test_fee_is_quarter_of_losers(self):
        ledger, registry, market = new_market()
        market.bet("p0", 1, Decimal("10"))
        market.bet("p1", 2, Decimal("6"))
        market.bet("p2", 2, Decimal("2"))
        assert market.declare_result(ADMIN, 1) == Decimal("8") * FEE_RATE
        assert market.verify_conservation()['valid']
