"""
Canonicalization Conformance Tests

INVARIANT: Semantically equal market intents hash identically.

    ∀ v1, v2: v1 == v2 ⟹ canonicalize(v1) == canonicalize(v2)

Market states carry Decimal pools and a bets dict keyed by participant.
Neither the Decimal exponent nor the order participants were inserted
into the bets dict may change a transaction's intent_id.
"""

from datetime import datetime
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from wager import Ledger, Move, build_transaction, token, compute_bet
from wager.core import _canonicalize, _normalize_decimal

from tests.conftest import market_view


# =============================================================================
# STRATEGIES
# =============================================================================

stakes = st.decimals(
    min_value=Decimal("0.000001"),
    max_value=Decimal("1000000"),
    places=6,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def rescaled_stakes(draw):
    """A stake and the same value carried at 18 decimal places."""
    base = draw(stakes)
    return base, base.quantize(Decimal("1e-18"))


@st.composite
def shuffled_bets(draw):
    """Two bets dicts with equal content and different insertion order."""
    participants = draw(st.lists(
        st.text(alphabet="abcdefgh", min_size=1, max_size=6),
        min_size=1,
        max_size=8,
        unique=True,
    ))
    entries = [
        (p, {'amount': draw(stakes), 'side': draw(st.sampled_from([1, 2]))})
        for p in participants
    ]
    return dict(entries), dict(reversed(entries))


# =============================================================================
# DECIMAL NORMALIZATION
# =============================================================================

class TestDecimalNormalization:

    @given(rescaled_stakes())
    @settings(max_examples=200)
    def test_equal_stakes_normalize_identically(self, pair):
        d1, d2 = pair
        assert d1 == d2
        assert _normalize_decimal(d1) == _normalize_decimal(d2)

    def test_trailing_zeros_removed(self):
        assert _normalize_decimal(Decimal("8.750")) == "8.75"
        assert _normalize_decimal(Decimal("5.000000000000000000")) == "5"
        assert _normalize_decimal(Decimal("0E-18")) == "0"

    def test_token_quantum_without_exponent(self):
        result = _normalize_decimal(Decimal("1e-18"))
        assert result == "0.000000000000000001"


# =============================================================================
# CANONICALIZE
# =============================================================================

class TestCanonicalize:

    @given(shuffled_bets())
    @settings(max_examples=200)
    def test_bets_insertion_order_ignored(self, pair):
        b1, b2 = pair
        assert _canonicalize(b1) == _canonicalize(b2)

    def test_market_state_normalized(self):
        s1 = {'pool_a': Decimal("5"), 'pool_b': Decimal("3.75"), 'outcome': 1}
        s2 = {'outcome': 1, 'pool_b': Decimal("3.750"), 'pool_a': Decimal("5.0")}
        assert _canonicalize(s1) == _canonicalize(s2)

    def test_type_distinctions_preserved(self):
        assert _canonicalize(1) != _canonicalize("1")
        assert _canonicalize(True) != _canonicalize(1)
        assert _canonicalize(None) != _canonicalize(False)
        assert _canonicalize(Decimal("1")) != _canonicalize(1)

    def test_list_order_significant(self):
        assert _canonicalize([1, 2]) != _canonicalize([2, 1])

    def test_sets_sorted(self):
        assert _canonicalize({"b", "a"}) == _canonicalize({"a", "b"})


# =============================================================================
# INTENT IDS
# =============================================================================

class TestIntentIds:

    def _ledger(self):
        ledger = Ledger("canon", datetime(2025, 1, 1), verbose=False)
        ledger.register_unit(token("USDX", "Test Dollar"))
        for w in ("alice", "bob", "carol"):
            ledger.register_wallet(w)
        return ledger

    def test_move_representation_ignored(self):
        ledger = self._ledger()
        tx1 = build_transaction(ledger, [Move(Decimal("5.0"), "USDX", "alice", "bob", "bet")])
        tx2 = build_transaction(ledger, [Move(Decimal("5.000"), "USDX", "alice", "bob", "bet")])
        assert tx1.intent_id == tx2.intent_id

    def test_move_order_ignored(self):
        ledger = self._ledger()
        a = Move(Decimal("1"), "USDX", "alice", "bob", "x")
        b = Move(Decimal("2"), "USDX", "alice", "carol", "y")
        assert build_transaction(ledger, [a, b]).intent_id == build_transaction(ledger, [b, a]).intent_id

    def test_independent_of_ledger_instance(self):
        m = Move(Decimal("5"), "USDX", "alice", "bob", "bet")
        assert (build_transaction(self._ledger(), [m]).intent_id
                == build_transaction(self._ledger(), [m]).intent_id)

    @given(shuffled_bets(), stakes)
    @settings(max_examples=50)
    def test_bet_intent_ignores_bets_order(self, pair, amount):
        b1, b2 = pair
        pool_a = sum((b['amount'] for b in b1.values() if b['side'] == 1), Decimal("0"))
        pool_b = sum((b['amount'] for b in b1.values() if b['side'] == 2), Decimal("0"))

        def view(bets):
            return market_view({'bets': bets, 'pool_a': pool_a, 'pool_b': pool_b})

        tx1 = compute_bet(view(b1), "M0", "zed", 1, amount)
        tx2 = compute_bet(view(b2), "M0", "zed", 1, amount)
        assert tx1.intent_id == tx2.intent_id

    def test_nonce_separates_identical_bets(self):
        first = compute_bet(market_view({'nonce': 0}), "M0", "alice", 1, Decimal("5"))
        second = compute_bet(market_view({'nonce': 1}), "M0", "alice", 1, Decimal("5"))
        assert first.moves == second.moves
        assert first.intent_id != second.intent_id
