"""
test_core_types.py - Unit tests for core data structures

Tests:
- Move: creation, validation, immutability
- Transaction: creation, validation, repr
- UnitStateChange: changed_fields
- Unit: rounding, token factory
- Intent ids: determinism and sensitivity
- Error taxonomy
"""

import pytest
from datetime import datetime
from decimal import Decimal
from dataclasses import FrozenInstanceError

from wager import (
    Move, Transaction, Unit, UnitStateChange, PendingTransaction,
    TransactionOrigin, OriginType, token, SYSTEM_WALLET, UNIT_TYPE_TOKEN,
    LedgerError, MarketError, AccessDenied, InvalidInput, InvalidSide,
    InvalidAmount, StateConflict, AlreadyBet, AlreadyResolved, ReentrantCall,
    Unavailable, BettingClosed, PreconditionFailed, NotResolved, WrongSide,
    NoStake, TransferFailed, NotFound, CapacityExceeded,
)


def _test_origin() -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id="test",
    )


class TestMoveCreation:
    """Tests for Move creation and validation."""

    def test_create_valid_move(self):
        move = Move(Decimal("100"), "USDX", "alice", "bob", "tx_001")
        assert move.source == "alice"
        assert move.dest == "bob"
        assert move.unit_symbol == "USDX"
        assert move.quantity == Decimal("100")
        assert move.metadata is None

    def test_move_smallest_token_quantity(self):
        move = Move(Decimal("1e-18"), "USDX", "alice", "bob", "tx_001")
        assert move.quantity == Decimal("1e-18")

    @pytest.mark.parametrize("quantity", [
        Decimal("0"), Decimal("-1"), Decimal("NaN"), Decimal("Infinity"),
    ])
    def test_move_rejects_non_positive_or_non_finite(self, quantity):
        with pytest.raises(ValueError):
            Move(quantity, "USDX", "alice", "bob", "tx_001")

    def test_move_requires_decimal(self):
        with pytest.raises(ValueError, match="Decimal"):
            Move(100.0, "USDX", "alice", "bob", "tx_001")

    def test_move_same_source_dest_raises(self):
        with pytest.raises(ValueError, match="different"):
            Move(Decimal("1"), "USDX", "alice", "alice", "tx_001")

    def test_move_empty_contract_id_raises(self):
        with pytest.raises(ValueError, match="contract_id"):
            Move(Decimal("1"), "USDX", "alice", "bob", " ")

    def test_move_is_frozen(self):
        move = Move(Decimal("1"), "USDX", "alice", "bob", "tx_001")
        with pytest.raises(FrozenInstanceError):
            move.quantity = Decimal("2")

    def test_move_repr(self):
        move = Move(Decimal("5"), "USDX", "alice", "bob", "tx_001")
        assert repr(move) == "Move(5 USDX: alice→bob)"


class TestTransaction:
    """Tests for executed Transaction records."""

    def _tx(self, **overrides):
        fields = dict(
            moves=(Move(Decimal("1"), "USDX", "alice", "bob", "tx_001"),),
            state_changes=(),
            origin=_test_origin(),
            timestamp=datetime(2025, 1, 1),
            intent_id="abc",
            exec_id="exec:test:000000000000:0",
            ledger_name="test",
            execution_time=datetime(2025, 1, 1),
            sequence_number=0,
        )
        fields.update(overrides)
        return Transaction(**fields)

    def test_contract_ids_populated(self):
        tx = self._tx()
        assert tx.contract_ids == frozenset({"tx_001"})

    def test_empty_transaction_raises(self):
        with pytest.raises(ValueError):
            self._tx(moves=())

    def test_state_only_transaction(self):
        sc = UnitStateChange("M0", {'paused': False}, {'paused': True})
        tx = self._tx(moves=(), state_changes=(sc,))
        assert tx.contract_ids == frozenset()

    def test_repr_lists_changed_fields_but_not_bets(self):
        sc = UnitStateChange(
            "M0",
            {'pool_a': Decimal("0"), 'bets': {}},
            {'pool_a': Decimal("5"), 'bets': {'alice': {'amount': Decimal("5"), 'side': 1}}},
        )
        text = repr(self._tx(state_changes=(sc,)))
        assert "pool_a" in text
        assert "bets:" not in text


class TestUnitStateChange:

    def test_changed_fields(self):
        sc = UnitStateChange(
            "M0",
            {'paused': False, 'nonce': 1, 'outcome': None},
            {'paused': True, 'nonce': 2, 'outcome': None},
        )
        assert sc.changed_fields() == {'paused': (False, True), 'nonce': (1, 2)}


class TestTokenUnit:
    """Tests for the token factory and unit rounding."""

    def test_token_defaults(self):
        unit = token("USDX", "Test Dollar")
        assert unit.unit_type == UNIT_TYPE_TOKEN
        assert unit.decimal_places == 18
        assert unit.min_balance == Decimal("0")
        assert unit.state == {'issuer': SYSTEM_WALLET}

    def test_token_quantum(self):
        assert token("USDC", "USD Coin", decimal_places=6).quantum == Decimal("0.000001")

    def test_token_rounds_down(self):
        unit = token("USDC", "USD Coin", decimal_places=2)
        assert unit.round(Decimal("1.239")) == Decimal("1.23")
        assert unit.round(Decimal("-1.239")) == Decimal("-1.23")

    def test_negative_decimal_places_raises(self):
        with pytest.raises(ValueError):
            token("BAD", "Bad", decimal_places=-1)

    def test_unit_without_precision_does_not_round(self):
        unit = Unit("X", "Unbounded", "OTHER")
        assert unit.quantum is None
        assert unit.round(Decimal("1.23456789")) == Decimal("1.23456789")

    def test_state_is_a_copy(self):
        unit = token("USDX", "Test Dollar")
        state = unit.state
        state['issuer'] = "mallory"
        assert unit.state['issuer'] == SYSTEM_WALLET


class TestIntentIds:
    """Intent ids are content hashes: equal content, equal id."""

    def _pending(self, quantity="1", contract_id="c1", state=None):
        changes = ()
        if state is not None:
            changes = (UnitStateChange("M0", {'nonce': 0}, state),)
        return PendingTransaction(
            moves=(Move(Decimal(quantity), "USDX", "alice", "bob", contract_id),),
            state_changes=changes,
            origin=_test_origin(),
            timestamp=datetime(2025, 1, 1),
        )

    def test_same_content_same_id(self):
        assert self._pending().intent_id == self._pending().intent_id

    def test_decimal_representation_ignored(self):
        assert self._pending("1").intent_id == self._pending("1.000").intent_id

    def test_quantity_changes_id(self):
        assert self._pending("1").intent_id != self._pending("2").intent_id

    def test_state_changes_id(self):
        a = self._pending(state={'nonce': 1})
        b = self._pending(state={'nonce': 2})
        assert a.intent_id != b.intent_id

    def test_dict_order_ignored(self):
        a = self._pending(state={'nonce': 1, 'paused': True})
        b = self._pending(state={'paused': True, 'nonce': 1})
        assert a.intent_id == b.intent_id


class TestErrorTaxonomy:
    """Every market failure is a MarketError and a LedgerError."""

    @pytest.mark.parametrize("error, parent", [
        (AccessDenied, MarketError),
        (InvalidSide, InvalidInput),
        (InvalidAmount, InvalidInput),
        (AlreadyBet, StateConflict),
        (AlreadyResolved, StateConflict),
        (ReentrantCall, StateConflict),
        (BettingClosed, Unavailable),
        (NotResolved, PreconditionFailed),
        (WrongSide, PreconditionFailed),
        (NoStake, PreconditionFailed),
        (TransferFailed, MarketError),
        (NotFound, MarketError),
        (CapacityExceeded, MarketError),
        (MarketError, LedgerError),
    ])
    def test_hierarchy(self, error, parent):
        assert issubclass(error, parent)

    def test_message_preserved(self):
        assert str(AlreadyBet("User already bet")) == "User already bet"
