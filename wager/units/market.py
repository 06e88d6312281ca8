"""
market.py - Two-sided pari-mutuel Market unit

This module provides market unit creation and the settlement state machine:
1. create_market_unit() - Factory for a market unit bound to one token
2. compute_bet() - Escrow a participant's stake on one side
3. compute_declare_result() - One-shot resolution, fee to treasury
4. compute_claim_reward() - Stake plus pro-rata share of the losing pool
5. compute_pause() / compute_unpause() - Administrator betting switch
6. compute_emergency_withdraw() - Registry-only sweep of the escrow

The market's mutable data lives in the unit state:
    pool_a, pool_b: escrowed stake per side (losing side fee-deducted once resolved)
    bets: {participant: {'amount': Decimal, 'side': int}}
    outcome: None, SIDE_A or SIDE_B
    paused: bool
    fee_collected, total_claimed, swept: running totals for reconciliation
    nonce: bumped by every committed operation

States:
    OPEN ⇄ PAUSED (pause/unpause), OPEN|PAUSED → RESOLVED (declare_result).
    RESOLVED is terminal. Pausing only gates betting.

Every builder reads the unit state, validates, and returns one
PendingTransaction holding both the escrow moves and the state change, so
the ledger applies them together or not at all. Builders raise MarketError
subclasses for caller errors and never touch the ledger themselves.

All functions take LedgerView (read-only) and return immutable results.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List
import copy

from ..access import AccessGate
from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, UnitState,
    SYSTEM_WALLET, UNIT_TYPE_MARKET, VALID_SIDES, MAX_POOL,
    AlreadyBet, AlreadyResolved, BettingClosed, InvalidAmount, InvalidInput,
    InvalidSide, NoStake, NotResolved, Unavailable, WrongSide,
    build_transaction, _freeze_state,
)
from ..settlement import compute_fee, compute_payout, other_side, pool_key


INVALID_SIDE_MESSAGE = "Invalid team"
ALREADY_BET_MESSAGE = "User already bet"
PAUSED_MESSAGE = "Pausable: paused"
NOT_PAUSED_MESSAGE = "Pausable: not paused"
DECIDED_MESSAGE = "Match already decided"
ALREADY_DECLARED_MESSAGE = "Result already declared"
NOT_DECIDED_MESSAGE = "Match not decided"
WRONG_SIDE_MESSAGE = "Incorrect team"
NO_STAKE_MESSAGE = "No bet placed or reward already claimed"
INVALID_AMOUNT_MESSAGE = "Invalid amount"


class MarketStatus(Enum):
    OPEN = "open"
    PAUSED = "paused"
    RESOLVED = "resolved"


def create_market_unit(
    symbol: str,
    market_id: int,
    wallet: str,
    token_symbol: str,
    administrator: str,
    registry: str,
) -> Unit:
    """
    Create a market unit.

    The unit itself is never held by any wallet (min and max balance are
    zero); it exists to carry the market's state under the ledger's
    atomic execution.

    Args:
        symbol: Unique unit symbol for the market
        market_id: Sequential id assigned by the registry
        wallet: Ledger wallet that escrows the market's stakes
        token_symbol: Token unit the market escrows
        administrator: Identity allowed to pause, unpause and declare; also the treasury
        registry: Identity of the creating registry (emergency withdrawal only)

    Returns:
        Unit with an OPEN, empty market state.
    """
    if market_id < 0:
        raise ValueError(f"market_id must be non-negative, got {market_id}")
    for name, value in (('wallet', wallet), ('token_symbol', token_symbol)):
        if not value or not value.strip():
            raise ValueError(f"{name} cannot be empty")
    gate = AccessGate(administrator, registry)

    return Unit(
        symbol=symbol,
        name=f"Market #{market_id} ({token_symbol})",
        unit_type=UNIT_TYPE_MARKET,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'market_id': market_id,
            'wallet': wallet,
            'token': token_symbol,
            'administrator': gate.administrator,
            'treasury': gate.administrator,
            'registry': gate.registry,
            'pool_a': Decimal("0"),
            'pool_b': Decimal("0"),
            'outcome': None,
            'paused': False,
            'bets': {},
            'fee_collected': Decimal("0"),
            'total_claimed': Decimal("0"),
            'swept': Decimal("0"),
            'nonce': 0,
        }),
    )


# ============================================================================
# READ HELPERS
# ============================================================================

def access_gate(state: UnitState) -> AccessGate:
    return AccessGate(state['administrator'], state['registry'])


def get_market_status(view: LedgerView, symbol: str) -> MarketStatus:
    state = view.get_unit_state(symbol)
    if state['outcome'] is not None:
        return MarketStatus.RESOLVED
    if state['paused']:
        return MarketStatus.PAUSED
    return MarketStatus.OPEN


def get_bet(view: LedgerView, symbol: str, participant: str) -> Dict[str, Any]:
    """
    Return the participant's bet record.

    A participant who never bet gets {'amount': 0, 'side': None}; a
    participant who already claimed keeps their side with amount 0.
    """
    bet = view.get_unit_state(symbol)['bets'].get(participant)
    if bet is None:
        return {'amount': Decimal("0"), 'side': None}
    return dict(bet)


def expected_escrow(state: UnitState) -> Decimal:
    """Balance the market wallet should hold if no emergency sweep happened."""
    return state['pool_a'] + state['pool_b'] - state['total_claimed']


def verify_market_conservation(view: LedgerView, symbol: str) -> Dict[str, Any]:
    """
    Compare the market wallet's token balance with its accounting.

    Returns:
        Dict with 'valid', 'expected', 'actual' and 'swept'. An emergency
        sweep leaves the market invalid.
    """
    state = view.get_unit_state(symbol)
    expected = expected_escrow(state)
    actual = view.get_balance(state['wallet'], state['token'])
    return {
        'valid': actual == expected,
        'expected': expected,
        'actual': actual,
        'swept': state['swept'],
    }


# ============================================================================
# VALIDATION
# ============================================================================

def _require_side(side: Any) -> int:
    # bool is an int subclass; True must not pass as SIDE_A
    if isinstance(side, bool) or side not in VALID_SIDES:
        raise InvalidSide(INVALID_SIDE_MESSAGE)
    return int(side)


def _require_amount(view: LedgerView, state: UnitState, side: int, amount: Any) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"{INVALID_AMOUNT_MESSAGE}: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"{INVALID_AMOUNT_MESSAGE}: {amount!r}")
    # Capacity first: quantizing an oversized value overflows the context
    if state[pool_key(side)] + value > MAX_POOL:
        raise InvalidAmount(f"{INVALID_AMOUNT_MESSAGE}: pool would exceed {MAX_POOL}")
    token_unit = view.get_unit(state['token'])
    if token_unit.round(value) != value:
        raise InvalidAmount(
            f"{INVALID_AMOUNT_MESSAGE}: {value} finer than {token_unit.quantum}"
        )
    return value


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def _commit(
    view: LedgerView,
    symbol: str,
    state: UnitState,
    new_state: UnitState,
    moves: List[Move],
    event_type: str,
) -> PendingTransaction:
    new_state['nonce'] = state['nonce'] + 1
    origin = TransactionOrigin(
        origin_type=OriginType.CONTRACT,
        source_id=state['wallet'],
        unit_symbol=symbol,
        event_type=event_type,
    )
    changes = [UnitStateChange(unit=symbol, old_state=state, new_state=new_state)]
    return build_transaction(view, moves, changes, origin=origin)


def compute_bet(
    view: LedgerView,
    symbol: str,
    participant: str,
    side: int,
    amount: Decimal,
) -> PendingTransaction:
    """
    Escrow a participant's single stake.

    Checks run in this order: paused, resolved, side, existing stake, amount.

    Returns:
        PendingTransaction containing:
        - Move of amount from participant to the market wallet (spends the
          participant's allowance to the market)
        - State update adding amount to the side's pool and recording the bet

    Raises:
        BettingClosed: market paused or already resolved
        InvalidSide: side not SIDE_A/SIDE_B
        AlreadyBet: participant holds a live stake
        InvalidInput: participant is the market wallet or the issuer wallet
        InvalidAmount: amount not positive, too precise or over pool capacity
    """
    state = view.get_unit_state(symbol)
    if state['paused']:
        raise BettingClosed(PAUSED_MESSAGE)
    if state['outcome'] is not None:
        raise BettingClosed(DECIDED_MESSAGE)
    side = _require_side(side)

    existing = state['bets'].get(participant)
    if existing is not None and existing['amount'] > 0:
        raise AlreadyBet(ALREADY_BET_MESSAGE)
    if participant == state['wallet']:
        raise InvalidInput("market cannot bet against itself")
    if participant == SYSTEM_WALLET:
        raise InvalidInput("issuer wallet cannot bet")
    value = _require_amount(view, state, side, amount)

    new_state = copy.deepcopy(state)
    key = pool_key(side)
    new_state[key] = state[key] + value
    new_state['bets'][participant] = {'amount': value, 'side': side}

    moves = [Move(
        quantity=value,
        unit_symbol=state['token'],
        source=participant,
        dest=state['wallet'],
        contract_id=f'bet_{symbol}_{participant}',
    )]
    return _commit(view, symbol, state, new_state, moves, "BET")


def compute_declare_result(
    view: LedgerView,
    symbol: str,
    caller: str,
    winning_side: int,
) -> PendingTransaction:
    """
    Resolve the market. One-shot and terminal; allowed while paused.

    fee = loser_pool * FEE_RATE (truncated to token precision) leaves the
    losing pool and goes to the treasury in the same transaction. The
    winning pool is untouched.

    Raises:
        AccessDenied: caller is not the administrator
        InvalidSide: winning_side not SIDE_A/SIDE_B
        AlreadyResolved: outcome already declared
    """
    state = view.get_unit_state(symbol)
    access_gate(state).require_administrator(caller)
    winning_side = _require_side(winning_side)
    if state['outcome'] is not None:
        raise AlreadyResolved(ALREADY_DECLARED_MESSAGE)

    loser_key = pool_key(other_side(winning_side))
    loser_pool = state[loser_key]
    fee = compute_fee(loser_pool, view.get_unit(state['token']).quantum)

    new_state = copy.deepcopy(state)
    new_state[loser_key] = loser_pool - fee
    new_state['outcome'] = winning_side
    new_state['fee_collected'] = fee

    moves = []
    if fee > 0:
        moves.append(Move(
            quantity=fee,
            unit_symbol=state['token'],
            source=state['wallet'],
            dest=state['treasury'],
            contract_id=f'fee_{symbol}',
        ))
    return _commit(view, symbol, state, new_state, moves, "RESOLVE")


def compute_claim_reward(
    view: LedgerView,
    symbol: str,
    participant: str,
) -> PendingTransaction:
    """
    Pay a winner their stake plus a pro-rata share of the losing pool.

    Pools are not reduced by claims, so every winner's share is computed
    against the pools as they stood right after resolution regardless of
    claim order.

    Returns:
        PendingTransaction containing:
        - Move of the payout from the market wallet to the participant
        - State update zeroing the participant's amount and adding the
          payout to total_claimed

    Raises:
        NotResolved: outcome not declared yet
        WrongSide: participant's side is not the winning side (or never bet)
        NoStake: no live stake (never bet on this side, or already claimed)
    """
    state = view.get_unit_state(symbol)
    outcome = state['outcome']
    if outcome is None:
        raise NotResolved(NOT_DECIDED_MESSAGE)

    bet = state['bets'].get(participant)
    if bet is None or bet['side'] != outcome:
        raise WrongSide(WRONG_SIDE_MESSAGE)
    stake = bet['amount']
    if stake <= 0:
        raise NoStake(NO_STAKE_MESSAGE)

    payout = compute_payout(
        stake,
        winning_pool=state[pool_key(outcome)],
        losing_pool=state[pool_key(other_side(outcome))],
        quantum=view.get_unit(state['token']).quantum,
    )

    new_state = copy.deepcopy(state)
    new_state['bets'][participant]['amount'] = Decimal("0")
    new_state['total_claimed'] = state['total_claimed'] + payout

    moves = [Move(
        quantity=payout,
        unit_symbol=state['token'],
        source=state['wallet'],
        dest=participant,
        contract_id=f'claim_{symbol}_{participant}',
    )]
    return _commit(view, symbol, state, new_state, moves, "CLAIM")


def compute_pause(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """Stop accepting bets. Raises AccessDenied or Unavailable (already paused)."""
    state = view.get_unit_state(symbol)
    access_gate(state).require_administrator(caller)
    if state['paused']:
        raise Unavailable(PAUSED_MESSAGE)
    new_state = {**copy.deepcopy(state), 'paused': True}
    return _commit(view, symbol, state, new_state, [], "PAUSE")


def compute_unpause(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """Accept bets again. Raises AccessDenied or Unavailable (not paused)."""
    state = view.get_unit_state(symbol)
    access_gate(state).require_administrator(caller)
    if not state['paused']:
        raise Unavailable(NOT_PAUSED_MESSAGE)
    new_state = {**copy.deepcopy(state), 'paused': False}
    return _commit(view, symbol, state, new_state, [], "UNPAUSE")


def compute_emergency_withdraw(
    view: LedgerView,
    symbol: str,
    caller: str,
) -> PendingTransaction:
    """
    Sweep the market wallet's whole token balance to the administrator.

    Bypasses pool and bet accounting: pools, bets and outcome are left as
    they are and only 'swept' records what left. Callable by the registry
    identity only.

    Raises:
        AccessDenied: caller is not the bound registry
    """
    state = view.get_unit_state(symbol)
    access_gate(state).require_registry(caller)
    balance = view.get_balance(state['wallet'], state['token'])

    new_state = copy.deepcopy(state)
    new_state['swept'] = state['swept'] + balance

    moves = []
    if balance > 0:
        moves.append(Move(
            quantity=balance,
            unit_symbol=state['token'],
            source=state['wallet'],
            dest=state['administrator'],
            contract_id=f'emergency_{symbol}',
        ))
    return _commit(view, symbol, state, new_state, moves, "EMERGENCY_WITHDRAW")
