"""
market.py - Stateful handle for one wager market

Market wraps a market unit registered in a Ledger. Each public operation:
    1. takes the market's lock (other threads wait; a nested call from the
       same thread fails with ReentrantCall)
    2. reads state and builds one PendingTransaction via units.market
    3. commits it with Ledger.commit(), which applies moves and state
       together or raises TransferFailed with nothing changed
    4. releases the lock, then emits the operation's event

Caller identity is an explicit argument of every operation.
"""

from __future__ import annotations
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, Optional
import threading

from .core import PendingTransaction, Transaction, ReentrantCall, UnitState
from .events import (
    BetPlaced, EmergencyWithdrawal, EventLog, Paused, ResultDeclared,
    RewardClaimed, Unpaused,
)
from .ledger import Ledger
from .units.market import (
    MarketStatus,
    compute_bet,
    compute_claim_reward,
    compute_declare_result,
    compute_emergency_withdraw,
    compute_pause,
    compute_unpause,
    get_bet,
    get_market_status,
    verify_market_conservation,
)


class Market:
    """
    One two-sided pari-mutuel market.

    Example:
        market = registry.get_market(market_id)
        market.bet("alice", SIDE_A, Decimal("5"))
        market.bet("bob", SIDE_B, Decimal("5"))
        market.declare_result("admin", SIDE_A)
        market.claim_reward("alice")   # Decimal("8.75")
    """

    def __init__(self, ledger: Ledger, symbol: str, events: Optional[EventLog] = None):
        """
        Args:
            ledger: Ledger holding the market unit and its escrow wallet
            symbol: Symbol of the market unit
            events: Event log to emit into (a private one if omitted)
        """
        ledger.get_unit(symbol)  # raises UnitNotRegistered
        self.ledger = ledger
        self.symbol = symbol
        self.events = events if events is not None else EventLog()
        self._lock = threading.RLock()
        self._busy = False

    # ========================================================================
    # READ SURFACE
    # ========================================================================

    @property
    def state(self) -> UnitState:
        return self.ledger.get_unit_state(self.symbol)

    @property
    def market_id(self) -> int:
        return self.state['market_id']

    @property
    def wallet(self) -> str:
        return self.state['wallet']

    @property
    def token(self) -> str:
        return self.state['token']

    @property
    def administrator(self) -> str:
        return self.state['administrator']

    @property
    def treasury(self) -> str:
        return self.state['treasury']

    @property
    def registry(self) -> str:
        return self.state['registry']

    @property
    def pool_a(self) -> Decimal:
        return self.state['pool_a']

    @property
    def pool_b(self) -> Decimal:
        return self.state['pool_b']

    @property
    def winner(self) -> Optional[int]:
        return self.state['outcome']

    @property
    def paused(self) -> bool:
        return self.state['paused']

    @property
    def status(self) -> MarketStatus:
        return get_market_status(self.ledger, self.symbol)

    def get_bet(self, participant: str) -> Dict[str, Any]:
        return get_bet(self.ledger, self.symbol, participant)

    def escrow_balance(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.token)

    def verify_conservation(self) -> Dict[str, Any]:
        return verify_market_conservation(self.ledger, self.symbol)

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._lock:
            if self._busy:
                raise ReentrantCall(f"ReentrancyGuard: reentrant call on {self.symbol}")
            self._busy = True
            try:
                yield
            finally:
                self._busy = False

    def _apply(self, build: Callable[[], PendingTransaction]) -> Transaction:
        with self._exclusive():
            return self.ledger.commit(build())

    def bet(self, caller: str, side: int, amount: Decimal) -> Decimal:
        """
        Escrow caller's single stake on side. Returns the amount escrowed.

        The caller must have approved the market wallet for at least amount.
        """
        tx = self._apply(lambda: compute_bet(self.ledger, self.symbol, caller, side, amount))
        staked = tx.moves[0].quantity
        self.events.emit(BetPlaced(caller, int(side), staked))
        return staked

    def declare_result(self, caller: str, winning_side: int) -> Decimal:
        """Resolve the market for winning_side. Returns the fee sent to the treasury."""
        tx = self._apply(
            lambda: compute_declare_result(self.ledger, self.symbol, caller, winning_side)
        )
        self.events.emit(ResultDeclared(int(winning_side)))
        return sum((m.quantity for m in tx.moves), Decimal("0"))

    def claim_reward(self, caller: str) -> Decimal:
        """Pay out caller's stake plus reward. Returns the payout."""
        tx = self._apply(lambda: compute_claim_reward(self.ledger, self.symbol, caller))
        payout = tx.moves[0].quantity
        self.events.emit(RewardClaimed(caller, payout))
        return payout

    def pause(self, caller: str) -> None:
        self._apply(lambda: compute_pause(self.ledger, self.symbol, caller))
        self.events.emit(Paused(caller))

    def unpause(self, caller: str) -> None:
        self._apply(lambda: compute_unpause(self.ledger, self.symbol, caller))
        self.events.emit(Unpaused(caller))

    def emergency_withdraw(self, caller: str) -> Decimal:
        """
        Sweep the whole escrow to the administrator. Registry identity only.

        Returns the amount swept (zero if the escrow was empty).
        """
        tx = self._apply(
            lambda: compute_emergency_withdraw(self.ledger, self.symbol, caller)
        )
        swept = sum((m.quantity for m in tx.moves), Decimal("0"))
        self.events.emit(EmergencyWithdrawal(self.wallet, self.administrator, swept))
        return swept

    def __repr__(self) -> str:
        return f"Market({self.symbol}, {self.status.value})"
