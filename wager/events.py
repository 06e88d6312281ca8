"""
events.py - Observable market events

Events are plain immutable records appended to an EventLog after the
ledger transaction that caused them has been applied. A failed operation
never emits. Subscribers are plain functions keyed by event type name.

The ledger's transaction log remains the audit trail of balances and
state; the event log is the stable, indexer-facing view of what happened.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Optional, Type, TypeVar, Union


# ============================================================================
# EVENT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketCreated:
    market_id: int
    market: str


@dataclass(frozen=True, slots=True)
class BetPlaced:
    participant: str
    side: int
    amount: Decimal


@dataclass(frozen=True, slots=True)
class ResultDeclared:
    winning_side: int


@dataclass(frozen=True, slots=True)
class RewardClaimed:
    participant: str
    payout: Decimal


@dataclass(frozen=True, slots=True)
class Paused:
    administrator: str


@dataclass(frozen=True, slots=True)
class Unpaused:
    administrator: str


@dataclass(frozen=True, slots=True)
class EmergencyWithdrawal:
    market: str
    recipient: str
    amount: Decimal


MarketEvent = Union[
    MarketCreated, BetPlaced, ResultDeclared, RewardClaimed,
    Paused, Unpaused, EmergencyWithdrawal,
]

E = TypeVar("E")

# Handler type: (event) -> None
EventHandler = Callable[[MarketEvent], None]


# ============================================================================
# EVENT LOG
# ============================================================================

class EventLog:
    """
    Append-only list of emitted events with per-type subscribers.

    Example:
        log = EventLog()
        log.subscribe("BetPlaced", lambda e: print(e.amount))
        log.emit(BetPlaced("alice", 1, Decimal("5")))
        assert log.of_type(BetPlaced)[0].participant == "alice"
    """

    def __init__(self):
        self._events: List[MarketEvent] = []
        self._handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type name ("*" for every event)."""
        self._handlers.setdefault(event_type, []).append(handler)

    def emit(self, event: MarketEvent) -> None:
        self._events.append(event)
        name = type(event).__name__
        for handler in self._handlers.get(name, []) + self._handlers.get("*", []):
            handler(event)

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def last(self) -> Optional[MarketEvent]:
        return self._events[-1] if self._events else None

    def __iter__(self) -> Iterator[MarketEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
