"""
registry.py - Creates markets and forwards emergency recovery

MarketRegistry assigns sequential market ids starting at 0, creates each
market's escrow wallet and market unit in the ledger, and keeps the
append-only id -> market mapping. Its own identity (name) is the only
caller a market accepts for emergency withdrawal.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Iterator, Optional
import threading

from .access import AccessGate
from .core import (
    OriginType, TransactionOrigin, SYSTEM_WALLET, MAX_MARKETS,
    CapacityExceeded, NotFound, StateConflict,
    build_transaction,
)
from .events import EventLog, MarketCreated
from .ledger import Ledger
from .market import Market
from .units.market import create_market_unit


MARKET_LIMIT_MESSAGE = "Market limit reached"
MARKET_NOT_FOUND_MESSAGE = "Market not found"


class MarketRegistry:
    """
    Factory and directory of markets on one ledger.

    Example:
        registry = MarketRegistry(ledger, "admin")
        market_id = registry.create_market("admin", "USDX")
        market = registry.get_market(market_id)
    """

    def __init__(
        self,
        ledger: Ledger,
        administrator: str,
        name: str = "registry",
        max_markets: int = MAX_MARKETS,
        events: Optional[EventLog] = None,
    ):
        """
        Args:
            ledger: Ledger that escrows every market's stakes
            administrator: Identity allowed to create markets and trigger
                emergency withdrawal; becomes each market's administrator
                and treasury (registered as a wallet if missing)
            name: Registry identity, also the prefix of market wallets
            max_markets: Capacity; ids run from 0 to max_markets - 1
            events: Event log shared with every created market
        """
        if not 0 < max_markets <= MAX_MARKETS:
            raise ValueError(f"max_markets must be in 1..{MAX_MARKETS}, got {max_markets}")
        self.ledger = ledger
        self.gate = AccessGate(administrator, name)
        self.max_markets = max_markets
        self.events = events if events is not None else EventLog()
        self.entries: Dict[int, str] = {}
        self._markets: Dict[int, Market] = {}
        self._lock = threading.Lock()
        if not ledger.is_registered(administrator):
            ledger.register_wallet(administrator)

    @property
    def name(self) -> str:
        return self.gate.registry

    @property
    def administrator(self) -> str:
        return self.gate.administrator

    @property
    def count(self) -> int:
        """Next id to assign."""
        return len(self.entries)

    def create_market(self, caller: str, token_symbol: str) -> int:
        """
        Create a market escrowing token_symbol.

        Returns:
            The new market's id

        Raises:
            AccessDenied: caller is not the administrator
            CapacityExceeded: max_markets markets already exist
            NotFound: token_symbol is not a registered unit
            StateConflict: the market wallet name is already taken in the ledger
        """
        self.gate.require_administrator(caller)
        with self._lock:
            market_id = self.count
            if market_id >= self.max_markets:
                raise CapacityExceeded(MARKET_LIMIT_MESSAGE)
            if token_symbol not in self.ledger.units:
                raise NotFound(f"token {token_symbol} not registered")

            wallet = f"{self.name}:market:{market_id}"
            if self.ledger.is_registered(wallet) or wallet in self.ledger.units:
                raise StateConflict(f"{wallet} already exists in ledger {self.ledger.name}")

            unit = create_market_unit(
                symbol=wallet,
                market_id=market_id,
                wallet=wallet,
                token_symbol=token_symbol,
                administrator=self.administrator,
                registry=self.name,
            )
            origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, wallet, "CREATE_MARKET")
            self.ledger.commit(
                build_transaction(self.ledger, [], origin=origin, units_to_create=(unit,))
            )
            self.ledger.register_wallet(wallet)

            self.entries[market_id] = wallet
            self._markets[market_id] = Market(self.ledger, wallet, events=self.events)

        self.events.emit(MarketCreated(market_id, wallet))
        return market_id

    def emergency_withdraw(self, caller: str, market_id: int) -> Decimal:
        """
        Sweep a market's escrow to the administrator.

        Raises:
            AccessDenied: caller is not the administrator
            NotFound: no market with this id
        """
        self.gate.require_administrator(caller)
        return self.get_market(market_id).emergency_withdraw(self.name)

    def get_market(self, market_id: int) -> Market:
        market = self._markets.get(market_id)
        if market is None:
            raise NotFound(MARKET_NOT_FOUND_MESSAGE)
        return market

    def market_address(self, market_id: int) -> str:
        """Wallet identity of a market."""
        if market_id not in self.entries:
            raise NotFound(MARKET_NOT_FOUND_MESSAGE)
        return self.entries[market_id]

    def markets(self) -> Iterator[Market]:
        """Markets in id order."""
        return iter([self._markets[i] for i in sorted(self._markets)])

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"MarketRegistry({self.name}, {len(self)}/{self.max_markets} markets)"
