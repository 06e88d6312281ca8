"""
conftest.py - Shared pytest fixtures for wager tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers with a registered token and funded participants
- A registry and an open market with participant allowances in place
- Market FakeViews for testing transaction builders
- Comparison utilities
"""

import pytest
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable

from wager import (
    Ledger, Market, MarketRegistry, EventLog,
    create_market_unit, token,
)

from tests.fake_view import FakeView


ADMIN = "admin"
PARTICIPANTS = ("addr1", "addr2", "addr3", "other")
TOKEN = "USDX"
STARTING_BALANCE = Decimal("1000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_ledger(
    participants: Iterable[str] = PARTICIPANTS,
    balance: Decimal = STARTING_BALANCE,
    decimal_places: int = 18,
) -> Ledger:
    """Ledger with TOKEN registered and each participant issued balance."""
    ledger = Ledger("test", datetime(2025, 1, 1), verbose=False, test_mode=True)
    ledger.register_unit(token(TOKEN, "Test Dollar", decimal_places=decimal_places))
    for p in participants:
        ledger.register_wallet(p)
        if balance > 0:
            ledger.issue(p, TOKEN, balance)
    return ledger


def open_market(
    ledger: Ledger,
    participants: Iterable[str] = PARTICIPANTS,
    allowance: Decimal = STARTING_BALANCE,
) -> Market:
    """Create a market through a fresh registry and approve it for each participant."""
    registry = MarketRegistry(ledger, ADMIN)
    market = registry.get_market(registry.create_market(ADMIN, TOKEN))
    for p in participants:
        ledger.approve(p, market.wallet, TOKEN, allowance)
    return market


def snapshot(ledger: Ledger) -> Dict:
    """Every balance, unit state and allowance, for before/after comparison."""
    return {
        'balances': {
            w: dict(ledger.balances[w]) for w in sorted(ledger.registered_wallets)
        },
        'states': {s: ledger.get_unit_state(s) for s in ledger.list_units()},
        'allowances': dict(ledger.allowances),
    }


def market_view(
    state_overrides: Dict = None,
    balances: Dict = None,
    symbol: str = "M0",
) -> FakeView:
    """FakeView holding one market unit (wallet == symbol) escrowing TOKEN."""
    state = create_market_unit(symbol, 0, symbol, TOKEN, ADMIN, "registry").state
    state.update(state_overrides or {})
    return FakeView(
        balances=balances or {},
        states={symbol: state},
        time=datetime(2025, 1, 1),
    )


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", datetime(2025, 1, 1), verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with USDX and funded participants addr1, addr2, addr3, other."""
    return make_ledger()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def registry(ledger, events):
    """Registry administered by ADMIN on the funded ledger."""
    return MarketRegistry(ledger, ADMIN, events=events)


@pytest.fixture
def market(ledger, registry):
    """Open market 0; every participant has approved it for their full balance."""
    market = registry.get_market(registry.create_market(ADMIN, TOKEN))
    for p in PARTICIPANTS:
        ledger.approve(p, market.wallet, TOKEN, STARTING_BALANCE)
    return market


@pytest.fixture
def equal_pools_market(market):
    """addr1 bets 5 on side A, addr2 bets 5 on side B."""
    market.bet("addr1", 1, Decimal("5"))
    market.bet("addr2", 2, Decimal("5"))
    return market
