"""
wager - Pari-mutuel wager settlement on an escrow ledger

Two-sided markets escrow participants' stakes in a double-entry ledger.
The administrator declares the winning side, a 25% fee leaves the losing
pool for the treasury, and winners claim stake plus a pro-rata share of
what remains.

Usage:
    from decimal import Decimal
    from wager import Ledger, MarketRegistry, token, SIDE_A, SIDE_B

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDX", "Test Dollar"))
    for wallet in ("alice", "bob"):
        ledger.register_wallet(wallet)
        ledger.issue(wallet, "USDX", Decimal("100"))

    registry = MarketRegistry(ledger, "admin")
    market = registry.get_market(registry.create_market("admin", "USDX"))

    # Participants authorize the market wallet before betting
    ledger.approve("alice", market.wallet, "USDX", Decimal("5"))
    ledger.approve("bob", market.wallet, "USDX", Decimal("5"))
    market.bet("alice", SIDE_A, Decimal("5"))
    market.bet("bob", SIDE_B, Decimal("5"))

    market.declare_result("admin", SIDE_A)   # 1.25 USDX fee to admin
    market.claim_reward("alice")             # Decimal("8.75")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_MARKET,
    SIDE_A,
    SIDE_B,
    FEE_RATE,
    MAX_MARKETS,
    # Errors
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    MarketError,
    AccessDenied,
    InvalidInput,
    InvalidSide,
    InvalidAmount,
    StateConflict,
    AlreadyBet,
    AlreadyResolved,
    ReentrantCall,
    Unavailable,
    BettingClosed,
    PreconditionFailed,
    NotResolved,
    WrongSide,
    NoStake,
    TransferFailed,
    NotFound,
    CapacityExceeded,
)

# Ledger
from .ledger import Ledger

# Access control
from .access import AccessGate

# Events
from .events import (
    EventLog,
    MarketCreated,
    BetPlaced,
    ResultDeclared,
    RewardClaimed,
    Paused,
    Unpaused,
    EmergencyWithdrawal,
)

# Settlement arithmetic
from .settlement import (
    compute_fee,
    compute_reward_ratio,
    compute_reward,
    compute_payout,
)

# Market units
from .units.market import (
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
    verify_market_conservation,
)

# Stateful handles
from .market import Market
from .registry import MarketRegistry
