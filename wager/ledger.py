"""
ledger.py - Stateful Escrow Ledger

The Ledger class is the central state manager for the wager system.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (moves, unit state changes and unit
      creation all succeed or all fail)
    - Maintains wallet balances, allowances and unit definitions
    - Rejects transactions built against stale unit state
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import threading

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType,
    ExecuteResult,
    Positions, UnitState,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, TransferFailed, TransferRuleViolation,
    UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    build_transaction, _freeze_state,
)


class Ledger:
    """
    Double-entry escrow ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against balance
          constraints, allowances, transfer rules and the current unit state.
        - Always logs: Every applied transaction is recorded in the audit trail.

    Thread Safety:
        execute() and the pull/push helpers are serialized by an internal lock.
        Reads are not locked.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("USDX", "Test Dollar"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.issue("alice", "USDX", Decimal("100"))
        ledger.push("alice", "bob", "USDX", Decimal("10"))
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable debug output (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        # (owner, spender, unit) -> remaining allowance
        self.allowances: Dict[Tuple[str, str, str], Decimal] = {}
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        # Reason for the most recent REJECTED / ALREADY_APPLIED result
        self.last_rejection: str = ""
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._lock = threading.RLock()

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        The returned dictionary can be mutated freely.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        unit_obj = self.units[unit_symbol]
        return self._deep_copy_state(unit_obj.state) if unit_obj.state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit, keyed by wallet."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def balance_of(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """EscrowLedger-style alias for get_balance()."""
        return self.get_balance(wallet_id, unit_symbol)

    def allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Remaining amount spender may debit from owner's wallet."""
        return self.allowances.get((owner, spender, unit_symbol), Decimal("0"))

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Calculate total supply of a unit across all wallets.

        SYSTEM_WALLET holds the negative of everything issued, so the total
        of a token that was only ever issued and transferred is zero.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("0")
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Args:
            expected_supplies: Optional dict mapping unit symbols to expected totals.
            tolerance: Maximum allowed difference (exact by default).

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Current total supply for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
            return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        with self._lock:
            if unit.symbol in self.units:
                raise ValueError(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def approve(self, owner: str, spender: str, unit_symbol: str, amount: Decimal) -> None:
        """
        Set the amount spender may debit from owner's wallet.

        Replaces any previous allowance for the same (owner, spender, unit).

        Raises:
            ValueError: If amount is negative or not finite
            WalletNotRegistered / UnitNotRegistered
        """
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"allowance must be non-negative and finite, got {amount}")
        for wallet in (owner, spender):
            if wallet not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {wallet} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        with self._lock:
            self.allowances[(owner, spender, unit_symbol)] = amount

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This bypasses double-entry accounting and is only available
        in test mode. Use issue() or execute() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        with self._lock:
            self.balances[wallet_id][unit_symbol] = quantity
            self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSFERS (Mutating)
    # ========================================================================

    def issue(self, wallet_id: str, unit_symbol: str, amount: Decimal) -> Transaction:
        """
        Issue new supply of a unit from SYSTEM_WALLET into a wallet.

        Raises:
            TransferFailed: If the ledger rejects the issuance
        """
        origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, unit_symbol, "ISSUE")
        return self._transfer(SYSTEM_WALLET, wallet_id, unit_symbol, amount, origin, "issue")

    def push(self, source: str, dest: str, unit_symbol: str, amount: Decimal) -> Transaction:
        """
        Transfer amount from source to dest on source's own authority.

        Raises:
            TransferFailed: If the ledger rejects the transfer
        """
        origin = TransactionOrigin(OriginType.USER_ACTION, source, unit_symbol, "PUSH")
        return self._transfer(source, dest, unit_symbol, amount, origin, "push")

    def pull(
        self, spender: str, source: str, dest: str, unit_symbol: str, amount: Decimal
    ) -> Transaction:
        """
        Transfer amount from source to dest on spender's authority.

        Consumes the allowance source granted to spender.

        Raises:
            TransferFailed: If the allowance or balance is insufficient
        """
        origin = TransactionOrigin(OriginType.CONTRACT, spender, unit_symbol, "PULL")
        return self._transfer(source, dest, unit_symbol, amount, origin, "pull")

    def _transfer(
        self,
        source: str,
        dest: str,
        unit_symbol: str,
        amount: Decimal,
        origin: TransactionOrigin,
        label: str,
    ) -> Transaction:
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        with self._lock:
            contract_id = f"{label}_{self._next_sequence}"
            try:
                move = Move(amount, unit_symbol, source, dest, contract_id)
            except ValueError as e:
                raise TransferFailed(str(e)) from e
            return self.commit(build_transaction(self, [move], origin=origin))

    def commit(self, pending: PendingTransaction) -> Transaction:
        """
        Execute a PendingTransaction that must apply.

        Returns:
            The logged Transaction

        Raises:
            TransferFailed: If the transaction was rejected or already applied;
                            nothing was changed
        """
        with self._lock:
            if pending.is_empty():
                raise TransferFailed("empty transaction")
            result = self.execute(pending)
            if result != ExecuteResult.APPLIED:
                raise TransferFailed(
                    f"{pending.origin.event_type or 'transaction'} {result.value}: "
                    f"{self.last_rejection}"
                )
            return self.transaction_log[-1]

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Moves, unit state changes and unit creation are applied together or
        not at all. Execution is idempotent: a pending transaction with the
        same intent_id will not be applied twice.

        All transactions are validated against:
        - Unit and wallet registration
        - Allowances for moves debiting a wallet other than the spender
        - Transfer rules
        - Balance constraints (min/max balance limits)
        - Current unit state (state changes built from stale state are rejected)

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed (see last_rejection)
        """
        with self._lock:
            self.last_rejection = ""

            if pending.is_empty():
                return ExecuteResult.APPLIED

            if pending.intent_id in self.seen_intent_ids:
                self.last_rejection = f"intent {pending.intent_id} already applied"
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED

            # Units to create are validated against a staging view and only
            # registered once the whole transaction is accepted.
            for unit in pending.units_to_create:
                if unit.symbol in self.units:
                    return self._reject(f"unit already registered: {unit.symbol}")

            valid, reason = self._validate_pending(pending)
            if not valid:
                return self._reject(reason)

            sequence = self._next_sequence
            self._next_sequence += 1
            exec_id = self._generate_exec_id(sequence)

            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=exec_id,
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
            )

            for unit in tx.units_to_create:
                self.units[unit.symbol] = unit

            self._consume_allowances(tx.origin, tx.moves)
            self._execute_moves(tx.moves)

            for sc in tx.state_changes:
                old_unit = self.units[sc.unit]
                new_state = self._deep_copy_state(
                    sc.new_state if isinstance(sc.new_state, dict) else {}
                )
                self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

            # Log transaction (always - audit trail is mandatory)
            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _reject(self, reason: str) -> ExecuteResult:
        self.last_rejection = reason
        if self.verbose:
            print(f"✗ REJECTED: {reason}")
        return ExecuteResult.REJECTED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed Transaction repr with a result line appended."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _spender(self, origin: TransactionOrigin) -> Optional[str]:
        """The wallet a transaction acts on behalf of, if its origin names one."""
        if origin.source_id in self.registered_wallets and origin.source_id != SYSTEM_WALLET:
            return origin.source_id
        return None

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Returns:
            (True, "") on success, (False, reason) otherwise
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        staged_units = {u.symbol: u for u in pending.units_to_create}

        def lookup(symbol: str) -> Optional[Unit]:
            return self.units.get(symbol) or staged_units.get(symbol)

        for move in pending.moves:
            unit = lookup(move.unit_symbol)
            if unit is None:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"
            if unit.quantum is not None and unit.round(move.quantity) != move.quantity:
                return False, f"{move.quantity} {move.unit_symbol} finer than {unit.quantum}"
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        # Allowance check: aggregate debits per (owner, unit) for the spender
        spender = self._spender(pending.origin)
        if spender is not None:
            spent: Dict[Tuple[str, str], Decimal] = {}
            for move in pending.moves:
                if move.source in (spender, SYSTEM_WALLET):
                    continue
                key = (move.source, move.unit_symbol)
                spent[key] = spent.get(key, Decimal("0")) + move.quantity
            for (owner, unit_sym), amount in spent.items():
                allowed = self.allowance(owner, spender, unit_sym)
                if amount > allowed:
                    return False, (
                        f"{spender} allowance from {owner} {unit_sym}: {amount} > {allowed}"
                    )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = lookup(move.unit_symbol)
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation - it can hold any balance
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet].get(unit_sym, Decimal("0"))
            unit = lookup(unit_sym)
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        # Optimistic concurrency: old_state must match the unit's current state
        for sc in pending.state_changes:
            unit = lookup(sc.unit)
            if unit is None:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is None:
                continue
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            if old_state != unit.state:
                return False, f"stale state for {sc.unit}"

        return True, ""

    def _consume_allowances(self, origin: TransactionOrigin, moves) -> None:
        spender = self._spender(origin)
        if spender is None:
            return
        for move in moves:
            if move.source in (spender, SYSTEM_WALLET):
                continue
            key = (move.source, spender, move.unit_symbol)
            self.allowances[key] = self.allowances.get(key, Decimal("0")) - move.quantity

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> {wallet -> quantity} index in step with balances."""
        if abs(quantity) >= self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply moves to wallet balances with unit rounding and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    @staticmethod
    def _deep_copy_state(state: Optional[UnitState]) -> Optional[UnitState]:
        if state is None:
            return None
        return copy.deepcopy(state)

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        Modifications to the clone do not affect the original and vice versa.
        """
        with self._lock:
            cloned = Ledger.__new__(Ledger)
            cloned.name = self.name
            cloned._current_time = self._current_time
            cloned.verbose = self.verbose
            cloned._test_mode = self._test_mode
            cloned._lock = threading.RLock()
            cloned.last_rejection = self.last_rejection

            cloned.units = {
                symbol: replace(unit, _frozen_state=_freeze_state(self._deep_copy_state(unit.state)))
                for symbol, unit in self.units.items()
            }
            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.allowances = dict(self.allowances)
            cloned.seen_intent_ids = self.seen_intent_ids.copy()
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence

            cloned.balances = {}
            for wallet, bals in self.balances.items():
                cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)

            cloned._positions_by_unit = defaultdict(dict)
            for unit_symbol, positions in self._positions_by_unit.items():
                cloned._positions_by_unit[unit_symbol] = dict(positions)

            return cloned
