"""
ledger.py - Stateful Double-Entry Ledger with Atomic Operations

The Ledger class is the central state manager for the perpetual note system.
It is the only module that mutates balances and unit state.

Key responsibilities:
    - Implements LedgerView protocol for read-only access by pure functions
    - Executes transactions atomically (all moves succeed or all fail)
    - Groups several transactions into one all-or-nothing operation (atomic())
    - Buffers change notifications until the outermost operation commits
    - Tracks logical time (forward only)
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    QUANTITY_EPSILON, SYSTEM_WALLET, ZERO,
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    TransferFailed,
    _freeze_state,
)
from .events import Event


EventListener = Callable[[Event], None]


@dataclass(frozen=True, slots=True)
class _Checkpoint:
    """Everything an atomic operation may change, captured before it starts."""
    balances: Dict[str, Dict[str, Decimal]]
    positions: Dict[str, Dict[str, Decimal]]
    units: Dict[str, Unit]
    registered_wallets: Set[str]
    seen_intent_ids: Set[str]
    log_length: int
    next_sequence: int
    pending_events: int


class Ledger:
    """
    Double-entry ledger with full validation, audit trail and operation rollback.

    Implements the LedgerView protocol, so the ledger can be passed to pure
    functions that use only the read-only methods.

    Engines run every public operation inside atomic(): the operation may
    execute several transactions, register wallets and units and emit events;
    if any exception escapes, all of it is undone.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(collateral_token("AMPL", "Ampleforth"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(Decimal("100"), "AMPL", "alice", "bob", "payment_001")
        ])
        result = ledger.execute(tx)
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
            verbose: Print one line per executed or rejected transaction
            test_mode: Allow set_balance() calls
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.event_log: List[Event] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._next_nonce: int = 0
        # unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._listeners: List[EventListener] = []
        self._pending_events: List[Event] = []
        self._atomic_depth: int = 0

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
        """Deep copy of a unit's state; safe to mutate."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        state = self.units[unit_symbol].state
        return copy.deepcopy(state) if state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """All non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit across all wallets, including SYSTEM_WALLET.

        For a unit issued from SYSTEM_WALLET this is always zero; that is the
        double-entry invariant. See circulating_supply() for the holder view.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, ZERO) for w in sorted(self.registered_wallets)),
            ZERO,
        )

    def circulating_supply(self, unit_symbol: str) -> Decimal:
        """Sum of a unit across every wallet except SYSTEM_WALLET."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (qty for w, qty in sorted(self._positions_by_unit.get(unit_symbol, {}).items())
             if w != SYSTEM_WALLET),
            ZERO,
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-18")
    ) -> Dict[str, Any]:
        """
        Verify that conservation holds for all units.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Current total for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference

        Example:
            result = ledger.verify_double_entry(expected_supplies={"AMPL": Decimal("0")})
            assert result['valid'], result['discrepancies']
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
                        'actual': ZERO,
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def next_nonce(self, prefix: str) -> str:
        """
        Unique operation id for transaction origins.

        Two otherwise identical operations (same amounts, same wallets) must not
        collapse into one intent_id, so every engine call stamps its own nonce.
        """
        self._next_nonce += 1
        return f"{prefix}#{self._next_nonce}"

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register wallet_id unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance directly.

        Bypasses double-entry accounting; only available in test mode. Tests
        use it to fund wallets and to simulate collateral rebases.

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
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    def update_unit_state(self, unit_symbol: str, state_updates: UnitState) -> None:
        """
        Merge state_updates into a unit's state outside of a transaction.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        old_unit = self.units[unit_symbol]
        new_state = {**old_unit.state, **state_updates}
        self.units[unit_symbol] = replace(old_unit, _frozen_state=_freeze_state(new_state))

    # ========================================================================
    # CHANGE NOTIFICATIONS
    # ========================================================================

    def subscribe(self, listener: EventListener) -> None:
        """Call listener with every event once its operation commits."""
        self._listeners.append(listener)

    def emit(self, event: Event) -> None:
        """
        Record a change notification.

        Inside an atomic operation the event is held back until the outermost
        operation commits and dropped if it rolls back.
        """
        if self._atomic_depth:
            self._pending_events.append(event)
        else:
            self._publish([event])

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            self.event_log.append(event)
            if self.verbose:
                print(f"📣 {event}")
            for listener in list(self._listeners):
                listener(event)

    # ========================================================================
    # ATOMIC OPERATIONS
    # ========================================================================

    def _checkpoint(self) -> _Checkpoint:
        return _Checkpoint(
            balances={w: dict(b) for w, b in self.balances.items()},
            positions={u: dict(p) for u, p in self._positions_by_unit.items()},
            units=dict(self.units),
            registered_wallets=set(self.registered_wallets),
            seen_intent_ids=set(self.seen_intent_ids),
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
            pending_events=len(self._pending_events),
        )

    def _restore(self, cp: _Checkpoint) -> None:
        self.balances = {
            w: defaultdict(lambda: Decimal("0"), b) for w, b in cp.balances.items()
        }
        self._positions_by_unit = defaultdict(dict, {u: dict(p) for u, p in cp.positions.items()})
        self.units = dict(cp.units)
        self.registered_wallets = set(cp.registered_wallets)
        self.seen_intent_ids = set(cp.seen_intent_ids)
        del self.transaction_log[cp.log_length:]
        self._next_sequence = cp.next_sequence
        del self._pending_events[cp.pending_events:]

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run a multi-transaction operation all-or-nothing.

        On any exception the balances, units, wallets, transaction log and
        buffered events are restored to their state at entry and the
        exception propagates. Nesting is allowed; an inner failure caught by
        the caller leaves the outer operation's earlier effects in place.

        Example:
            with ledger.atomic():
                ledger.execute_or_raise(deposit_tx)
                ledger.execute_or_raise(mint_tx)
        """
        checkpoint = self._checkpoint()
        self._atomic_depth += 1
        try:
            yield self
        except BaseException:
            self._restore(checkpoint)
            if self.verbose:
                print("↩️  ROLLED BACK")
            raise
        finally:
            self._atomic_depth -= 1
        if self._atomic_depth == 0:
            events, self._pending_events = self._pending_events, []
            self._publish(events)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together. A pending transaction
        whose intent_id was already applied is not applied twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        newly_registered_units: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol not in self.units:
                self.register_unit(unit)
                newly_registered_units.append(unit.symbol)

        valid, reason = self._validate_pending(pending)
        if not valid:
            for sym in newly_registered_units:
                del self.units[sym]
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._execute_moves(tx.moves)

        for sc in tx.state_changes:
            if sc.unit not in self.units:
                continue
            old_unit = self.units[sc.unit]
            if self.verbose and isinstance(sc.old_state, dict):
                stale = sc.old_state.keys() ^ old_unit.state.keys()
                stale |= {k for k in sc.old_state if sc.old_state.get(k) != old_unit.state.get(k)}
                if stale:
                    print(f"⚠️  STALE STATE DETECTED for {sc.unit}: {sorted(stale)}")
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            print(f"✓ APPLIED {tx!r}")
        return ExecuteResult.APPLIED

    def execute_or_raise(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute and raise TransferFailed on rejection.

        Engines call this inside atomic() so that a rejected step aborts the
        whole operation instead of leaving it half-applied.
        """
        result = self.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransferFailed(f"transaction rejected: {pending.origin}")
        return result

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction.

        Checks performed:
        1. Timestamp (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rules
        4. Balance constraints (SYSTEM_WALLET exempt)

        Returns:
            (success, reason); reason is empty on success
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, ZERO) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, ZERO) + move.quantity)

        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep unit -> {wallet -> quantity} in sync; zero balances are dropped."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
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

    def clone(self) -> Ledger:
        """
        Independent deep copy: units, wallets, balances, logs and time.

        Listeners are not carried over.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.units = {
            symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
            for symbol, unit in self.units.items()
        }
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned.event_log = list(self.event_log)
        cloned._next_sequence = self._next_sequence
        cloned._next_nonce = self._next_nonce
        cloned.balances = {
            wallet: defaultdict(lambda: Decimal("0"), bals)
            for wallet, bals in self.balances.items()
        }
        cloned._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in self._positions_by_unit.items():
            cloned._positions_by_unit[unit_symbol] = dict(positions)
        cloned._listeners = []
        cloned._pending_events = []
        cloned._atomic_depth = 0
        return cloned
