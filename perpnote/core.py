"""
Core types and pure functions for the perpetual note system.

This module provides the foundational data structures shared by every engine:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the domain error hierarchy
4. Fixed-point helpers: floor/ceil quantization for token amounts, prices, yields
5. Unit factories: collateral tokens

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_FLOOR, ROUND_CEILING, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All engines share one deterministic Decimal context.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
#   - prec=50: enough headroom for 18-decimal token amounts multiplied by
#     18-decimal yields and 8-decimal prices without intermediate loss
#   - rounding=ROUND_HALF_EVEN for intermediate results; every amount that
#     leaves a calculation is quantized explicitly (floor or ceil)
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_COLLATERAL = "COLLATERAL"
UNIT_TYPE_BOND = "BOND"
UNIT_TYPE_TRANCHE = "TRANCHE"
UNIT_TYPE_BOND_ISSUER = "BOND_ISSUER"
UNIT_TYPE_PERP_NOTE = "PERP_NOTE"
UNIT_TYPE_VAULT_SHARE = "VAULT_SHARE"

# Fixed-point scales
TOKEN_DECIMALS = 18
PRICE_DECIMALS = 8
YIELD_DECIMALS = 18
PERC_DECIMALS = 8

# Tranche ratios are expressed out of this many parts.
TRANCHE_RATIO_GRANULARITY = 1000

ZERO = Decimal("0")
ONE = Decimal("1")

# Quantities with absolute value below this threshold are treated as zero.
# One order of magnitude finer than the smallest token amount.
QUANTITY_EPSILON = Decimal("1e-19")

DECIMAL_ROUNDING = {
    UNIT_TYPE_COLLATERAL: ROUND_DOWN,
    UNIT_TYPE_TRANCHE: ROUND_DOWN,
    UNIT_TYPE_PERP_NOTE: ROUND_DOWN,
    UNIT_TYPE_VAULT_SHARE: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: bond terms, queue contents, reserve bookkeeping, etc.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pricing strategies, yield strategies, bond calculations and transfer rules
    receive a LedgerView and can query balances and unit state without the
    ability to modify anything. The Ledger class implements this protocol but
    also provides mutation methods; tests use FakeView for an immutable one.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, transfer rules).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"     # Direct call by an external holder
    CONTRACT = "contract"           # Engine operation (mint, redeem, rollover, deploy)
    LIFECYCLE = "lifecycle"         # Maturity settlement, queue advancement
    SYSTEM = "system"               # Issuance, initial setup
    EXTERNAL = "external"           # External system integration


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class TransferFailed(LedgerError):
    """Raised when an engine's ledger transaction is rejected mid-operation."""
    pass


class BondError(LedgerError):
    """Bond operation not allowed in the bond's current state."""
    pass


# --- note engine --------------------------------------------------------------

class UnacceptableDeposit(LedgerError):
    """Tranche does not belong to the current deposit bond."""
    pass


class UnacceptableMintAmt(LedgerError):
    """Mint input or computed mint amount is zero."""
    pass


class ExceededMaxSupply(LedgerError):
    pass


class ExceededMaxMintPerTranche(LedgerError):
    pass


class UnacceptableRedemption(LedgerError):
    """Redemption amount, price or covered amount is zero, or asset not in reserve."""
    pass


class UnacceptableRedemptionTranche(LedgerError):
    """Redemption attempted out of queue order."""
    pass


class UnacceptableRollover(LedgerError):
    """Rollover pair violates the eligibility rules."""
    pass


class UnacceptableRolloverAmt(LedgerError):
    """Rollover computes a zero amount on either side."""
    pass


class QueueError(LedgerError):
    """Duplicate enqueue or dequeue from an empty redemption queue."""
    pass


# --- vault ----------------------------------------------------------------------

class InsufficientDeployment(LedgerError):
    """Deployment rolled over nothing, or idle balance is below the minimum."""
    pass


class DeployedCountOverLimit(LedgerError):
    pass


class UnexpectedAsset(LedgerError):
    """Asset is not one of the vault's deployed assets."""
    pass


class InsufficientLiquidity(LedgerError):
    """Vault cannot source enough underlying or notes for a swap."""
    pass


class UnacceptableSwap(LedgerError):
    """Swap disabled by the fee policy or computes a zero output."""
    pass


class UnacceptableShareAmt(LedgerError):
    pass


# --- governance / fees -------------------------------------------------------------

class InvalidPerc(LedgerError):
    """Percentage parameter outside its allowed range."""
    pass


class InvalidTargetSRBounds(LedgerError):
    pass


class InvalidDRBounds(LedgerError):
    pass


class InvalidConfig(LedgerError):
    pass


class Unauthorized(LedgerError):
    pass


class AlreadyInitialized(LedgerError):
    pass


class NotInitialized(LedgerError):
    pass


class Paused(LedgerError):
    pass


class ReentrantCall(LedgerError):
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (engine name plus operation nonce)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Operation within the source ("MINT", "ROLLOVER", "MATURE", ...)
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change, with complete before/after snapshots.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in set(old) | set(new)
            if old.get(key) != new.get(key)
        }


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation, so
    semantically equal structures hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "<" + ",".join(_canonicalize(item) for item in sorted(value, key=str)) + ">"
    return f"R:{repr(value)}"


def content_hash(*parts: Any) -> str:
    """sha256 over the canonical form of the given values (full hex digest)."""
    return hashlib.sha256(_canonicalize(list(parts)).encode()).hexdigest()


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Based only on moves, state changes, origin and created units, never on
    timestamps. Used for idempotency: the same intent is applied once.
    """
    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        content_parts.append(
            f"move:{_normalize_decimal(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}"
        )

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    return hashlib.sha256("|".join(content_parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by the pure compute_* functions and submitted to Ledger.execute().
    The intent_id is auto-computed from content.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register before executing moves
        intent_id: Content-addressable hash of the transaction intent
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """True when there are no moves, no state deltas and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    State changes are deep-copied so later mutation of the caller's dicts
    cannot leak into the transaction.

    Example:
        def compute_mature(view, bond):
            old_state = view.get_unit_state(bond)
            new_state = {**old_state, "is_mature": True}
            changes = [UnitStateChange(unit=bond, old_state=old_state, new_state=new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [f"Transaction {self.exec_id} [{self.origin}]"]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.unit_type})")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name in sorted(sc.changed_fields()):
                lines.append(f"  ~ {sc.unit}.{field_name}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (token type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "AMPL", "B1-T0", "SPOT").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (COLLATERAL, TRANCHE, PERP_NOTE, ...).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's precision; unchanged if decimal_places is None."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float to Decimal via str so floats do not leak binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def floor_to(value: Decimal, places: int = TOKEN_DECIMALS) -> Decimal:
    """Round toward negative infinity at the given number of decimal places."""
    return value.quantize(Decimal(10) ** -places, rounding=ROUND_FLOOR)


def ceil_to(value: Decimal, places: int = TOKEN_DECIMALS) -> Decimal:
    """Round toward positive infinity at the given number of decimal places."""
    return value.quantize(Decimal(10) ** -places, rounding=ROUND_CEILING)


def trunc_to(value: Decimal, places: int) -> Decimal:
    """Round toward zero; used for signed fee percentages."""
    return value.quantize(Decimal(10) ** -places, rounding=ROUND_DOWN)


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, never negative."""
    return max(0, int((end - start).total_seconds()))


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def collateral_token(symbol: str, name: str, decimal_places: int = TOKEN_DECIMALS) -> Unit:
    """
    Create a collateral token unit (the underlying deposited into bonds).

    Balances may not go negative; the token is freely transferable.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_COLLATERAL,
        decimal_places=decimal_places,
        min_balance=ZERO,
    )
