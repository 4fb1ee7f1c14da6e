"""
bond.py - Tranched Bond with Senior-First Maturity Waterfall

A Bond has:
    collateral, tranche_ratios (parts of TRANCHE_RATIO_GRANULARITY), maturity_date,
    issue_date, tranches (one TRANCHE unit per ratio, most senior first)

Deposit: collateral moves into the bond's wallet; every tranche is minted in
ratio. Before the first deposit one unit of collateral mints one unit of debt;
afterwards debt is minted at the current debt-to-collateral rate.

Redeem (before maturity): a full set of tranches in ratio is burned for a
pro-rata share of the bond's collateral.

Mature (at or after maturity_date): the bond's collateral is split into one
pot per tranche, seniors first, each capped at that tranche's supply; the
most junior tranche takes whatever is left. Each tranche then redeems against
its own pot.

Wallets: the bond symbol holds collateral before maturity; each tranche
symbol holds that tranche's pot after maturity.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, build_transaction,
    UNIT_TYPE_BOND, UNIT_TYPE_TRANCHE, SYSTEM_WALLET, TOKEN_DECIMALS,
    TRANCHE_RATIO_GRANULARITY, ZERO, BondError,
    _freeze_state, floor_to, seconds_between,
)
from ..events import make_event, BOND_MATURED

# Implied-debt tolerance when checking that a redemption is in ratio.
# floor() on each tranche amount can skew the implied debt by at most
# 1e-18 * GRANULARITY / ratio.
_RATIO_TOLERANCE = Decimal("1e-15")


# =============================================================================
# BOND SNAPSHOT
# =============================================================================

@dataclass(frozen=True, slots=True)
class BondInfo:
    """Immutable view of a bond's terms and maturity flag."""
    symbol: str
    collateral: str
    tranches: Tuple[str, ...]
    ratios: Tuple[int, ...]
    maturity_date: datetime
    issue_date: datetime
    is_mature: bool

    @property
    def tranche_count(self) -> int:
        return len(self.tranches)

    def tranche_at(self, index: int) -> str:
        return self.tranches[index]

    def tranche_index(self, tranche: str) -> int:
        try:
            return self.tranches.index(tranche)
        except ValueError:
            raise BondError(f"{tranche} is not a tranche of {self.symbol}") from None

    def has_tranche(self, tranche: str) -> bool:
        return tranche in self.tranches

    def time_to_maturity(self, now: datetime) -> int:
        """Seconds until maturity; 0 once the maturity date has passed."""
        return seconds_between(now, self.maturity_date)

    def is_due(self, now: datetime) -> bool:
        return now >= self.maturity_date

    @property
    def senior_ratio(self) -> int:
        return self.ratios[0]


def load_bond(view: LedgerView, bond: str) -> BondInfo:
    """Build a BondInfo from the bond unit's state."""
    state = view.get_unit_state(bond)
    return BondInfo(
        symbol=bond,
        collateral=state['collateral'],
        tranches=tuple(state['tranches']),
        ratios=tuple(state['ratios']),
        maturity_date=state['maturity_date'],
        issue_date=state['issue_date'],
        is_mature=bool(state.get('is_mature', False)),
    )


def is_tranche(view: LedgerView, symbol: str) -> bool:
    return view.get_unit(symbol).unit_type == UNIT_TYPE_TRANCHE


def bond_of(view: LedgerView, tranche: str) -> str:
    """Symbol of the bond that issued a tranche."""
    return view.get_unit_state(tranche)['bond']


def tranche_supply(view: LedgerView, tranche: str) -> Decimal:
    """Outstanding tranche amount (everything not held by SYSTEM_WALLET)."""
    return sum(
        (qty for wallet, qty in view.get_positions(tranche).items() if wallet != SYSTEM_WALLET),
        ZERO,
    )


def total_debt(view: LedgerView, info: BondInfo) -> Decimal:
    return sum((tranche_supply(view, t) for t in info.tranches), ZERO)


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def calculate_waterfall(collateral_balance: Decimal, supplies: Sequence[Decimal]) -> List[Decimal]:
    """
    Split collateral senior-first: each tranche but the last is capped at its
    supply, the last takes the remainder.
    """
    remaining = collateral_balance
    claims: List[Decimal] = []
    for supply in supplies[:-1]:
        claim = min(supply, remaining)
        claims.append(claim)
        remaining -= claim
    claims.append(remaining)
    return claims


def calculate_deposit_tranche_amts(
    amount: Decimal,
    ratios: Sequence[int],
    collateral_balance: Decimal,
    debt: Decimal,
) -> List[Decimal]:
    """Tranche amounts minted for a collateral deposit."""
    if debt == ZERO:
        minted_debt = amount
    elif collateral_balance == ZERO:
        raise BondError("bond has debt but no collateral")
    else:
        minted_debt = amount * debt / collateral_balance
    return [floor_to(minted_debt * r / TRANCHE_RATIO_GRANULARITY) for r in ratios]


def compute_proportional_redemption_amts(
    balances: Sequence[Decimal],
    ratios: Sequence[int],
) -> List[Decimal]:
    """
    Largest in-ratio tranche set that fits inside the given balances.

    Returns all zeros when any balance is zero.
    """
    base = min(b * TRANCHE_RATIO_GRANULARITY / r for b, r in zip(balances, ratios))
    return [min(floor_to(base * r / TRANCHE_RATIO_GRANULARITY), b) for b, r in zip(balances, ratios)]


def compute_tranche_collateralization(view: LedgerView, tranche: str) -> Tuple[Decimal, Decimal]:
    """
    (collateral claim, debt) backing a tranche right now.

    Mature bonds: the tranche's pot and supply. Otherwise the waterfall the
    bond's current collateral would produce if it matured now.
    """
    info = load_bond(view, bond_of(view, tranche))
    if info.is_mature:
        return view.get_balance(tranche, info.collateral), tranche_supply(view, tranche)
    supplies = [tranche_supply(view, t) for t in info.tranches]
    claims = calculate_waterfall(view.get_balance(info.symbol, info.collateral), supplies)
    idx = info.tranche_index(tranche)
    return claims[idx], supplies[idx]


# =============================================================================
# UNIT CREATION
# =============================================================================

def tranche_symbol(bond: str, index: int) -> str:
    return f"{bond}-T{index}"


def create_bond_units(
    symbol: str,
    collateral: str,
    ratios: Sequence[int],
    maturity_date: datetime,
    issue_date: datetime,
) -> Tuple[Unit, List[Unit]]:
    """Create the bond unit and its tranche units (most senior first)."""
    ratios = [int(r) for r in ratios]
    if not ratios:
        raise ValueError("a bond needs at least one tranche")
    if any(r <= 0 for r in ratios):
        raise ValueError(f"tranche ratios must be positive, got {ratios}")
    if sum(ratios) != TRANCHE_RATIO_GRANULARITY:
        raise ValueError(f"tranche ratios must sum to {TRANCHE_RATIO_GRANULARITY}, got {sum(ratios)}")
    if maturity_date <= issue_date:
        raise ValueError("maturity_date must be after issue_date")

    tranches = [tranche_symbol(symbol, i) for i in range(len(ratios))]
    bond_unit = Unit(
        symbol=symbol,
        name=f"Bond {symbol} on {collateral}",
        unit_type=UNIT_TYPE_BOND,
        decimal_places=TOKEN_DECIMALS,
        _frozen_state=_freeze_state({
            'collateral': collateral,
            'tranches': tranches,
            'ratios': ratios,
            'maturity_date': maturity_date,
            'issue_date': issue_date,
            'is_mature': False,
        }),
    )
    tranche_units = [
        Unit(
            symbol=t,
            name=f"{symbol} tranche {i}",
            unit_type=UNIT_TYPE_TRANCHE,
            decimal_places=TOKEN_DECIMALS,
            _frozen_state=_freeze_state({
                'bond': symbol,
                'index': i,
                'ratio': ratios[i],
                'collateral': collateral,
            }),
        )
        for i, t in enumerate(tranches)
    ]
    return bond_unit, tranche_units


def create_bond(
    ledger,
    symbol: str,
    collateral: str,
    ratios: Sequence[int],
    maturity_date: datetime,
    nonce: str = "",
) -> BondInfo:
    """
    Register a bond, its tranches and their wallets on the ledger.

    Units are created through a transaction so the creation is logged.
    """
    bond_unit, tranche_units = create_bond_units(
        symbol, collateral, ratios, maturity_date, ledger.current_time
    )
    ledger.ensure_wallet(symbol)
    for unit in tranche_units:
        ledger.ensure_wallet(unit.symbol)
    origin = TransactionOrigin(OriginType.SYSTEM, nonce or f"bond:{symbol}", symbol, "ISSUE")
    ledger.execute_or_raise(build_transaction(
        ledger, [], origin=origin, units_to_create=(bond_unit, *tranche_units)
    ))
    return load_bond(ledger, symbol)


# =============================================================================
# LIFECYCLE FUNCTIONS
# =============================================================================

def _origin(bond: str, event: str, nonce: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.CONTRACT, nonce or f"bond:{bond}", bond, event)


def compute_deposit(
    view: LedgerView,
    bond: str,
    depositor: str,
    amount: Decimal,
    nonce: str = "",
) -> PendingTransaction:
    """Deposit collateral and mint every tranche in ratio."""
    info = load_bond(view, bond)
    if info.is_mature or info.is_due(view.current_time):
        raise BondError(f"{bond} is mature")
    if amount <= ZERO:
        raise ValueError(f"deposit amount must be positive, got {amount}")

    amts = calculate_deposit_tranche_amts(
        amount, info.ratios, view.get_balance(bond, info.collateral), total_debt(view, info)
    )
    if all(a == ZERO for a in amts):
        raise BondError(f"deposit of {amount} into {bond} mints nothing")

    moves = [Move(amount, info.collateral, depositor, bond, f'bond_{bond}_deposit')]
    for tranche, amt in zip(info.tranches, amts):
        if amt > ZERO:
            moves.append(Move(amt, tranche, SYSTEM_WALLET, depositor, f'bond_{bond}_deposit'))
    return build_transaction(view, moves, origin=_origin(bond, "DEPOSIT", nonce))


def compute_redeem(
    view: LedgerView,
    bond: str,
    holder: str,
    amounts: Sequence[Decimal],
    nonce: str = "",
) -> PendingTransaction:
    """Burn an in-ratio set of tranches for a pro-rata share of collateral (pre-maturity)."""
    info = load_bond(view, bond)
    if info.is_mature:
        raise BondError(f"{bond} is mature; use compute_redeem_mature")
    if len(amounts) != info.tranche_count:
        raise ValueError(f"expected {info.tranche_count} amounts, got {len(amounts)}")
    if any(a < ZERO for a in amounts) or all(a == ZERO for a in amounts):
        raise ValueError("redemption amounts must be non-negative and not all zero")

    implied = [a * TRANCHE_RATIO_GRANULARITY / r for a, r in zip(amounts, info.ratios)]
    if max(implied) - min(implied) > _RATIO_TOLERANCE:
        raise BondError(f"redemption amounts {list(amounts)} are not in ratio {list(info.ratios)}")

    debt = total_debt(view, info)
    collateral_out = floor_to(sum(amounts, ZERO) * view.get_balance(bond, info.collateral) / debt)

    moves = [
        Move(a, t, holder, SYSTEM_WALLET, f'bond_{bond}_redeem')
        for t, a in zip(info.tranches, amounts) if a > ZERO
    ]
    if collateral_out > ZERO:
        moves.append(Move(collateral_out, info.collateral, bond, holder, f'bond_{bond}_redeem'))
    return build_transaction(view, moves, origin=_origin(bond, "REDEEM", nonce))


def compute_mature(view: LedgerView, bond: str, nonce: str = "") -> PendingTransaction:
    """Split the bond's collateral into per-tranche pots and flag it mature."""
    info = load_bond(view, bond)
    if info.is_mature:
        raise BondError(f"{bond} already mature")
    if not info.is_due(view.current_time):
        raise BondError(f"{bond} matures at {info.maturity_date}")

    supplies = [tranche_supply(view, t) for t in info.tranches]
    claims = calculate_waterfall(view.get_balance(bond, info.collateral), supplies)
    moves = [
        Move(claim, info.collateral, bond, tranche, f'bond_{bond}_mature')
        for tranche, claim in zip(info.tranches, claims) if claim > ZERO
    ]
    state = view.get_unit_state(bond)
    new_state = {**state, 'is_mature': True}
    changes = [UnitStateChange(unit=bond, old_state=state, new_state=new_state)]
    return build_transaction(view, moves, changes, origin=_origin(bond, "MATURE", nonce))


def compute_redeem_mature(
    view: LedgerView,
    tranche: str,
    holder: str,
    amount: Decimal,
    nonce: str = "",
) -> PendingTransaction:
    """Burn a matured tranche for its share of the tranche's pot."""
    bond = bond_of(view, tranche)
    info = load_bond(view, bond)
    if not info.is_mature:
        raise BondError(f"{bond} not mature")
    if amount <= ZERO:
        raise ValueError(f"redemption amount must be positive, got {amount}")

    pot = view.get_balance(tranche, info.collateral)
    collateral_out = floor_to(pot * amount / tranche_supply(view, tranche))
    moves = [Move(amount, tranche, holder, SYSTEM_WALLET, f'bond_{bond}_redeem_mature')]
    if collateral_out > ZERO:
        moves.append(Move(collateral_out, info.collateral, tranche, holder, f'bond_{bond}_redeem_mature'))
    return build_transaction(view, moves, origin=_origin(bond, "REDEEM_MATURE", nonce))


# =============================================================================
# LEDGER CONVENIENCE
# =============================================================================

def deposit(ledger, bond: str, depositor: str, amount: Decimal) -> List[Decimal]:
    """Execute a deposit; returns the tranche amounts received (most senior first)."""
    info = load_bond(ledger, bond)
    before = [ledger.get_balance(depositor, t) for t in info.tranches]
    ledger.execute_or_raise(compute_deposit(ledger, bond, depositor, amount, ledger.next_nonce(bond)))
    return [ledger.get_balance(depositor, t) - b for t, b in zip(info.tranches, before)]


def redeem(ledger, bond: str, holder: str, amounts: Sequence[Decimal]) -> None:
    ledger.execute_or_raise(compute_redeem(ledger, bond, holder, amounts, ledger.next_nonce(bond)))


def mature(ledger, bond: str) -> None:
    ledger.execute_or_raise(compute_mature(ledger, bond, ledger.next_nonce(bond)))
    ledger.emit(make_event(ledger.current_time, bond, BOND_MATURED, bond))


def redeem_mature(ledger, tranche: str, holder: str, amount: Optional[Decimal] = None) -> None:
    """Redeem `amount` (default: the holder's whole balance) of a matured tranche."""
    if amount is None:
        amount = ledger.get_balance(holder, tranche)
    ledger.execute_or_raise(
        compute_redeem_mature(ledger, tranche, holder, amount, ledger.next_nonce(tranche))
    )
