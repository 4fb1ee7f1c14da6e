"""
yield_strategy.py - Tranche-class yield factors

A tranche class groups tranches with the same risk shape: same collateral,
same ratio vector, same seniority index. Governance defines one yield factor
per class (YIELD_DECIMALS = 18). Undefined classes yield 0, which makes the
tranche worthless to the note engine.

The note engine freezes the factor per tranche instance the first time it
accepts that tranche; later changes here only affect tranches not yet seen.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Protocol, runtime_checkable

from ..core import LedgerView, YIELD_DECIMALS, ZERO, InvalidPerc, content_hash, floor_to, to_decimal
from ..access import AccessControl
from ..units.bond import bond_of, load_bond


@runtime_checkable
class YieldStrategy(Protocol):
    decimals: int

    def compute_yield(self, view: LedgerView, tranche: str) -> Decimal:
        ...


def tranche_class(view: LedgerView, tranche: str) -> str:
    """Class hash over (collateral, ratios, seniority index)."""
    info = load_bond(view, bond_of(view, tranche))
    return content_hash(info.collateral, list(info.ratios), info.tranche_index(tranche))


class TrancheClassYieldStrategy:
    """Owner-maintained table of class -> yield factor."""
    decimals = YIELD_DECIMALS

    def __init__(self, owner: str):
        self.access = AccessControl(owner)
        self._defined_yields: Dict[str, Decimal] = {}

    def tranche_class(self, view: LedgerView, tranche: str) -> str:
        return tranche_class(view, tranche)

    def update_defined_yield(self, caller: str, class_hash: str, yield_factor) -> None:
        self.access.require_owner(caller)
        value = to_decimal(yield_factor)
        if value < ZERO:
            raise InvalidPerc(f"yield must be non-negative, got {value}")
        self._defined_yields[class_hash] = floor_to(value, self.decimals)

    def defined_yield(self, class_hash: str) -> Decimal:
        return self._defined_yields.get(class_hash, ZERO)

    def compute_yield(self, view: LedgerView, tranche: str) -> Decimal:
        return self.defined_yield(self.tranche_class(view, tranche))

    def __repr__(self) -> str:
        return f"TrancheClassYieldStrategy({len(self._defined_yields)} classes)"


def define_bond_yields(strategy: TrancheClassYieldStrategy, caller: str, view: LedgerView,
                       bond: str, yields) -> None:
    """Define yields for every tranche class of `bond`, most senior first."""
    info = load_bond(view, bond)
    if len(yields) != info.tranche_count:
        raise ValueError(f"expected {info.tranche_count} yields, got {len(yields)}")
    for tranche, y in zip(info.tranches, yields):
        strategy.update_defined_yield(caller, tranche_class(view, tranche), y)
