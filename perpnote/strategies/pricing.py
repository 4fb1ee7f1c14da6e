"""
pricing.py - Reserve pricing strategies

Prices are quoted in collateral per unit of debt with PRICE_DECIMALS (8)
decimal places, rounded down. The set of strategies is closed:

- UnitPricingStrategy: every asset is worth 1.
- CDRPricingStrategy: collateral-to-debt ratio. Immature tranches price at 1;
  a matured tranche prices at its pot over its supply; settled collateral
  prices at collateral_balance / mature_tranche_balance.
- CDRLBPricingStrategy: CDR with a floor of 1.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Protocol, runtime_checkable

from ..core import LedgerView, PRICE_DECIMALS, ONE, ZERO, floor_to
from ..units.bond import bond_of, load_bond, tranche_supply


UNIT_PRICE = ONE


@runtime_checkable
class PricingStrategy(Protocol):
    """Prices reserve assets for the note engine."""
    decimals: int

    def compute_tranche_price(self, view: LedgerView, tranche: str) -> Decimal:
        ...

    def compute_mature_tranche_price(
        self,
        view: LedgerView,
        collateral: str,
        collateral_balance: Decimal,
        mature_tranche_balance: Decimal,
    ) -> Decimal:
        ...


class UnitPricingStrategy:
    """Every asset is priced at 1."""
    decimals = PRICE_DECIMALS

    def compute_tranche_price(self, view: LedgerView, tranche: str) -> Decimal:
        return UNIT_PRICE

    def compute_mature_tranche_price(self, view, collateral, collateral_balance, mature_tranche_balance) -> Decimal:
        return UNIT_PRICE

    def __repr__(self) -> str:
        return "UnitPricingStrategy()"


class CDRPricingStrategy:
    """Collateral-to-debt ratio pricing."""
    decimals = PRICE_DECIMALS

    def compute_tranche_price(self, view: LedgerView, tranche: str) -> Decimal:
        info = load_bond(view, bond_of(view, tranche))
        if not info.is_mature:
            return UNIT_PRICE
        supply = tranche_supply(view, tranche)
        if supply == ZERO:
            return ZERO
        return floor_to(view.get_balance(tranche, info.collateral) / supply, self.decimals)

    def compute_mature_tranche_price(
        self,
        view: LedgerView,
        collateral: str,
        collateral_balance: Decimal,
        mature_tranche_balance: Decimal,
    ) -> Decimal:
        if mature_tranche_balance == ZERO:
            return UNIT_PRICE
        return floor_to(collateral_balance / mature_tranche_balance, self.decimals)

    def __repr__(self) -> str:
        return "CDRPricingStrategy()"


class CDRLBPricingStrategy(CDRPricingStrategy):
    """CDR pricing that never goes below 1."""

    def compute_tranche_price(self, view: LedgerView, tranche: str) -> Decimal:
        return max(UNIT_PRICE, super().compute_tranche_price(view, tranche))

    def compute_mature_tranche_price(self, view, collateral, collateral_balance, mature_tranche_balance) -> Decimal:
        return max(UNIT_PRICE, super().compute_mature_tranche_price(
            view, collateral, collateral_balance, mature_tranche_balance
        ))

    def __repr__(self) -> str:
        return "CDRLBPricingStrategy()"
