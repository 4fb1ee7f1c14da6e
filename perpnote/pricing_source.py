"""
pricing_source.py - Market oracles with validity flags

Oracles report a PriceReading: the value plus a validity flag. A reading is
invalid when there is no observation or the latest observation is older than
the source's staleness limit. Callers treat invalid readings as unhealthy
and must not act on the value.

Classes:
- PricingSource: Protocol defining the oracle interface
- StaticPricingSource: Time-independent prices (always valid when present)
- TimeSeriesPricingSource: Historical observations with a staleness limit
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .core import ZERO, to_decimal


@dataclass(frozen=True, slots=True)
class PriceReading:
    value: Decimal
    valid: bool

    @classmethod
    def missing(cls) -> PriceReading:
        return cls(ZERO, False)


@runtime_checkable
class PricingSource(Protocol):
    """Oracle interface: prices in collateral-neutral units at a timestamp."""

    def get_reading(self, unit_symbol: str, timestamp: datetime) -> PriceReading:
        ...

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        ...


class StaticPricingSource:
    """
    Pricing source with static prices (time-independent).

    Readings for known symbols are always valid; unknown symbols are invalid.
    """

    def __init__(self, prices: Dict[str, Decimal]):
        self.prices = {k: to_decimal(v) for k, v in prices.items()}

    def get_reading(self, unit_symbol: str, timestamp: datetime) -> PriceReading:
        if unit_symbol not in self.prices:
            return PriceReading.missing()
        return PriceReading(self.prices[unit_symbol], True)

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        return self.prices.get(unit_symbol)

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        return {unit: self.prices[unit] for unit in units if unit in self.prices}

    def update_price(self, unit_symbol: str, price: Decimal):
        self.prices[unit_symbol] = to_decimal(price)

    def remove_price(self, unit_symbol: str):
        self.prices.pop(unit_symbol, None)

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices)"


class TimeSeriesPricingSource:
    """
    Pricing source with time-varying prices.

    Uses the most recent observation at or before the requested timestamp.
    With max_staleness set, an observation older than that is reported as
    an invalid reading.

    Example:
        oracle = TimeSeriesPricingSource({'AMPL': [(t0, 1), (t1, Decimal("1.02"))]},
                                         max_staleness=timedelta(hours=24))
        reading = oracle.get_reading('AMPL', t1 + timedelta(hours=25))
        assert not reading.valid
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        max_staleness: Optional[timedelta] = None,
    ):
        self.max_staleness = max_staleness
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for unit, path in price_paths.items():
                if not path:
                    continue
                self.price_history[unit] = sorted(
                    ((ts, to_decimal(p)) for ts, p in path), key=lambda x: x[0]
                )

    def add_price(self, unit_symbol: str, timestamp: datetime, price: Decimal):
        history = self.price_history.setdefault(unit_symbol, [])
        history.append((timestamp, to_decimal(price)))
        history.sort(key=lambda x: x[0])

    def _latest(self, unit_symbol: str, timestamp: datetime) -> Optional[Tuple[datetime, Decimal]]:
        history = self.price_history.get(unit_symbol)
        if not history:
            return None
        idx = bisect_right([ts for ts, _ in history], timestamp)
        if idx == 0:
            return None
        return history[idx - 1]

    def get_reading(self, unit_symbol: str, timestamp: datetime) -> PriceReading:
        latest = self._latest(unit_symbol, timestamp)
        if latest is None:
            return PriceReading.missing()
        observed_at, price = latest
        if self.max_staleness is not None and timestamp - observed_at > self.max_staleness:
            return PriceReading(price, False)
        return PriceReading(price, True)

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Latest price at or before timestamp, ignoring staleness."""
        latest = self._latest(unit_symbol, timestamp)
        return latest[1] if latest else None

    def __repr__(self):
        total = sum(len(h) for h in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} units, {total} observations)"
