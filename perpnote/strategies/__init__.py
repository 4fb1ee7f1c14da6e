"""
strategies - Reserve valuation for the note engine.

- pricing: price per unit of debt for tranches and settled collateral
- yield_strategy: per tranche-class yield factors
"""

from .pricing import (
    PricingStrategy,
    UnitPricingStrategy,
    CDRPricingStrategy,
    CDRLBPricingStrategy,
    UNIT_PRICE,
)
from .yield_strategy import (
    YieldStrategy,
    TrancheClassYieldStrategy,
    tranche_class,
    define_bond_yields,
)

__all__ = [
    'PricingStrategy',
    'UnitPricingStrategy',
    'CDRPricingStrategy',
    'CDRLBPricingStrategy',
    'UNIT_PRICE',
    'YieldStrategy',
    'TrancheClassYieldStrategy',
    'tranche_class',
    'define_bond_yields',
]
