"""
Units module - Tranched bonds and their tranches.

A bond splits deposited collateral into tranches of fixed ratios. Before
maturity a full set of tranches redeems for collateral; after maturity each
tranche redeems against its own senior-first pot.
"""

from .bond import (
    BondInfo,
    load_bond,
    is_tranche,
    bond_of,
    tranche_supply,
    total_debt,
    calculate_waterfall,
    calculate_deposit_tranche_amts,
    compute_proportional_redemption_amts,
    compute_tranche_collateralization,
    tranche_symbol,
    create_bond_units,
    create_bond,
    compute_deposit,
    compute_redeem,
    compute_mature,
    compute_redeem_mature,
    deposit,
    redeem,
    mature,
    redeem_mature,
)

__all__ = [
    'BondInfo',
    'load_bond',
    'is_tranche',
    'bond_of',
    'tranche_supply',
    'total_debt',
    'calculate_waterfall',
    'calculate_deposit_tranche_amts',
    'compute_proportional_redemption_amts',
    'compute_tranche_collateralization',
    'tranche_symbol',
    'create_bond_units',
    'create_bond',
    'compute_deposit',
    'compute_redeem',
    'compute_mature',
    'compute_redeem_mature',
    'deposit',
    'redeem',
    'mature',
    'redeem_mature',
]
