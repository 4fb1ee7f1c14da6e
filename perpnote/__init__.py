"""
perpnote - Perpetual tranche note, rollover vault and fee policy

A double-entry ledger simulation of a perpetual note backed by a rotating
reserve of bond tranches, with a vault that keeps the reserve rolled.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from perpnote import (
        Ledger, collateral_token, BondIssuer, IssuerConfig, FeePolicy,
        PerpetualTranche, NoteConfig, CDRPricingStrategy,
        TrancheClassYieldStrategy, define_bond_yields, deposit,
    )

    ledger = Ledger("main", datetime(2024, 1, 1), verbose=False, test_mode=True)
    ledger.register_unit(collateral_token("AMPL", "Ampleforth"))
    ledger.register_wallet("alice")
    ledger.set_balance("alice", "AMPL", Decimal("1000"))

    issuer = BondIssuer(ledger, "ISSUER", "AMPL", IssuerConfig(
        max_maturity_sec=28 * 86400, tranche_ratios=(200, 800),
        min_issue_time_interval_sec=7 * 86400), owner="gov")
    yields = TrancheClassYieldStrategy("gov")
    perp = PerpetualTranche(ledger, "SPOT", "SPOT note", owner="gov")
    perp.init("gov", "AMPL", issuer, FeePolicy("gov"), CDRPricingStrategy(), yields,
              NoteConfig(0, 90 * 86400, fee_collector="treasury"))

    perp.update_state()
    bond = perp.get_deposit_bond()
    define_bond_yields(yields, "gov", ledger, bond, [1, 0])
    tranches = deposit(ledger, bond, "alice", Decimal("500"))
    perp.mint("alice", f"{bond}-T0", tranches[0])
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
    collateral_token,
    content_hash,
    SYSTEM_WALLET,
    UNIT_TYPE_COLLATERAL,
    UNIT_TYPE_BOND,
    UNIT_TYPE_TRANCHE,
    UNIT_TYPE_BOND_ISSUER,
    UNIT_TYPE_PERP_NOTE,
    UNIT_TYPE_VAULT_SHARE,
    TOKEN_DECIMALS,
    PRICE_DECIMALS,
    YIELD_DECIMALS,
    PERC_DECIMALS,
    TRANCHE_RATIO_GRANULARITY,
)

# Errors
from .core import (
    LedgerError,
    InsufficientFunds,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferFailed,
    BondError,
    UnacceptableDeposit,
    UnacceptableMintAmt,
    ExceededMaxSupply,
    ExceededMaxMintPerTranche,
    UnacceptableRedemption,
    UnacceptableRedemptionTranche,
    UnacceptableRollover,
    UnacceptableRolloverAmt,
    QueueError,
    InsufficientDeployment,
    DeployedCountOverLimit,
    UnexpectedAsset,
    InsufficientLiquidity,
    UnacceptableSwap,
    UnacceptableShareAmt,
    InvalidPerc,
    InvalidTargetSRBounds,
    InvalidDRBounds,
    InvalidConfig,
    Unauthorized,
    AlreadyInitialized,
    NotInitialized,
    Paused,
    ReentrantCall,
)

# Ledger
from .ledger import Ledger

# Change notifications
from .events import Event, make_event

# Capabilities
from .access import AccessControl, OneTimeInit, PauseControl, ReentrancyGuard

# Bonds
from .units.bond import (
    BondInfo,
    load_bond,
    bond_of,
    tranche_symbol,
    create_bond,
    deposit,
    redeem,
    mature,
    redeem_mature,
    compute_tranche_collateralization,
)
from .issuer import BondIssuer, IssuerConfig

# Strategies
from .strategies.pricing import UnitPricingStrategy, CDRPricingStrategy, CDRLBPricingStrategy
from .strategies.yield_strategy import TrancheClassYieldStrategy, tranche_class, define_bond_yields

# Fees
from .fee_policy import FeePolicy, FeeConfig, SubscriptionParams

# Note engine
from .redemption_queue import RedemptionQueue
from .perpetual_tranche import (
    PerpetualTranche,
    NoteConfig,
    MintResult,
    RedemptionResult,
    RolloverData,
)

# Vault
from .rollover_vault import RolloverVault, VaultConfig, TokenAmount, SwapQuote

# Pricing sources
from .pricing_source import PriceReading, PricingSource, StaticPricingSource, TimeSeriesPricingSource

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'collateral_token', 'content_hash', 'SYSTEM_WALLET',
    'UNIT_TYPE_COLLATERAL', 'UNIT_TYPE_BOND', 'UNIT_TYPE_TRANCHE', 'UNIT_TYPE_BOND_ISSUER',
    'UNIT_TYPE_PERP_NOTE', 'UNIT_TYPE_VAULT_SHARE',
    'TOKEN_DECIMALS', 'PRICE_DECIMALS', 'YIELD_DECIMALS', 'PERC_DECIMALS', 'TRANCHE_RATIO_GRANULARITY',
    # Errors
    'LedgerError', 'InsufficientFunds', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered', 'TransferFailed', 'BondError',
    'UnacceptableDeposit', 'UnacceptableMintAmt', 'ExceededMaxSupply', 'ExceededMaxMintPerTranche',
    'UnacceptableRedemption', 'UnacceptableRedemptionTranche', 'UnacceptableRollover',
    'UnacceptableRolloverAmt', 'QueueError', 'InsufficientDeployment', 'DeployedCountOverLimit',
    'UnexpectedAsset', 'InsufficientLiquidity', 'UnacceptableSwap', 'UnacceptableShareAmt',
    'InvalidPerc', 'InvalidTargetSRBounds', 'InvalidDRBounds', 'InvalidConfig',
    'Unauthorized', 'AlreadyInitialized', 'NotInitialized', 'Paused', 'ReentrantCall',
    # Ledger and notifications
    'Ledger', 'Event', 'make_event',
    'AccessControl', 'OneTimeInit', 'PauseControl', 'ReentrancyGuard',
    # Bonds
    'BondInfo', 'load_bond', 'bond_of', 'tranche_symbol', 'create_bond',
    'deposit', 'redeem', 'mature', 'redeem_mature', 'compute_tranche_collateralization',
    'BondIssuer', 'IssuerConfig',
    # Strategies and fees
    'UnitPricingStrategy', 'CDRPricingStrategy', 'CDRLBPricingStrategy',
    'TrancheClassYieldStrategy', 'tranche_class', 'define_bond_yields',
    'FeePolicy', 'FeeConfig', 'SubscriptionParams',
    # Note engine and vault
    'RedemptionQueue', 'PerpetualTranche', 'NoteConfig', 'MintResult', 'RedemptionResult', 'RolloverData',
    'RolloverVault', 'VaultConfig', 'TokenAmount', 'SwapQuote',
    # Pricing sources
    'PriceReading', 'PricingSource', 'StaticPricingSource', 'TimeSeriesPricingSource',
]

__version__ = '0.1.0'
