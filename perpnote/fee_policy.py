"""
fee_policy.py - Deviation-ratio driven fees

The deviation ratio (dr) compares how much of the system's value sits in the
vault versus the note, normalized by the bond's tranche split and a
governance-chosen target:

    dr = (vault_tvl * senior_tr) / (perp_tvl * (GRANULARITY - senior_tr)) / target_subscription_ratio

dr < 1: the note is under-subscribed by the vault. Minting pays the mint fee,
burning is free, and rollovers are subsidised (a negative fee that grows as
dr falls, floored at min_rollover_fee_perc).

dr > 1: the note is over-subscribed. Burning pays the burn fee, minting is
free, and rollovers are charged (dr - 1) * enrichment_slope, capped at 100%.

Vault mint and burn fees are flat percentages; the vault deployment fee is a
flat amount of underlying held back from every deploy(). Vault swaps are disabled (100% fee) when
the post-swap dr leaves the configured bounds or the inputs are not valid.

All percentages carry PERC_DECIMALS (8) decimal places.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    PERC_DECIMALS, TRANCHE_RATIO_GRANULARITY, ONE, ZERO,
    InvalidPerc, InvalidTargetSRBounds, InvalidDRBounds, InvalidConfig,
    to_decimal, floor_to, trunc_to,
)
from .access import AccessControl
from .events import make_event, CONFIG_UPDATED

TARGET_SR_LOWER_BOUND = Decimal("1")
TARGET_SR_UPPER_BOUND = Decimal("2")
MAX_ROLLOVER_FEE_PERC = ONE
INFINITE_DR = Decimal("Infinity")

SWAP_DISABLED = (ZERO, ONE)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SubscriptionParams:
    """System value snapshot used to compute the deviation ratio."""
    perp_tvl: Decimal
    vault_tvl: Decimal
    senior_tr: int
    valid: bool = True  # false when the market oracle reading is stale

    def __post_init__(self):
        if not isinstance(self.perp_tvl, Decimal):
            object.__setattr__(self, 'perp_tvl', to_decimal(self.perp_tvl))
        if not isinstance(self.vault_tvl, Decimal):
            object.__setattr__(self, 'vault_tvl', to_decimal(self.vault_tvl))
        if not 0 < int(self.senior_tr) <= TRANCHE_RATIO_GRANULARITY:
            raise ValueError(f"senior_tr must be in (0, {TRANCHE_RATIO_GRANULARITY}], got {self.senior_tr}")


def _check_perc(name: str, value: Decimal, lower: Decimal = ZERO, upper: Decimal = ONE) -> None:
    if not lower <= value <= upper:
        raise InvalidPerc(f"{name}={value} outside [{lower}, {upper}]")


@dataclass(frozen=True, slots=True)
class FeeConfig:
    """
    Fee parameters. Validated on construction, so every replace() is too.

    Swaps default to disabled (100%).
    """
    target_subscription_ratio: Decimal = Decimal("1.33")
    perp_mint_fee_perc: Decimal = ZERO
    perp_burn_fee_perc: Decimal = ZERO
    debasement_slope: Decimal = ZERO
    enrichment_slope: Decimal = ZERO
    min_rollover_fee_perc: Decimal = Decimal("-0.01")
    vault_mint_fee_perc: Decimal = ZERO
    vault_burn_fee_perc: Decimal = ZERO
    vault_deployment_fee: Decimal = ZERO
    underlying_to_perp_swap_fee_perc: Decimal = ONE
    perp_to_underlying_swap_fee_perc: Decimal = ONE
    swap_dr_lower: Decimal = Decimal("0.75")
    swap_dr_upper: Decimal = Decimal("2")

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, f.name, to_decimal(value))

        if not TARGET_SR_LOWER_BOUND <= self.target_subscription_ratio <= TARGET_SR_UPPER_BOUND:
            raise InvalidTargetSRBounds(
                f"target_subscription_ratio={self.target_subscription_ratio} outside "
                f"[{TARGET_SR_LOWER_BOUND}, {TARGET_SR_UPPER_BOUND}]"
            )
        _check_perc("perp_mint_fee_perc", self.perp_mint_fee_perc, -ONE, ONE)
        _check_perc("perp_burn_fee_perc", self.perp_burn_fee_perc, -ONE, ONE)
        for name in ("vault_mint_fee_perc", "vault_burn_fee_perc",
                     "underlying_to_perp_swap_fee_perc", "perp_to_underlying_swap_fee_perc"):
            _check_perc(name, getattr(self, name))
        _check_perc("min_rollover_fee_perc", self.min_rollover_fee_perc, -ONE, ZERO)
        if self.vault_deployment_fee < ZERO:
            raise InvalidConfig(f"vault_deployment_fee must be non-negative, got {self.vault_deployment_fee}")
        if self.debasement_slope < ZERO or self.enrichment_slope < ZERO:
            raise InvalidPerc("rollover slopes must be non-negative")
        if not ZERO <= self.swap_dr_lower <= self.swap_dr_upper:
            raise InvalidDRBounds(f"swap dr bounds [{self.swap_dr_lower}, {self.swap_dr_upper}]")


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_deviation_ratio(params: SubscriptionParams, target_subscription_ratio: Decimal) -> Decimal:
    """dr with PERC_DECIMALS places; infinite when the note holds no value."""
    junior_tr = TRANCHE_RATIO_GRANULARITY - int(params.senior_tr)
    if params.perp_tvl <= ZERO or junior_tr == 0:
        return INFINITE_DR
    subscription_ratio = (params.vault_tvl * params.senior_tr) / (params.perp_tvl * junior_tr)
    return floor_to(subscription_ratio / target_subscription_ratio, PERC_DECIMALS)


def calculate_rollover_fee_perc(dr: Decimal, config: FeeConfig) -> Decimal:
    """Signed rollover fee; negative means the note engine pays the roller."""
    if dr.is_infinite():
        return MAX_ROLLOVER_FEE_PERC if config.enrichment_slope > ZERO else ZERO
    if dr > ONE:
        fee = min((dr - ONE) * config.enrichment_slope, MAX_ROLLOVER_FEE_PERC)
        return trunc_to(fee, PERC_DECIMALS)
    denominator = min(dr * config.target_subscription_ratio, ONE)
    if denominator <= ZERO:
        return config.min_rollover_fee_perc
    fee = -(ONE - dr) * config.debasement_slope / denominator
    return max(trunc_to(fee, PERC_DECIMALS), config.min_rollover_fee_perc)


# ============================================================================
# FEE POLICY
# ============================================================================

class FeePolicy:
    """
    Owner-governed fee schedule.

    Example:
        policy = FeePolicy("gov", FeeConfig(perp_mint_fee_perc=Decimal("0.025")))
        dr = policy.compute_deviation_ratio(SubscriptionParams(Decimal(100), Decimal(500), 200))
        policy.compute_perp_mint_fee_perc(dr)
    """

    decimals = PERC_DECIMALS

    def __init__(self, owner: str, config: Optional[FeeConfig] = None, ledger=None, symbol: str = "FEE_POLICY"):
        self.access = AccessControl(owner)
        self.config = config or FeeConfig()
        self.ledger = ledger
        self.symbol = symbol

    # ---------------------------------------------------------------- queries

    def compute_deviation_ratio(self, params: SubscriptionParams) -> Decimal:
        return calculate_deviation_ratio(params, self.config.target_subscription_ratio)

    def compute_perp_mint_fee_perc(self, dr: Decimal) -> Decimal:
        return self.config.perp_mint_fee_perc if dr <= ONE else ZERO

    def compute_perp_burn_fee_perc(self, dr: Decimal) -> Decimal:
        return self.config.perp_burn_fee_perc if dr > ONE else ZERO

    def compute_perp_rollover_fee_perc(self, dr: Decimal) -> Decimal:
        return calculate_rollover_fee_perc(dr, self.config)

    def compute_vault_mint_fee_perc(self) -> Decimal:
        return self.config.vault_mint_fee_perc

    def compute_vault_burn_fee_perc(self) -> Decimal:
        return self.config.vault_burn_fee_perc

    def compute_vault_deployment_fee(self) -> Decimal:
        """Underlying the vault keeps idle on every deploy."""
        return self.config.vault_deployment_fee

    def compute_underlying_to_perp_swap_fee_percs(self, dr_post: Decimal, valid: bool = True) -> Tuple[Decimal, Decimal]:
        """(perp fee, vault fee) for selling notes out of the vault; disabled below the lower bound."""
        cfg = self.config
        if not valid or dr_post < cfg.swap_dr_lower:
            return SWAP_DISABLED
        return self.compute_perp_mint_fee_perc(dr_post), cfg.underlying_to_perp_swap_fee_perc

    def compute_perp_to_underlying_swap_fee_percs(self, dr_post: Decimal, valid: bool = True) -> Tuple[Decimal, Decimal]:
        """(perp fee, vault fee) for buying notes into the vault; disabled above the upper bound."""
        cfg = self.config
        if not valid or dr_post > cfg.swap_dr_upper:
            return SWAP_DISABLED
        return self.compute_perp_burn_fee_perc(dr_post), cfg.perp_to_underlying_swap_fee_perc

    # ---------------------------------------------------------------- setters

    def update_config(self, caller: str, **changes) -> FeeConfig:
        """Replace config fields; the new config is validated as a whole."""
        self.access.require_owner(caller)
        self.config = replace(self.config, **changes)
        if self.ledger is not None:
            self.ledger.emit(make_event(self.ledger.current_time, self.symbol, CONFIG_UPDATED,
                                        **{k: str(v) for k, v in changes.items()}))
        return self.config

    def update_target_subscription_ratio(self, caller: str, ratio) -> None:
        self.update_config(caller, target_subscription_ratio=to_decimal(ratio))

    def update_perp_mint_fees(self, caller: str, perc) -> None:
        self.update_config(caller, perp_mint_fee_perc=to_decimal(perc))

    def update_perp_burn_fees(self, caller: str, perc) -> None:
        self.update_config(caller, perp_burn_fee_perc=to_decimal(perc))

    def update_perp_rollover_fees(self, caller: str, debasement_slope, enrichment_slope, min_rollover_fee_perc) -> None:
        self.update_config(
            caller,
            debasement_slope=to_decimal(debasement_slope),
            enrichment_slope=to_decimal(enrichment_slope),
            min_rollover_fee_perc=to_decimal(min_rollover_fee_perc),
        )

    def update_vault_mint_fees(self, caller: str, perc) -> None:
        self.update_config(caller, vault_mint_fee_perc=to_decimal(perc))

    def update_vault_burn_fees(self, caller: str, perc) -> None:
        self.update_config(caller, vault_burn_fee_perc=to_decimal(perc))

    def update_vault_deployment_fees(self, caller: str, fee) -> None:
        self.update_config(caller, vault_deployment_fee=to_decimal(fee))

    def update_vault_swap_fees(self, caller: str, underlying_to_perp, perp_to_underlying) -> None:
        self.update_config(
            caller,
            underlying_to_perp_swap_fee_perc=to_decimal(underlying_to_perp),
            perp_to_underlying_swap_fee_perc=to_decimal(perp_to_underlying),
        )

    def update_swap_dr_bounds(self, caller: str, lower, upper) -> None:
        self.update_config(caller, swap_dr_lower=to_decimal(lower), swap_dr_upper=to_decimal(upper))

    def __repr__(self) -> str:
        return f"FeePolicy(owner={self.access.owner}, {self.config})"
