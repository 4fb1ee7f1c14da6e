"""
perp_system.py - Test Helper that wires a complete note system

Builds a ledger with a collateral token, a weekly bond issuer, a fee policy,
yield and pricing strategies, a note engine and (optionally) a vault, all
aligned so the first issue window starts at T0.

Used by fixtures in conftest.py and directly by hypothesis tests, which
cannot share function-scoped fixtures between examples.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from perpnote import (
    Ledger, Move, SYSTEM_WALLET, build_transaction, collateral_token,
    BondIssuer, IssuerConfig, FeePolicy, FeeConfig,
    CDRPricingStrategy, TrancheClassYieldStrategy, define_bond_yields,
    PerpetualTranche, NoteConfig, RolloverVault, VaultConfig,
    deposit, InsufficientDeployment,
)


T0 = datetime(2024, 1, 1)
DAY = 86400
WEEK = 7 * DAY
EPOCH = datetime(1970, 1, 1)

GOV = "gov"
TREASURY = "treasury"
COLLATERAL = "AMPL"
NOTE = "SPOT"
VAULT = "VAULT"
ISSUER = "ISSUER"


def bond_symbol(n: int) -> str:
    return f"{ISSUER}-B{n}"


def tranche(n: int, index: int) -> str:
    return f"{ISSUER}-B{n}-T{index}"


def window_offset(start: datetime, interval_sec: int) -> int:
    """Offset that makes an issue window start exactly at `start`."""
    return int((start - EPOCH).total_seconds()) % interval_sec


@dataclass
class PerpSystem:
    ledger: Ledger
    issuer: BondIssuer
    fee_policy: FeePolicy
    yields: TrancheClassYieldStrategy
    perp: PerpetualTranche
    vault: Optional[RolloverVault] = None

    # ------------------------------------------------------------------ helpers

    def fund(self, wallet: str, amount, unit: str = COLLATERAL) -> None:
        """Issue `amount` of `unit` from SYSTEM_WALLET into `wallet`."""
        self.ledger.ensure_wallet(wallet)
        self.ledger.execute_or_raise(build_transaction(self.ledger, [
            Move(Decimal(str(amount)), unit, SYSTEM_WALLET, wallet, self.ledger.next_nonce("fund"))
        ]))

    def transfer(self, source: str, dest: str, amount, unit: str) -> None:
        self.ledger.execute_or_raise(build_transaction(self.ledger, [
            Move(Decimal(str(amount)), unit, source, dest, self.ledger.next_nonce("transfer"))
        ]))

    def deposit_bond(self) -> str:
        """Advance the note engine and return its current deposit bond."""
        self.perp.update_state()
        return self.perp.get_deposit_bond()

    def make_tranches(self, wallet: str, collateral_amt) -> List[Decimal]:
        """Fund `wallet` and deposit into the deposit bond; returns tranche amounts received."""
        bond = self.deposit_bond()
        self.fund(wallet, collateral_amt)
        return deposit(self.ledger, bond, wallet, Decimal(str(collateral_amt)))

    def mint_senior(self, wallet: str, collateral_amt):
        """Tranche `collateral_amt` and mint notes with the whole senior tranche."""
        amts = self.make_tranches(wallet, collateral_amt)
        senior = f"{self.perp.get_deposit_bond()}-T0"
        return self.perp.mint(wallet, senior, amts[0])

    def advance(self, days: float = 0, seconds: int = 0) -> datetime:
        new_time = self.ledger.current_time + timedelta(days=days, seconds=seconds)
        self.ledger.advance_time(new_time)
        return new_time

    def advance_to(self, days: float) -> datetime:
        """Move the clock to T0 + days."""
        new_time = T0 + timedelta(days=days)
        self.ledger.advance_time(new_time)
        return new_time

    def apply(self, action) -> None:
        """
        Run one generated action:
            ("mint", wallet, collateral)   tranche and mint with the senior tranche
            ("redeem", wallet, notes)      redeem up to `notes` of the redeemable asset
            ("advance", days)
            ("stake", wallet, collateral)  deposit into the vault
            ("deploy",)                    recover, then deploy if anything is idle
        """
        kind = action[0]
        if kind == "mint":
            self.mint_senior(action[1], action[2])
        elif kind == "redeem":
            self.perp.update_state()
            wallet = action[1]
            amt = min(Decimal(str(action[2])), self.perp.balance_of(wallet))
            token = self.perp.get_redemption_queue_head() or next(iter(self.perp.reserve_tokens()), None)
            if token is not None and amt > 0:
                self.perp.redeem(wallet, token, amt)
        elif kind == "advance":
            self.advance(days=action[1])
        elif kind == "stake":
            self.fund(action[1], action[2])
            self.vault.deposit(action[1], action[2])
        elif kind == "deploy":
            self.vault.recover()
            if self.ledger.get_balance(self.vault.wallet, COLLATERAL) > 0:
                try:
                    self.vault.deploy()
                except InsufficientDeployment:
                    pass
        else:
            raise ValueError(f"unknown action {kind}")

    def snapshot(self) -> dict:
        """Every balance and unit state plus log lengths, for before/after comparison."""
        return {
            'positions': {u: dict(self.ledger.get_positions(u)) for u in self.ledger.units},
            'states': {u: self.ledger.get_unit_state(u) for u in self.ledger.units},
            'events': len(self.ledger.event_log),
            'transactions': len(self.ledger.transaction_log),
        }

    def conserved(self) -> bool:
        """Every unit nets to zero across all wallets, SYSTEM_WALLET included."""
        expected = {u: Decimal("0") for u in self.ledger.units}
        return self.ledger.verify_double_entry(expected)['valid']


def build_system(
    min_maturity_sec: int = 0,
    max_maturity_sec: int = 90 * DAY,
    fee_config: Optional[FeeConfig] = None,
    yields: Sequence = (1, 0),
    ratios: Sequence[int] = (200, 800),
    pricing_strategy=None,
    with_vault: bool = False,
    vault_config: Optional[VaultConfig] = None,
    market_oracle=None,
    verbose: bool = False,
    **note_kwargs,
) -> PerpSystem:
    """
    Wire a full system at T0. The first bond is issued and set as deposit bond.

    Defaults: bonds of (200, 800) maturing 28 days after issue, one per week;
    senior yield 1, junior yield 0; rollover fee floor 0 so amounts stay round.
    """
    ledger = Ledger("test", T0, verbose=verbose, test_mode=True)
    ledger.register_unit(collateral_token(COLLATERAL, "Ampleforth"))
    for wallet in ("alice", "bob", "charlie"):
        ledger.register_wallet(wallet)

    issuer = BondIssuer(ledger, ISSUER, COLLATERAL, IssuerConfig(
        max_maturity_sec=28 * DAY,
        tranche_ratios=tuple(ratios),
        min_issue_time_interval_sec=WEEK,
        issue_window_offset_sec=window_offset(T0, WEEK),
    ), owner=GOV)
    fee_policy = FeePolicy(GOV, fee_config or FeeConfig(min_rollover_fee_perc=Decimal("0")),
                           ledger=ledger, symbol="FEES")
    yield_strategy = TrancheClassYieldStrategy(GOV)

    perp = PerpetualTranche(ledger, NOTE, "SPOT note", owner=GOV)
    perp.init(
        GOV, COLLATERAL, issuer, fee_policy,
        pricing_strategy or CDRPricingStrategy(), yield_strategy,
        NoteConfig(min_maturity_sec, max_maturity_sec, fee_collector=TREASURY, **note_kwargs),
    )

    system = PerpSystem(ledger, issuer, fee_policy, yield_strategy, perp)
    system.deposit_bond()
    bond = issuer.latest_bond()
    # Tranche classes depend only on collateral, ratios and seniority, so the
    # yields defined here cover every later bond from the same issuer.
    define_bond_yields(yield_strategy, GOV, ledger, bond, list(yields))

    if with_vault:
        vault = RolloverVault(ledger, VAULT, "Rollover vault", owner=GOV)
        vault.init(GOV, perp, config=vault_config, market_oracle=market_oracle)
        perp.update_vault(GOV, vault)
        system.vault = vault
    return system
