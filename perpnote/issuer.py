"""
issuer.py - Periodic bond issuer

Issues a new tranched bond on a fixed cadence. Issue times are aligned to
windows: a bond may be issued once now >= last_window + min_issue_time_interval,
and the window start is now rounded down to the interval, shifted by
issue_window_offset.

Issuer history (issued bonds, last window) lives in an issuer unit's state so
that an operation which issues a bond and then fails rolls the issue back too.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from .core import (
    Unit, UnitStateChange, TransactionOrigin, OriginType, build_transaction,
    UNIT_TYPE_BOND_ISSUER, TRANCHE_RATIO_GRANULARITY, InvalidConfig,
    _freeze_state,
)
from .access import AccessControl
from .events import make_event, BOND_ISSUED, CONFIG_UPDATED
from .units.bond import BondInfo, create_bond, load_bond

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True, slots=True)
class IssuerConfig:
    """Issuance cadence and bond terms."""
    max_maturity_sec: int
    tranche_ratios: Tuple[int, ...]
    min_issue_time_interval_sec: int
    issue_window_offset_sec: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'tranche_ratios', tuple(int(r) for r in self.tranche_ratios))
        if self.max_maturity_sec <= 0:
            raise InvalidConfig("max_maturity_sec must be positive")
        if self.min_issue_time_interval_sec <= 0:
            raise InvalidConfig("min_issue_time_interval_sec must be positive")
        if not 0 <= self.issue_window_offset_sec < self.min_issue_time_interval_sec:
            raise InvalidConfig("issue_window_offset_sec must be inside the issue interval")
        if sum(self.tranche_ratios) != TRANCHE_RATIO_GRANULARITY or any(r <= 0 for r in self.tranche_ratios):
            raise InvalidConfig(f"tranche ratios must be positive and sum to {TRANCHE_RATIO_GRANULARITY}")


def calculate_issue_window(now: datetime, config: IssuerConfig) -> datetime:
    """Start of the issue window containing `now`."""
    elapsed = int((now - _EPOCH).total_seconds()) - config.issue_window_offset_sec
    aligned = elapsed - elapsed % config.min_issue_time_interval_sec
    return _EPOCH + timedelta(seconds=aligned + config.issue_window_offset_sec)


class BondIssuer:
    """
    Issues bonds on `collateral` and tracks which bonds it issued.

    Example:
        issuer = BondIssuer(ledger, "ISSUER", "AMPL", IssuerConfig(
            max_maturity_sec=28 * 86400, tranche_ratios=(200, 800),
            min_issue_time_interval_sec=7 * 86400), owner="gov")
        bond = issuer.get_latest_bond()
    """

    def __init__(self, ledger, symbol: str, collateral: str, config: IssuerConfig, owner: str):
        self.ledger = ledger
        self.symbol = symbol
        self.collateral = collateral
        self.config = config
        self.access = AccessControl(owner)
        ledger.register_unit(Unit(
            symbol=symbol,
            name=f"Bond issuer on {collateral}",
            unit_type=UNIT_TYPE_BOND_ISSUER,
            _frozen_state=_freeze_state({
                'collateral': collateral,
                'issued': [],
                'last_issue_window': None,
            }),
        ))

    # ------------------------------------------------------------------ queries

    def issued_bonds(self) -> List[str]:
        return list(self.ledger.get_unit_state(self.symbol)['issued'])

    def issued_count(self) -> int:
        return len(self.issued_bonds())

    def is_instance(self, bond: str) -> bool:
        return bond in self.issued_bonds()

    def latest_bond(self) -> Optional[str]:
        issued = self.issued_bonds()
        return issued[-1] if issued else None

    def is_issue_due(self) -> bool:
        last = self.ledger.get_unit_state(self.symbol)['last_issue_window']
        if last is None:
            return True
        return self.ledger.current_time >= last + timedelta(seconds=self.config.min_issue_time_interval_sec)

    # --------------------------------------------------------------- mutations

    def issue(self) -> Optional[BondInfo]:
        """Issue a bond if the current window has none yet; returns it or None."""
        if not self.is_issue_due():
            return None
        cfg = self.config
        ledger = self.ledger
        with ledger.atomic():
            now = ledger.current_time
            state = ledger.get_unit_state(self.symbol)
            bond_symbol = f"{self.symbol}-B{len(state['issued'])}"
            info = create_bond(
                ledger, bond_symbol, self.collateral, cfg.tranche_ratios,
                now + timedelta(seconds=cfg.max_maturity_sec),
                nonce=ledger.next_nonce(self.symbol),
            )
            new_state = {
                **state,
                'issued': state['issued'] + [bond_symbol],
                'last_issue_window': calculate_issue_window(now, cfg),
            }
            ledger.execute_or_raise(build_transaction(
                ledger, [], [UnitStateChange(self.symbol, state, new_state)],
                origin=TransactionOrigin(OriginType.LIFECYCLE, ledger.next_nonce(self.symbol),
                                         self.symbol, "ISSUE"),
            ))
            ledger.emit(make_event(now, self.symbol, BOND_ISSUED, bond_symbol,
                                   maturity=info.maturity_date))
        if ledger.verbose:
            print(f"🏦 ISSUED {bond_symbol} maturing {info.maturity_date}")
        return info

    def get_latest_bond(self) -> Optional[str]:
        """Issue if due, then return the most recent bond."""
        self.issue()
        return self.latest_bond()

    def update_config(self, caller: str, **changes) -> IssuerConfig:
        self.access.require_owner(caller)
        self.config = replace(self.config, **changes)
        self.ledger.emit(make_event(self.ledger.current_time, self.symbol, CONFIG_UPDATED,
                                    **{k: str(v) for k, v in changes.items()}))
        return self.config

    def get_bond(self, bond: str) -> BondInfo:
        return load_bond(self.ledger, bond)
