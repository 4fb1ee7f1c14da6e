"""
events.py - Change notifications

Events are just data. Engines emit them through Ledger.emit(); the ledger
holds them until the surrounding operation commits, then appends them to
Ledger.event_log and hands them to subscribers. A rolled-back operation
publishes nothing.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict


# Note engine
RESERVE_SYNCED = "ReserveSynced"
TRANCHE_ENQUEUED = "TrancheEnqueued"
TRANCHE_DEQUEUED = "TrancheDequeued"
DEPOSIT_BOND_UPDATED = "DepositBondUpdated"
YIELD_APPLIED = "YieldApplied"
MATURE_TRANCHE_SETTLED = "MatureTrancheSettled"

# Vault
VAULT_ASSET_SYNCED = "AssetSynced"

# Bonds and issuer
BOND_ISSUED = "BondIssued"
BOND_MATURED = "BondMatured"

# Governance
CONFIG_UPDATED = "ConfigUpdated"
OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
PAUSED = "Paused"
UNPAUSED = "Unpaused"


@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable change notification.

    Attributes:
        timestamp: Ledger time when the change happened
        source: Engine symbol that emitted it
        action: One of the constants above
        symbol: Token the event is about ("" when not token specific)
        params: Event-specific values as a frozen tuple of (key, value) pairs
    """
    timestamp: datetime
    source: str
    action: str
    symbol: str = ""
    params: tuple = ()

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def __str__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params)
        target = f" {self.symbol}" if self.symbol else ""
        return f"{self.action}({self.source}{target}{': ' + params_str if params_str else ''})"


def make_event(timestamp: datetime, source: str, action: str, symbol: str = "", **params: Any) -> Event:
    """Build an Event with params sorted by key."""
    return Event(
        timestamp=timestamp,
        source=source,
        action=action,
        symbol=symbol,
        params=tuple(sorted(params.items())),
    )
