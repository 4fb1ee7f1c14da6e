"""
conftest.py - Shared pytest fixtures for perpnote tests

Provides common fixtures used across unit and functional tests:
- Basic ledgers (empty, collateral-funded)
- Wired note systems (note engine only, note engine plus vault)
- A ledger with a single hand-built bond for bond and strategy tests
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from perpnote import (
    Ledger, Move, SYSTEM_WALLET, build_transaction, collateral_token, create_bond,
)

from tests.fake_view import FakeView
from tests.perp_system import T0, WEEK, build_system


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def issue(ledger: Ledger, wallet: str, amount, unit: str = "AMPL") -> None:
    """Move `amount` of `unit` from SYSTEM_WALLET to `wallet`."""
    ledger.execute_or_raise(build_transaction(ledger, [
        Move(Decimal(str(amount)), unit, SYSTEM_WALLET, wallet, ledger.next_nonce("issue"))
    ]))


# =============================================================================
# BASIC LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Empty test-mode ledger at T0 with the AMPL collateral token."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(collateral_token("AMPL", "Ampleforth"))
    return ledger


@pytest.fixture
def funded_ledger(ledger):
    """Ledger with alice and bob holding 10,000 AMPL each."""
    for wallet in ("alice", "bob"):
        ledger.register_wallet(wallet)
        issue(ledger, wallet, 10000)
    return ledger


@pytest.fixture
def bond_ledger(funded_ledger):
    """Funded ledger with bond "B" on AMPL, ratios (200, 800), maturing in 28 days."""
    create_bond(funded_ledger, "B", "AMPL", (200, 800), T0 + timedelta(days=28))
    return funded_ledger


# =============================================================================
# NOTE SYSTEM FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """Note engine over a weekly issuer; deposit bond ISSUER-B0 issued at T0."""
    return build_system()


@pytest.fixture
def rolling_system():
    """Note engine that evicts tranches within 7 days of maturity."""
    return build_system(min_maturity_sec=WEEK)


@pytest.fixture
def vault_system():
    """Note engine plus rollover vault, 7 day minimum tranche maturity."""
    return build_system(min_maturity_sec=WEEK, with_vault=True)


@pytest.fixture
def fake_view():
    """FakeView over a matured bond whose senior pot is short of its supply."""
    return FakeView(
        balances={
            'B': {},
            'B-T0': {'AMPL': Decimal("150")},
            'alice': {'B-T0': Decimal("200"), 'B-T1': Decimal("800")},
        },
        states={
            'B': {
                'collateral': 'AMPL',
                'tranches': ['B-T0', 'B-T1'],
                'ratios': [200, 800],
                'maturity_date': T0,
                'issue_date': T0 - timedelta(days=28),
                'is_mature': True,
            },
            'B-T0': {'bond': 'B', 'index': 0, 'ratio': 200, 'collateral': 'AMPL'},
            'B-T1': {'bond': 'B', 'index': 1, 'ratio': 800, 'collateral': 'AMPL'},
        },
        time=T0 + timedelta(days=1),
        units={'B-T0': 'TRANCHE', 'B-T1': 'TRANCHE', 'B': 'BOND'},
    )
