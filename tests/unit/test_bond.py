"""
test_bond.py - Unit tests for tranched bonds

Tests:
- Pure calculations (waterfall, deposit amounts, proportional redemption)
- Factory validation (create_bond_units)
- Deposit, in-ratio redemption, maturity and matured redemption
- Collateralization before and after maturity (FakeView and Ledger)
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from perpnote import (
    BondError, TransferFailed,
    create_bond, deposit, redeem, mature, redeem_mature, load_bond,
    compute_tranche_collateralization, tranche_symbol,
)
from perpnote.units.bond import (
    calculate_waterfall,
    calculate_deposit_tranche_amts,
    compute_proportional_redemption_amts,
    create_bond_units,
    tranche_supply,
    total_debt,
)
from tests.perp_system import T0


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

class TestCalculateWaterfall:
    """Senior-first split of collateral across tranche supplies."""

    def test_fully_covered(self):
        """Each tranche gets its supply when collateral equals debt."""
        assert calculate_waterfall(Decimal("1000"), [Decimal("200"), Decimal("800")]) == [
            Decimal("200"), Decimal("800")
        ]

    def test_shortfall_hits_junior_first(self):
        """Senior is paid first; junior takes what is left."""
        assert calculate_waterfall(Decimal("150"), [Decimal("200"), Decimal("800")]) == [
            Decimal("150"), Decimal("0")
        ]

    def test_surplus_goes_to_junior(self):
        """The most junior tranche takes every unit above the senior claims."""
        assert calculate_waterfall(Decimal("2000"), [Decimal("200"), Decimal("800")]) == [
            Decimal("200"), Decimal("1800")
        ]

    def test_three_tranches(self):
        claims = calculate_waterfall(Decimal("500"), [Decimal("200"), Decimal("300"), Decimal("500")])
        assert claims == [Decimal("200"), Decimal("300"), Decimal("0")]


class TestDepositAmounts:
    """Tranche amounts minted for a collateral deposit."""

    def test_first_deposit_mints_one_to_one(self):
        """Without existing debt one collateral mints one unit of debt."""
        amts = calculate_deposit_tranche_amts(Decimal("1000"), [200, 800], Decimal("0"), Decimal("0"))
        assert amts == [Decimal("200"), Decimal("800")]

    def test_later_deposit_uses_debt_rate(self):
        """After a positive rebase each collateral mints less debt."""
        amts = calculate_deposit_tranche_amts(Decimal("1000"), [200, 800], Decimal("2000"), Decimal("1000"))
        assert amts == [Decimal("100"), Decimal("400")]

    def test_debt_without_collateral_raises(self):
        with pytest.raises(BondError):
            calculate_deposit_tranche_amts(Decimal("1"), [200, 800], Decimal("0"), Decimal("10"))


class TestProportionalRedemption:
    """Largest in-ratio tranche set inside the given balances."""

    def test_limited_by_senior(self):
        amts = compute_proportional_redemption_amts([Decimal("100"), Decimal("800")], [200, 800])
        assert amts == [Decimal("100"), Decimal("400")]

    def test_limited_by_junior(self):
        amts = compute_proportional_redemption_amts([Decimal("200"), Decimal("400")], [200, 800])
        assert amts == [Decimal("100"), Decimal("400")]

    def test_zero_balance_gives_zeros(self):
        """A missing tranche means no full set can be formed."""
        amts = compute_proportional_redemption_amts([Decimal("0"), Decimal("800")], [200, 800])
        assert amts == [Decimal("0"), Decimal("0")]


# ============================================================================
# FACTORY
# ============================================================================

class TestCreateBondUnits:
    """Validation and naming of bond and tranche units."""

    def test_tranche_naming(self):
        bond_unit, tranche_units = create_bond_units(
            "B", "AMPL", (200, 800), T0 + timedelta(days=28), T0
        )
        assert bond_unit.unit_type == "BOND"
        assert [u.symbol for u in tranche_units] == ["B-T0", "B-T1"]
        assert tranche_units[1].state == {'bond': 'B', 'index': 1, 'ratio': 800, 'collateral': 'AMPL'}
        assert tranche_symbol("B", 3) == "B-T3"

    def test_ratios_must_sum_to_granularity(self):
        """Ratios not summing to 1000 raise ValueError."""
        with pytest.raises(ValueError, match="sum to 1000"):
            create_bond_units("B", "AMPL", (300, 800), T0 + timedelta(days=1), T0)

    def test_non_positive_ratio_raises(self):
        with pytest.raises(ValueError, match="positive"):
            create_bond_units("B", "AMPL", (0, 1000), T0 + timedelta(days=1), T0)

    def test_maturity_must_follow_issue(self):
        with pytest.raises(ValueError, match="maturity_date"):
            create_bond_units("B", "AMPL", (200, 800), T0, T0)


# ============================================================================
# LEDGER LIFECYCLE
# ============================================================================

class TestBondLifecycle:
    """Deposit, redeem, mature and redeem_mature on a real Ledger."""

    def test_create_bond_registers_units_and_wallets(self, bond_ledger):
        info = load_bond(bond_ledger, "B")
        assert info.tranches == ("B-T0", "B-T1")
        assert info.ratios == (200, 800)
        assert info.issue_date == T0
        assert not info.is_mature
        assert bond_ledger.is_registered("B") and bond_ledger.is_registered("B-T1")
        assert info.time_to_maturity(T0) == 28 * 86400

    def test_deposit_mints_in_ratio(self, bond_ledger):
        amts = deposit(bond_ledger, "B", "alice", Decimal("1000"))
        assert amts == [Decimal("200"), Decimal("800")]
        assert bond_ledger.get_balance("B", "AMPL") == Decimal("1000")
        assert bond_ledger.get_balance("alice", "AMPL") == Decimal("9000")
        assert total_debt(bond_ledger, load_bond(bond_ledger, "B")) == Decimal("1000")

    def test_deposit_after_rebase(self, bond_ledger):
        """A doubled collateral balance halves the debt minted per deposit."""
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        bond_ledger.set_balance("B", "AMPL", Decimal("2000"))
        amts = deposit(bond_ledger, "B", "bob", Decimal("1000"))
        assert amts == [Decimal("100"), Decimal("400")]

    def test_redeem_in_ratio(self, bond_ledger):
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        redeem(bond_ledger, "B", "alice", [Decimal("100"), Decimal("400")])
        assert bond_ledger.get_balance("alice", "AMPL") == Decimal("9500")
        assert tranche_supply(bond_ledger, "B-T0") == Decimal("100")
        assert bond_ledger.get_balance("B", "AMPL") == Decimal("500")

    def test_redeem_out_of_ratio_raises(self, bond_ledger):
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        with pytest.raises(BondError, match="not in ratio"):
            redeem(bond_ledger, "B", "alice", [Decimal("100"), Decimal("100")])

    def test_redeem_more_than_held_fails(self, bond_ledger):
        """The holder's tranche balances are checked by the ledger."""
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        with pytest.raises(TransferFailed):
            redeem(bond_ledger, "B", "bob", [Decimal("100"), Decimal("400")])

    def test_mature_before_maturity_raises(self, bond_ledger):
        with pytest.raises(BondError, match="matures at"):
            mature(bond_ledger, "B")

    def test_mature_splits_collateral(self, bond_ledger):
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        bond_ledger.advance_time(T0 + timedelta(days=28))
        mature(bond_ledger, "B")
        assert load_bond(bond_ledger, "B").is_mature
        assert bond_ledger.get_balance("B-T0", "AMPL") == Decimal("200")
        assert bond_ledger.get_balance("B-T1", "AMPL") == Decimal("800")
        assert bond_ledger.get_balance("B", "AMPL") == Decimal("0")
        assert any(e.action == "BondMatured" for e in bond_ledger.event_log)

    def test_mature_twice_raises(self, bond_ledger):
        bond_ledger.advance_time(T0 + timedelta(days=28))
        mature(bond_ledger, "B")
        with pytest.raises(BondError, match="already mature"):
            mature(bond_ledger, "B")

    def test_deposit_into_mature_bond_raises(self, bond_ledger):
        bond_ledger.advance_time(T0 + timedelta(days=28))
        with pytest.raises(BondError, match="mature"):
            deposit(bond_ledger, "B", "alice", Decimal("100"))

    def test_redeem_mature_after_shortfall(self, bond_ledger):
        """A collateral loss is absorbed by the junior tranche first."""
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        bond_ledger.set_balance("B", "AMPL", Decimal("150"))
        bond_ledger.advance_time(T0 + timedelta(days=28))
        mature(bond_ledger, "B")

        assert compute_tranche_collateralization(bond_ledger, "B-T0") == (Decimal("150"), Decimal("200"))
        before = bond_ledger.get_balance("alice", "AMPL")
        redeem_mature(bond_ledger, "B-T0", "alice")
        assert bond_ledger.get_balance("alice", "AMPL") - before == Decimal("150")
        assert bond_ledger.get_balance("alice", "B-T0") == Decimal("0")

    def test_redeem_mature_before_maturity_raises(self, bond_ledger):
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        with pytest.raises(BondError, match="not mature"):
            redeem_mature(bond_ledger, "B-T0", "alice")

    def test_collateralization_before_maturity(self, bond_ledger):
        """Immature tranches are valued at the waterfall their bond would pay now."""
        deposit(bond_ledger, "B", "alice", Decimal("1000"))
        bond_ledger.set_balance("B", "AMPL", Decimal("1500"))
        assert compute_tranche_collateralization(bond_ledger, "B-T0") == (Decimal("200"), Decimal("200"))
        assert compute_tranche_collateralization(bond_ledger, "B-T1") == (Decimal("1300"), Decimal("800"))


class TestCollateralizationFakeView:
    """compute_tranche_collateralization is pure over a LedgerView."""

    def test_mature_tranche_uses_its_pot(self, fake_view):
        assert compute_tranche_collateralization(fake_view, "B-T0") == (Decimal("150"), Decimal("200"))

    def test_mature_junior_with_empty_pot(self, fake_view):
        assert compute_tranche_collateralization(fake_view, "B-T1") == (Decimal("0"), Decimal("800"))
