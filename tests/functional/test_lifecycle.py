"""
test_lifecycle.py - Functional tests: the note system over several bond cycles

Walks a note engine and vault through weekly bond issues, rollovers and
maturities, checking queue order, reserve composition and conservation at
each step.
"""

import pytest
from decimal import Decimal

from perpnote import InsufficientDeployment, UnacceptableRedemptionTranche
from tests.perp_system import VAULT, build_system, bond_symbol, tranche


class TestFiveWeekStory:
    """
    Day 0:  alice mints with B0.      Day 7:  bob mints with B1.
    Day 22: the vault deploys into B2 and takes B0-T0 out of the reserve.
    Day 28: B0 matures in the vault.  Day 36: B1 matures in the reserve.
    """

    @pytest.fixture
    def story(self):
        return build_system(min_maturity_sec=7 * 86400, with_vault=True)

    def test_story(self, story):
        system, perp, vault = story, story.perp, story.vault

        # Day 0
        system.mint_senior("alice", 1000)
        assert perp.get_redemption_queue() == [tranche(0, 0)]

        # Day 7
        system.advance_to(7)
        system.mint_senior("bob", 1000)
        assert perp.get_deposit_bond() == bond_symbol(1)
        assert perp.get_redemption_queue() == [tranche(0, 0), tranche(1, 0)]
        assert perp.total_supply() == Decimal("400")

        # Day 22
        system.advance_to(22)
        system.fund("charlie", 1000)
        vault.deposit("charlie", 1000)
        assert vault.deploy() == Decimal("200")
        assert perp.get_deposit_bond() == bond_symbol(2)
        assert perp.reserve_tokens() == [tranche(1, 0), tranche(2, 0)]
        assert perp.get_redemption_queue() == [tranche(1, 0), tranche(2, 0)]
        assert system.ledger.get_balance(VAULT, tranche(0, 0)) == Decimal("200")
        assert system.conserved()

        # Day 28
        system.advance_to(28)
        perp.update_state()
        assert perp.get_deposit_bond() == bond_symbol(3)
        assert perp.mature_tranche_balance() == Decimal("0")
        vault.recover()
        assert system.ledger.get_balance(VAULT, "AMPL") == Decimal("200")
        assert vault.deployed_tokens() == [tranche(2, 1)]

        # Day 36
        system.advance_to(36)
        perp.update_state()
        assert perp.get_deposit_bond() == bond_symbol(4)
        assert perp.get_redemption_queue() == [tranche(2, 0)]
        assert perp.mature_tranche_balance() == Decimal("200")
        assert perp.reserve_tokens() == ["AMPL", tranche(2, 0)]
        assert perp.get_reserve_tokens_up_for_rollover() == ["AMPL"]
        assert perp.get_tvl() == Decimal("400")
        assert perp.get_tvl() == perp.total_supply()

        # The vault rolls its recovered collateral back in, taking collateral out.
        assert vault.deploy() == Decimal("40")
        assert perp.reserve_balance("AMPL") == Decimal("160")
        assert perp.mature_tranche_balance() == Decimal("160")
        assert perp.get_redemption_queue() == [tranche(2, 0), tranche(4, 0)]

        with pytest.raises(UnacceptableRedemptionTranche):
            perp.redeem("alice", "AMPL", 100)
        result = perp.redeem("alice", tranche(2, 0), 100)
        assert result.token_amt == Decimal("100")
        assert system.ledger.get_balance("alice", tranche(2, 0)) == Decimal("100")
        assert system.conserved()


class TestSteadyState:
    """Twelve weekly cycles at unit prices: the reserve always backs the supply 1:1."""

    def test_weekly_cycles(self):
        system = build_system(min_maturity_sec=7 * 86400, with_vault=True)
        perp, vault, ledger = system.perp, system.vault, system.ledger
        system.fund("charlie", 1000)
        vault.deposit("charlie", 1000)

        for week in range(12):
            system.advance_to(7 * week)
            system.mint_senior("alice", 500)
            vault.recover()
            if ledger.get_balance(VAULT, "AMPL") > 0:
                try:
                    vault.deploy()
                except InsufficientDeployment:
                    pass
            head = perp.get_redemption_queue_head()
            perp.redeem("alice", head, 50)

            queue = perp.get_redemption_queue()
            reserves = perp.reserve_tokens()
            assert set(queue) <= set(reserves)
            assert all(perp.reserve_balance(t) > 0 for t in reserves)
            maturities = [system.issuer.get_bond(ledger.get_unit_state(t)['bond']).maturity_date for t in queue]
            assert maturities == sorted(maturities)
            assert perp.get_tvl() == perp.total_supply()
            assert system.conserved()
