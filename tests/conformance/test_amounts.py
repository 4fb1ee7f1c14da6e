"""
Amount Calculation Conformance Tests

INVARIANTS for the pure amount calculations:
- redemption: burned + left over == requested; the covered std amount
  never exceeds the reserve; the reserve never pays more value than the
  notes burned
- rollover: nothing more than the cap comes out; nothing more than offered
  goes in
- bonds: the waterfall distributes exactly the collateral; proportional
  redemption stays inside balances and in ratio
"""

from hypothesis import given, settings, assume
from hypothesis import strategies as st
from decimal import Decimal

from perpnote.perpetual_tranche import calculate_redemption_amts, calculate_rollover_amts
from perpnote.units.bond import calculate_waterfall, compute_proportional_redemption_amts


amounts = st.decimals(min_value=Decimal("0.000001"), max_value=Decimal("1000000"), places=6)
unit_values = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10"), places=4)
fee_percs = st.decimals(min_value=Decimal("-1"), max_value=Decimal("0.99"), places=4)


class TestRedemptionAmounts:

    @given(note_amt=amounts, unit_value=unit_values, reserve=amounts)
    @settings(max_examples=200)
    def test_burn_plus_leftover_is_request(self, note_amt, unit_value, reserve):
        std_amt, burn, leftover = calculate_redemption_amts(note_amt, unit_value, reserve)
        assert burn + leftover == note_amt
        assert std_amt <= reserve
        assert leftover >= 0

    @given(note_amt=amounts, unit_value=unit_values, reserve=amounts)
    @settings(max_examples=200)
    def test_reserve_never_overpays(self, note_amt, unit_value, reserve):
        """Value paid out is covered by the notes burned, up to one unit in the last place."""
        std_amt, burn, _ = calculate_redemption_amts(note_amt, unit_value, reserve)
        assert std_amt * unit_value <= burn + Decimal("1e-18")


class TestRolloverAmounts:

    @given(in_amt=amounts, value_in=unit_values, value_out=unit_values, fee=fee_percs, cap=amounts)
    @settings(max_examples=200)
    def test_bounds(self, in_amt, value_in, value_out, fee, cap):
        used_in, out = calculate_rollover_amts(in_amt, value_in, value_out, fee, cap)
        assert 0 <= out <= cap
        assert 0 <= used_in <= in_amt

    @given(in_amt=amounts, value=unit_values, fee=st.decimals(min_value=Decimal("0"), max_value=Decimal("0.99"), places=4))
    @settings(max_examples=100)
    def test_non_negative_fee_never_gives_more_value(self, in_amt, value, fee):
        used_in, out = calculate_rollover_amts(in_amt, value, value, fee, Decimal("1e12"))
        assert out * value <= used_in * value


class TestBondAmounts:

    @given(collateral=amounts, supplies=st.lists(amounts, min_size=1, max_size=5))
    @settings(max_examples=100)
    def test_waterfall_distributes_everything(self, collateral, supplies):
        claims = calculate_waterfall(collateral, supplies)
        assert sum(claims) == collateral
        assert all(c >= 0 for c in claims)
        for claim, supply in zip(claims[:-1], supplies[:-1]):
            assert claim <= supply

    @given(balances=st.lists(amounts, min_size=2, max_size=2))
    @settings(max_examples=100)
    def test_proportional_redemption_inside_balances(self, balances):
        ratios = [200, 800]
        redeemed = compute_proportional_redemption_amts(balances, ratios)
        assert all(0 <= r <= b for r, b in zip(redeemed, balances))
        assume(redeemed[0] > Decimal("0.001"))
        assert abs(redeemed[1] / redeemed[0] - Decimal(4)) < Decimal("1e-9")
