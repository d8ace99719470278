"""
Decimal helper tests: coercion, rounding and precision checks.
"""

from decimal import ROUND_DOWN, Decimal

from ledger_kernel.db.types import is_representable, round_money, to_decimal


class TestToDecimal:

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal("0")

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_string(self):
        assert to_decimal("12.345") == Decimal("12.345")


class TestRoundMoney:

    def test_half_up_default(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")

    def test_negative_half_up_rounds_away_from_zero(self):
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_custom_rounding(self):
        assert round_money(Decimal("2.349"), rounding=ROUND_DOWN) == Decimal("2.34")


class TestIsRepresentable:

    def test_two_places(self):
        assert is_representable(Decimal("10.25"), 2)

    def test_trailing_zeros_are_fine(self):
        assert is_representable(Decimal("10.250000"), 2)

    def test_sub_cent_rejected(self):
        assert not is_representable(Decimal("10.255"), 2)
