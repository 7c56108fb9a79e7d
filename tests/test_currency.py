"""
Tests for the Decimal money helpers
"""

import pytest
from decimal import Decimal

from coop_banking.currency import (
    ZERO, to_decimal, round_money, sum_money, decimal_from_string, format_money,
    has_sub_cent_digits
)


class TestToDecimal:
    """Conversion of number-like input into Decimal"""

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal('0.1')
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal('0.3')

    def test_int_and_decimal(self):
        assert to_decimal(5) == Decimal('5')
        value = Decimal('12.345')
        assert to_decimal(value) is value

    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            to_decimal(True)

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValueError):
            to_decimal([1, 2])

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)


class TestDecimalFromString:
    """String parsing"""

    def test_plain_number(self):
        assert decimal_from_string("1234.56") == Decimal('1234.56')

    def test_currency_symbol_and_thousands(self):
        assert decimal_from_string("$1,234.56") == Decimal('1234.56')

    def test_decimal_comma(self):
        assert decimal_from_string("87,92") == Decimal('87.92')

    def test_thousands_comma_only(self):
        assert decimal_from_string("10,000") == Decimal('10000')

    @pytest.mark.parametrize("value", ["", "abc", "nan", "inf"])
    def test_invalid_strings(self, value):
        with pytest.raises(ValueError):
            decimal_from_string(value)


class TestRounding:
    """Currency precision"""

    def test_half_up(self):
        assert round_money(Decimal('888.485')) == Decimal('888.49')
        assert round_money(Decimal('888.4849')) == Decimal('888.48')

    def test_round_string(self):
        assert round_money("50") == Decimal('50.00')

    def test_too_many_digits_for_cents(self):
        with pytest.raises(ValueError):
            round_money("1" + "0" * 30)
        with pytest.raises(ValueError):
            round_money(Decimal("1e40"))

    def test_sub_cent_detection(self):
        assert has_sub_cent_digits("87.925")
        assert not has_sub_cent_digits("87.92")
        assert not has_sub_cent_digits(Decimal("87.9"))

    def test_sum_money_exact(self):
        assert sum_money(["0.1"] * 10) == Decimal('1.0')
        assert sum_money([]) == ZERO

    def test_format_money(self):
        assert format_money(Decimal('10661.875')) == "10,661.88"
