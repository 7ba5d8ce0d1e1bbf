"""Tests for the currency normalizer."""

import pytest
from decimal import Decimal

from budget_engine.calculations.currency import (
    ZERO,
    currency_equal,
    needs_precision_fix,
    round_currency,
    sum_currency,
    to_decimal,
)


class TestRoundCurrency:
    """Tests for round_currency."""

    def test_float_representation_error_is_removed(self):
        """Test that 1.005 rounds up to 1.01 instead of down to 1.00."""
        assert round_currency(1.005) == Decimal("1.01")

    def test_half_rounds_away_from_zero(self):
        """Test symmetric rounding of negative halves."""
        assert round_currency(Decimal("2.345")) == Decimal("2.35")
        assert round_currency(Decimal("-2.345")) == Decimal("-2.35")

    def test_negation_commutes(self):
        """Test round(-x) == -round(x), which keeps transfers balanced."""
        for raw in ("0.005", "12.345", "99.994", "7.125"):
            value = Decimal(raw)
            assert round_currency(-value) == -round_currency(value)

    def test_accepts_strings_and_ints(self):
        """Test non-Decimal inputs."""
        assert round_currency("67.449") == Decimal("67.45")
        assert round_currency(500) == Decimal("500.00")

    def test_result_has_two_places(self):
        """Test that output is always quantized to cents."""
        assert str(round_currency(Decimal("3"))) == "3.00"

    def test_to_decimal_keeps_precision(self):
        """Test that to_decimal does not round."""
        assert to_decimal("1.23456") == Decimal("1.23456")
        assert to_decimal(0.1) == Decimal("0.1")


class TestPrecisionChecks:
    """Tests for needs_precision_fix and currency_equal."""

    def test_clean_values_need_no_fix(self):
        """Test whole-cent values."""
        assert needs_precision_fix(Decimal("10.50")) is False
        assert needs_precision_fix(ZERO) is False

    def test_sub_cent_values_need_fix(self):
        """Test values carrying fractions of a cent."""
        assert needs_precision_fix(Decimal("10.004")) is True

    def test_float_noise_is_within_tolerance(self):
        """Test that 0.1 + 0.2 is treated as clean cents."""
        assert needs_precision_fix(0.1 + 0.2) is False

    def test_currency_equal_rounds_first(self):
        """Test round-then-compare equality."""
        assert currency_equal(Decimal("1.004"), Decimal("1.00")) is True
        assert currency_equal(Decimal("1.005"), Decimal("1.00")) is False

    def test_sum_currency(self):
        """Test that sums are rounded once."""
        assert sum_currency([0.1, 0.2]) == Decimal("0.30")
        assert sum_currency([]) == ZERO


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
