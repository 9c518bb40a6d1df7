"""
Tests for the percent helpers.

These tests verify:
- Forgiving input: malformed and non-finite values fall back
- Out-of-range values are clamped, never rejected
- Two-decimal half-up rounding
- The strict Percent value object
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from distribution_kernel.domain.percent import (
    HUNDRED,
    ZERO,
    Percent,
    clamp_percent,
    round2,
    to_decimal,
)


class TestClampPercent:
    @pytest.mark.parametrize(
        "raw", [None, "", "   ", "abc", "NaN", "Infinity", "-Infinity", float("nan"), True]
    )
    def test_malformed_input_yields_fallback(self, raw):
        assert clamp_percent(raw) == ZERO
        assert clamp_percent(raw, Decimal("10")) == Decimal("10")

    def test_negative_clamps_to_zero(self):
        assert clamp_percent("-5") == ZERO

    def test_above_hundred_clamps_to_hundred(self):
        assert clamp_percent(250) == HUNDRED

    def test_float_keeps_decimal_text(self):
        assert clamp_percent(0.1) == Decimal("0.1")

    def test_numeric_string_parsed(self):
        assert clamp_percent(" 12.5 ") == Decimal("12.5")

    def test_rounded_to_cents(self):
        assert clamp_percent("12.345") == Decimal("12.35")
        assert clamp_percent("99.996") == HUNDRED
        assert clamp_percent("0.004") == ZERO
        assert clamp_percent("x", "7.125") == Decimal("7.13")

    @given(st.one_of(st.integers(), st.floats(allow_nan=True, allow_infinity=True), st.text()))
    def test_always_within_range(self, raw):
        value = clamp_percent(raw)
        assert ZERO <= value <= HUNDRED
        assert value == round2(value)


class TestRound2:
    def test_half_up(self):
        assert round2("12.345") == Decimal("12.35")
        assert round2("12.344") == Decimal("12.34")

    def test_invalid_reads_as_zero(self):
        assert round2("oops") == Decimal("0.00")

    def test_to_decimal_rejects_bool(self):
        assert to_decimal(False) is None


class TestPercent:
    def test_valid(self):
        assert Percent(Decimal("35")).value == Decimal("35")

    def test_out_of_range_raises(self):
        with pytest.raises(ValueError):
            Percent(Decimal("100.01"))

    def test_non_finite_raises(self):
        with pytest.raises(ValueError):
            Percent(Decimal("NaN"))

    def test_coerce_is_forgiving(self):
        assert Percent.coerce("150").value == HUNDRED
        assert Percent.coerce("x", 7).value == Decimal("7")

    def test_value_held_at_cents(self):
        assert Percent("33.335").value == Decimal("33.34")

    def test_str_is_two_decimals(self):
        assert str(Percent(Decimal("5"))) == "5.00%"

    def test_is_frozen(self):
        p = Percent.zero()
        with pytest.raises(AttributeError):
            p.value = Decimal("1")
