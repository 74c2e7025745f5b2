"""
Tests for normalization.py: numbers, units, decimal repair, overflow, headers.
"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from models import Unit
from normalization import (
    detect_column_unit,
    detect_unit,
    fix_overflow,
    flatten_text,
    normalize_text,
    parse_number,
    repair_decimals,
    to_percent,
)

# ============================================================================
# Numeric Parsing
# ============================================================================


class TestParseNumber:
    def test_strips_thousands_separator(self):
        assert parse_number("1,234.5 mg") == 1234.5

    def test_leading_point(self):
        assert parse_number(".5%") == 0.5

    def test_negative(self):
        assert parse_number("LOQ -0.02") == -0.02

    @pytest.mark.parametrize("text", [None, "", "ND", "<LOQ"])
    def test_no_number(self, text):
        assert parse_number(text) is None


# ============================================================================
# Units
# ============================================================================


class TestDetectUnit:
    @pytest.mark.parametrize(
        "token, unit",
        [
            ("%", Unit.PERCENT),
            ("mg/g", Unit.MG_PER_G),
            ("mg / g", Unit.MG_PER_G),
            ("MG/G", Unit.MG_PER_G),
            ("µg/g", Unit.UG_PER_G),
            ("μg/g", Unit.UG_PER_G),
            ("ug/g", Unit.UG_PER_G),
            ("ppm", Unit.UG_PER_G),
        ],
    )
    def test_known_units(self, token, unit):
        assert detect_unit(token) == unit

    @pytest.mark.parametrize("token", [None, "", "g", "mg", "mL"])
    def test_unknown_units(self, token):
        assert detect_unit(token) is None

    def test_unknown_unit_converts_to_none(self):
        assert to_percent(5.0, None) is None


@given(st.floats(min_value=0, max_value=1e6, allow_nan=False, allow_infinity=False))
def test_mg_per_g_is_tenth_of_percent(value):
    """10 mg/g is 1 %."""
    assert math.isclose(to_percent(value, Unit.MG_PER_G) * 10, value, abs_tol=1e-9)


@given(st.floats(min_value=0, max_value=1e6, allow_nan=False, allow_infinity=False))
def test_ug_per_g_is_ten_thousandth_of_percent(value):
    """10 000 ug/g is 1 %."""
    assert math.isclose(to_percent(value, Unit.UG_PER_G) * 10000, value, abs_tol=1e-9)


# ============================================================================
# Overflow Correction
# ============================================================================


class TestFixOverflow:
    def test_dropped_decimal_point(self):
        assert fix_overflow(1050.0) == pytest.approx(10.5)

    def test_in_range_untouched(self):
        assert fix_overflow(23.0) == 23.0
        assert fix_overflow(100.0) == 100.0

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite(self, value):
        assert fix_overflow(value) is None

    def test_none(self):
        assert fix_overflow(None) is None

    def test_applied_to_percent_only(self):
        assert to_percent(1050.0, Unit.PERCENT) == pytest.approx(10.5)
        assert to_percent(1050.0, Unit.MG_PER_G) == pytest.approx(105.0)


@given(st.floats(allow_nan=False, allow_infinity=False))
def test_overflow_result_never_exceeds_100(value):
    assert fix_overflow(value) <= 100


@given(st.floats(allow_nan=False, allow_infinity=False))
def test_overflow_is_idempotent(value):
    once = fix_overflow(value)
    assert fix_overflow(once) == once


# ============================================================================
# Decimal Repair
# ============================================================================


class TestRepairDecimals:
    @pytest.mark.parametrize(
        "raw, repaired",
        [
            ("Myrcene 12 . 34%", "Myrcene 12.34%"),
            ("Myrcene 12,5 %", "Myrcene 12.5 %"),
            ("Myrcene 12  34%", "Myrcene 12.34%"),
            ("Limonene 4  20 mg/g", "Limonene 4.20 mg/g"),
            ("Myrcene 0. 85%", "Myrcene 0.85%"),
        ],
    )
    def test_split_decimals_rejoined(self, raw, repaired):
        assert repair_decimals(raw) == repaired

    @pytest.mark.parametrize(
        "text",
        [
            "1,8-cineole 0.05%",
            "Sample weight 1,234 mg",
            "Batch 12 34 mg/g",
            "Lot 2023  Myrcene 0.5%",
            "Total THC: 23.0%",
            "Received Jan 5. 2024 by lab",
            "Sampled on 3 .2 of the batch",
        ],
    )
    def test_unrelated_numbers_left_alone(self, text):
        assert repair_decimals(text) == text

    def test_empty(self):
        assert repair_decimals("") == ""


# ============================================================================
# Text Normalization
# ============================================================================


class TestNormalizeText:
    def test_line_endings_and_odd_spaces(self):
        assert normalize_text("a\r\nb\rc\u00a0d") == "a\nb\nc d"

    def test_decimal_repair_applied(self):
        assert normalize_text("Myrcene 1 . 2%\r\n") == "Myrcene 1.2%\n"

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty(self, text):
        assert normalize_text(text) == ""

    def test_flatten_collapses_whitespace(self):
        assert flatten_text("  Total THC:\n\n  23.0%  ") == "Total THC: 23.0%"


# ============================================================================
# Column-Unit Context
# ============================================================================


class TestDetectColumnUnit:
    @pytest.mark.parametrize(
        "header, unit",
        [
            ("Analyte    Result (%)", Unit.PERCENT),
            ("Analyte    Results (mg/g)", Unit.MG_PER_G),
            ("Units: ppm", Unit.UG_PER_G),
            ("Amount (% w/w)", Unit.PERCENT),
            ("Terpene   % w/w", Unit.PERCENT),
            ("Percent of total", Unit.PERCENT),
        ],
    )
    def test_headers(self, header, unit):
        assert detect_column_unit(header + "\nMyrcene 0.5") == unit

    def test_no_header(self):
        assert detect_column_unit("Myrcene 0.5\nLimonene 0.3") is None
