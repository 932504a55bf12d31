"""Tests for price sanitisation, validation and suspicious-input detection"""
from decimal import Decimal

import pytest

from services.pricing import detect_suspicious_input, sanitize_price_data, validate_price_data
from sources.base import FuelPrices


class TestSanitize:

    def test_numbers_rounded_to_cents(self):
        prices = sanitize_price_data({"regular": 3.456, "premium": 3.6, "diesel": 3})
        assert prices.as_dict() == {"regular": "3.46", "premium": "3.60", "diesel": "3.00"}

    def test_rounds_half_up(self):
        prices = sanitize_price_data({"regular": "2.345", "premium": "2.355", "diesel": "0.005"})
        assert prices == FuelPrices(Decimal("2.35"), Decimal("2.36"), Decimal("0.01"))

    def test_strips_currency_and_text(self):
        prices = sanitize_price_data({"regular": "R$ 5,79", "premium": "$6.19/L", "diesel": " 5.49 "})
        assert prices.as_dict() == {"regular": "5.79", "premium": "6.19", "diesel": "5.49"}

    def test_comma_with_dot_is_thousands_separator(self):
        assert sanitize_price_data({"regular": "1,234.5"}).regular == Decimal("1234.50")

    @pytest.mark.parametrize("raw", [
        None, "", "abc", True, False, float("nan"), float("inf"), [], {}, "1.2.3",
        10**30, 1e30, "1" * 40, Decimal("9" * 30),
    ])
    def test_unreadable_values_become_zero(self, raw):
        prices = sanitize_price_data({"regular": raw, "premium": "3.00", "diesel": "3.00"})
        assert prices.regular == Decimal("0")

    def test_missing_fields_become_zero(self):
        assert sanitize_price_data({"regular": "3.10"}) == FuelPrices(Decimal("3.10"), Decimal("0"), Decimal("0"))

    @pytest.mark.parametrize("raw", [None, "3.45", 42, ["3.45"]])
    def test_non_mapping_input(self, raw):
        assert sanitize_price_data(raw) == FuelPrices.zero()

    def test_negative_sign_kept(self):
        assert sanitize_price_data({"regular": "-1"}).regular == Decimal("-1.00")


class TestValidate:

    def test_valid_prices(self):
        result = validate_price_data(FuelPrices(Decimal("0.01"), Decimal("5.79"), Decimal("999.99")))
        assert result.is_valid is True
        assert result.errors == []

    def test_collects_every_failing_field(self):
        result = validate_price_data({"regular": 0, "premium": "1000", "diesel": "3.456"})

        assert result.is_valid is False
        assert result.errors == [
            "regular price must be positive (greater than 0)",
            "premium price must be between 0.01 and 999.99",
            "diesel price cannot have more than 2 decimal places",
        ]

    @pytest.mark.parametrize("value", [None, "abc", True, float("nan"), float("inf")])
    def test_not_a_number(self, value):
        result = validate_price_data({"regular": value, "premium": "3.00", "diesel": "3.00"})
        assert result.errors == ["regular price must be a valid number"]

    def test_negative_price(self):
        result = validate_price_data(FuelPrices(Decimal("-1.00"), Decimal("3.00"), Decimal("3.00")))
        assert result.errors == ["regular price must be positive (greater than 0)"]

    def test_below_minimum(self):
        result = validate_price_data({"regular": "0.001", "premium": "3.00", "diesel": "3.00"})
        assert result.errors == ["regular price must be between 0.01 and 999.99"]

    def test_sanitized_zero_fails(self):
        result = validate_price_data(sanitize_price_data(None))
        assert len(result.errors) == 3


class TestSuspiciousInput:

    @pytest.mark.parametrize("raw", [
        {"regular": "<script>alert(1)</script>"},
        {"regular": "3.45; DROP TABLE panels"},
        {"premium": "1 UNION SELECT password FROM users"},
        {"diesel": "javascript:alert(1)"},
        {"diesel": "../../etc/passwd"},
        {"nested": {"deep": ["${jndi:ldap://x}"]}},
    ])
    def test_flags_injection(self, raw):
        assert detect_suspicious_input(raw) is True

    @pytest.mark.parametrize("raw", [
        {"regular": "R$ 5,79", "premium": 6.19, "diesel": None},
        None,
        42,
    ])
    def test_plain_input(self, raw):
        assert detect_suspicious_input(raw) is False


def test_oversized_number_then_validation_rejects_it():
    prices = sanitize_price_data({"regular": 10**30, "premium": "5.99", "diesel": "5.29"})
    result = validate_price_data(prices)

    assert prices.regular == Decimal("0")
    assert result.errors == ["regular price must be positive (greater than 0)"]
