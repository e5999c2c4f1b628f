"""Tests for fixed-point money helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from escrow_exchange.domain.exceptions import InvalidAmountError
from escrow_exchange.domain.money import (
    compute_fee,
    format_amount,
    minor_unit,
    normalize_currency,
    parse_amount,
)


class TestParseAmount:
    def test_accepts_decimal_strings(self) -> None:
        assert parse_amount("100.00", "USD") == Decimal("100.00")
        assert parse_amount(5, "USD") == Decimal("5.00")

    @pytest.mark.parametrize("value", ["0", "-1.00", "NaN", "Infinity", "abc"])
    def test_rejects_non_positive_or_invalid(self, value: str) -> None:
        with pytest.raises(InvalidAmountError):
            parse_amount(value, "USD")

    def test_rejects_floats(self) -> None:
        with pytest.raises(InvalidAmountError, match="floats"):
            parse_amount(10.5, "USD")

    def test_rejects_sub_minor_unit_precision(self) -> None:
        with pytest.raises(InvalidAmountError, match="precision"):
            parse_amount("1.005", "USD")
        assert parse_amount("1.005", "USDC") == Decimal("1.005000")

    def test_zero_exponent_currency(self) -> None:
        with pytest.raises(InvalidAmountError):
            parse_amount("10.5", "JPY")


class TestComputeFee:
    def test_fifteen_percent(self) -> None:
        assert compute_fee(Decimal("100.00"), Decimal("15.00"), "USD") == Decimal("15.00")

    def test_rounds_half_up_once(self) -> None:
        # 0.10 * 15% = 0.015 -> 0.02
        assert compute_fee(Decimal("0.10"), Decimal("15"), "USD") == Decimal("0.02")
        # 0.03 * 10% = 0.003 -> 0.00
        assert compute_fee(Decimal("0.03"), Decimal("10"), "USD") == Decimal("0.00")

    def test_zero_percent(self) -> None:
        assert compute_fee(Decimal("50.00"), Decimal("0"), "USD") == Decimal("0.00")

    @pytest.mark.parametrize("percent", ["-1", "100.01"])
    def test_rejects_out_of_range_percent(self, percent: str) -> None:
        with pytest.raises(InvalidAmountError):
            compute_fee(Decimal("1.00"), Decimal(percent), "USD")


class TestCurrency:
    def test_normalize(self) -> None:
        assert normalize_currency(" usd ") == "USD"

    @pytest.mark.parametrize("code", ["", "   ", "TOO-LONG-CODE"])
    def test_rejects_bad_codes(self, code: str) -> None:
        with pytest.raises(InvalidAmountError):
            normalize_currency(code)

    def test_unknown_currency_defaults_to_cents(self) -> None:
        assert minor_unit("XYZ") == Decimal("0.01")

    def test_format(self) -> None:
        assert format_amount(Decimal("115"), "USD") == "115.00"
