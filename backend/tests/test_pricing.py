"""
Pricing calculator tests.

Verifies:
- Senior/PWD worked example (P200 -> P179.20, change P20.80 on P200 cash)
- total == subtotal - discount + vat for mixed carts
- Discount is zero whenever the senior/PWD flag is off
- VAT-exempt and non-eligible products
- Reference number, payment method and peso formatting
"""

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from pharmapos.services.pricing_service import (
    compute_change,
    compute_totals,
    format_peso,
    format_reference_number,
    format_senior_pwd_id,
    normalize_payment_method,
    percent_to_rate,
    price_line,
    round_cents,
    to_rate,
)
from pharmapos.validation import ValidationError


def line(price_cents, quantity, **flags):
    return SimpleNamespace(unit_price_cents=price_cents, quantity=quantity, **flags)


class TestSeniorPwdExample:

    def test_two_units_of_p100_with_senior_discount(self):
        totals = compute_totals([line(10000, 2)], is_senior_pwd=True)

        assert totals.subtotal_cents == 20000
        assert totals.discount_cents == 4000
        assert totals.vat_base_cents == 16000
        assert totals.vat_cents == 1920
        assert totals.total_cents == 17920

    def test_change_on_p200_cash(self):
        totals = compute_totals([line(10000, 2)], is_senior_pwd=True)
        assert compute_change("cash", 20000, totals.total_cents) == 2080

    def test_same_cart_without_discount(self):
        totals = compute_totals([line(10000, 2)], is_senior_pwd=False)

        assert totals.discount_cents == 0
        assert totals.vat_cents == 2400
        assert totals.total_cents == 22400


class TestTotalsInvariants:

    @pytest.mark.parametrize("is_senior_pwd", [True, False])
    def test_total_equals_subtotal_minus_discount_plus_vat(self, is_senior_pwd):
        lines = [
            line(333, 3),
            line(85050, 1, is_vat_exempt=True),
            line(1999, 7, senior_pwd_eligible=False),
            line(5, 1),
        ]
        totals = compute_totals(lines, is_senior_pwd=is_senior_pwd)

        assert totals.subtotal_cents == 333 * 3 + 85050 + 1999 * 7 + 5
        assert totals.total_cents == totals.subtotal_cents - totals.discount_cents + totals.vat_cents
        assert sum(p.final_cents for p in totals.lines) == totals.total_cents
        assert totals.vatable_sales_cents + totals.vat_exempt_sales_cents == totals.vat_base_cents

    def test_discount_is_zero_when_flag_off(self):
        lines = [line(10000, 2), line(85050, 1, is_vat_exempt=True)]
        totals = compute_totals(lines, is_senior_pwd=False)

        assert totals.discount_cents == 0
        assert all(p.discount_cents == 0 for p in totals.lines)

    def test_empty_cart_prices_to_zero(self):
        totals = compute_totals([], is_senior_pwd=True)
        assert totals.to_dict() == {
            "subtotal_cents": 0,
            "discount_cents": 0,
            "vat_base_cents": 0,
            "vat_cents": 0,
            "vatable_sales_cents": 0,
            "vat_exempt_sales_cents": 0,
            "total_cents": 0,
        }


class TestPerLineRules:

    def test_vat_exempt_line_gets_discount_but_no_vat(self):
        priced = price_line(unit_price_cents=85050, quantity=1, is_senior_pwd=True, is_vat_exempt=True)

        assert priced.discount_cents == 17010
        assert priced.vat_cents == 0
        assert priced.final_cents == 68040

    def test_ineligible_product_keeps_full_price(self):
        lines = [line(10000, 1), line(25000, 1, senior_pwd_eligible=False)]
        totals = compute_totals(lines, is_senior_pwd=True)

        assert totals.subtotal_cents == 35000
        assert totals.discount_cents == 2000
        assert totals.vat_cents == 960 + 3000
        assert totals.total_cents == 36960
        assert [p.discount_applied for p in totals.lines] == [True, False]

    def test_rounding_is_half_up_per_line(self):
        priced = price_line(unit_price_cents=333, quantity=1, is_senior_pwd=True)

        # 66.6 -> 67 discount, 266 * 0.12 = 31.92 -> 32 VAT
        assert priced.discount_cents == 67
        assert priced.vat_cents == 32
        assert priced.final_cents == 298

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError):
            price_line(unit_price_cents=100, quantity=-1, is_senior_pwd=False)

    def test_custom_rates(self):
        priced = price_line(
            unit_price_cents=10000,
            quantity=1,
            is_senior_pwd=True,
            vat_rate=Decimal("0.10"),
            discount_rate=Decimal("0.05"),
        )
        assert priced.discount_cents == 500
        assert priced.vat_cents == 950


class TestChange:

    def test_change_never_negative(self):
        assert compute_change("Cash", 100, 17920) == 0

    def test_no_change_for_wallet_payments(self):
        assert compute_change("gcash", 20000, 17920) is None
        assert compute_change("Maya", 20000, 17920) is None

    def test_no_change_without_cash_tendered(self):
        assert compute_change("cash", None, 17920) is None


class TestRates:

    def test_to_rate_accepts_strings_and_floats(self):
        assert to_rate("0.12") == Decimal("0.12")
        assert to_rate(0.2) == Decimal("0.2")

    def test_to_rate_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            to_rate("1.5")

    def test_percent_to_rate(self):
        assert percent_to_rate(20) == Decimal("0.2")

    def test_round_cents(self):
        assert round_cents(Decimal("0.5")) == 1
        assert round_cents(Decimal("1.49")) == 1


class TestFormatting:

    @pytest.mark.parametrize(
        "method,user_input,expected",
        [
            ("cash", "0001", "CASH-0001"),
            ("gcash", "ABC123", "GCASH-ABC123"),
            ("maya", " 98765 ", "MAYA-98765"),
            ("gcash", "GCASH-ABC123", "GCASH-ABC123"),
        ],
    )
    def test_reference_number_prefix(self, method, user_input, expected):
        assert format_reference_number(method, user_input) == expected

    def test_cash_reference_defaults_to_local_timestamp(self):
        now = datetime(2026, 10, 17, 6, 5, 2)  # UTC
        ref = format_reference_number("cash", "", now=now, tz_name="Asia/Manila")
        assert ref == "CASH-20261017-140502"

    def test_wallet_reference_required(self):
        with pytest.raises(ValidationError):
            format_reference_number("gcash", "")

    @pytest.mark.parametrize("value", ["cash", "CASH", "Cash ", "gcash", "GCash", "maya"])
    def test_normalize_payment_method(self, value):
        assert normalize_payment_method(value) in {"Cash", "Gcash", "Maya"}

    @pytest.mark.parametrize("value", ["card", "", None, 5])
    def test_unknown_payment_method_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_payment_method(value)

    def test_senior_pwd_id(self):
        assert format_senior_pwd_id("senior", "12345") == "SENIOR-12345"
        assert format_senior_pwd_id("pwd", "PWD-777") == "PWD-777"
        assert format_senior_pwd_id(None, "999") == "999"
        assert format_senior_pwd_id("senior", "  ") is None

    def test_format_peso(self):
        assert format_peso(17920) == "₱179.20"
        assert format_peso(123456789) == "₱1,234,567.89"
        assert format_peso(-2080) == "-₱20.80"
        assert format_peso(None) == "₱0.00"
