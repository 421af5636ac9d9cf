# Overview: Pure pricing functions for checkout (subtotal, senior/PWD discount, VAT, total, change).

"""
Pricing Calculator

WHY: One place computes every amount a sale stores and a receipt prints.
The checkout route, the transaction writer and the receipt formatter all
call into this module; nothing else does arithmetic on money.

MONEY: All amounts are integer cents. Rates are Decimals. Each per-line
discount and VAT amount is rounded half-up to the cent, and every total is
the sum of its line values, so:

    total == subtotal - discount + vat      (exactly, in cents)
    sum(item.subtotal) == total             (items always add up to the header)

TAX MODEL (per line):
- gross    = unit_price * quantity
- discount = gross * discount_rate  if senior/PWD is on and the product is eligible, else 0
- base     = gross - discount
- vat      = base * vat_rate        unless the product is VAT-exempt
- final    = base + vat

For eligible, non-exempt products this is the same as applying the
transaction-wide formulas: discount = 20% of subtotal, VAT = 12% of
(subtotal - discount).

No session or request access here; callers pass rates in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..models.sales import PAYMENT_CASH, PAYMENT_GCASH, PAYMENT_MAYA
from ..validation import ValidationError
from pharmapos.time_utils import to_local, utcnow


DEFAULT_VAT_RATE = Decimal("0.12")
DEFAULT_DISCOUNT_RATE = Decimal("0.20")

_PAYMENT_METHOD_ALIASES = {
    "cash": PAYMENT_CASH,
    "gcash": PAYMENT_GCASH,
    "maya": PAYMENT_MAYA,
}

_REFERENCE_PREFIXES = {
    PAYMENT_CASH: "CASH",
    PAYMENT_GCASH: "GCASH",
    PAYMENT_MAYA: "MAYA",
}


@dataclass(frozen=True)
class PricedLine:
    product_id: int | None
    quantity: int
    unit_price_cents: int
    gross_cents: int
    discount_cents: int
    vat_cents: int
    is_vat_exempt: bool
    discount_applied: bool

    @property
    def base_cents(self) -> int:
        return self.gross_cents - self.discount_cents

    @property
    def final_cents(self) -> int:
        return self.base_cents + self.vat_cents


@dataclass(frozen=True)
class PricingResult:
    subtotal_cents: int = 0
    discount_cents: int = 0
    vat_base_cents: int = 0
    vat_cents: int = 0
    vatable_sales_cents: int = 0
    vat_exempt_sales_cents: int = 0
    total_cents: int = 0
    lines: tuple[PricedLine, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "vat_base_cents": self.vat_base_cents,
            "vat_cents": self.vat_cents,
            "vatable_sales_cents": self.vatable_sales_cents,
            "vat_exempt_sales_cents": self.vat_exempt_sales_cents,
            "total_cents": self.total_cents,
        }


def to_rate(value) -> Decimal:
    """Coerce a config value ("0.12", 0.12, Decimal) to a Decimal rate in [0, 1]."""
    rate = Decimal(str(value))
    if rate < 0 or rate > 1:
        raise ValueError(f"Rate out of range: {value}")
    return rate


def percent_to_rate(percent) -> Decimal:
    """20 -> Decimal('0.20')"""
    return to_rate(Decimal(str(percent)) / Decimal(100))


def round_cents(amount: Decimal) -> int:
    """Round a Decimal cent amount half-up to a whole cent."""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_line(
    *,
    unit_price_cents: int,
    quantity: int,
    is_senior_pwd: bool,
    senior_pwd_eligible: bool = True,
    is_vat_exempt: bool = False,
    product_id: int | None = None,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    discount_rate: Decimal = DEFAULT_DISCOUNT_RATE,
) -> PricedLine:
    if quantity < 0:
        raise ValueError("quantity must be >= 0")
    if unit_price_cents < 0:
        raise ValueError("unit_price_cents must be >= 0")

    gross = unit_price_cents * quantity
    discount_applied = bool(is_senior_pwd and senior_pwd_eligible)
    discount = round_cents(Decimal(gross) * discount_rate) if discount_applied else 0
    base = gross - discount
    vat = 0 if is_vat_exempt else round_cents(Decimal(base) * vat_rate)

    return PricedLine(
        product_id=product_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        gross_cents=gross,
        discount_cents=discount,
        vat_cents=vat,
        is_vat_exempt=bool(is_vat_exempt),
        discount_applied=discount_applied,
    )


def compute_totals(
    lines: Iterable,
    is_senior_pwd: bool,
    *,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    discount_rate: Decimal = DEFAULT_DISCOUNT_RATE,
) -> PricingResult:
    """
    Price a cart.

    `lines` is any iterable of objects with unit_price_cents and quantity,
    and optionally product_id, is_vat_exempt and senior_pwd_eligible
    (CartLine fits). An empty cart prices to all zeros.
    """
    priced = tuple(
        price_line(
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            is_senior_pwd=is_senior_pwd,
            senior_pwd_eligible=getattr(line, "senior_pwd_eligible", True),
            is_vat_exempt=getattr(line, "is_vat_exempt", False),
            product_id=getattr(line, "product_id", None),
            vat_rate=vat_rate,
            discount_rate=discount_rate,
        )
        for line in lines
    )

    subtotal = sum(p.gross_cents for p in priced)
    discount = sum(p.discount_cents for p in priced)
    vat = sum(p.vat_cents for p in priced)
    vatable = sum(p.base_cents for p in priced if not p.is_vat_exempt)
    exempt = sum(p.base_cents for p in priced if p.is_vat_exempt)

    return PricingResult(
        subtotal_cents=subtotal,
        discount_cents=discount,
        vat_base_cents=subtotal - discount,
        vat_cents=vat,
        vatable_sales_cents=vatable,
        vat_exempt_sales_cents=exempt,
        total_cents=subtotal - discount + vat,
        lines=priced,
    )


def compute_change(payment_method: str, cash_received_cents: int | None, total_cents: int) -> int | None:
    """
    Change due for cash payments: max(0, cash_received - total).

    Returns None for GCash/Maya (and for cash with nothing tendered yet).
    """
    if normalize_payment_method(payment_method) != PAYMENT_CASH:
        return None
    if cash_received_cents is None:
        return None
    return max(0, cash_received_cents - total_cents)


def normalize_payment_method(value) -> str:
    """Map "cash" / "GCash" / "maya" (any case) to the stored enum value."""
    if not isinstance(value, str):
        raise ValidationError("Invalid payment method")
    method = _PAYMENT_METHOD_ALIASES.get(value.strip().lower())
    if method is None:
        raise ValidationError(f"Invalid payment method: {value}")
    return method


def format_reference_number(
    payment_method: str,
    user_input: str | None,
    now: datetime | None = None,
    tz_name: str = "Asia/Manila",
) -> str:
    """
    Build the stored reference number: "{PREFIX}-{userInput}".

    PREFIX is CASH, GCASH or MAYA. Cash sales with no input get a
    local-time stamp (CASH-20261017-140502). GCash/Maya require the
    wallet's own reference. Input already carrying the prefix is kept as is.
    """
    method = normalize_payment_method(payment_method)
    prefix = _REFERENCE_PREFIXES[method]

    raw = (user_input or "").strip()
    if raw.upper().startswith(f"{prefix}-"):
        raw = raw[len(prefix) + 1:].strip()

    if not raw:
        if method != PAYMENT_CASH:
            raise ValidationError(f"Reference number is required for {method} payments")
        local = to_local(now or utcnow(), tz_name)
        raw = local.strftime("%Y%m%d-%H%M%S")

    return f"{prefix}-{raw}"


def format_senior_pwd_id(id_type: str | None, id_number: str | None) -> str | None:
    """("senior", "12345") -> "SENIOR-12345". Missing number -> None."""
    number = (id_number or "").strip()
    if not number:
        return None
    kind = (id_type or "").strip().upper()
    if not kind or number.upper().startswith(f"{kind}-"):
        return number
    return f"{kind}-{number}"


def format_peso(cents: int | None) -> str:
    """12345 -> "₱123.45"; negative amounts keep the sign in front."""
    if cents is None:
        cents = 0
    amount = Decimal(abs(cents)) / Decimal(100)
    sign = "-" if cents < 0 else ""
    return f"{sign}₱{amount:,.2f}"
