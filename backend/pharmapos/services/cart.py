# Overview: In-memory cart of line items with a per-line stock ceiling.

"""
Cart State Holder

The browser keeps its own cart; the server rebuilds one from the checkout
payload with current product rows so that quantities are checked against
stock and prices come from the catalog, not the client.

INVARIANTS:
- 1 <= line.quantity <= line.max_quantity for every line
- at most one line per product
- setting a quantity to 0 (or below) removes the line
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..validation import ValidationError
from .pricing_service import (
    DEFAULT_DISCOUNT_RATE,
    DEFAULT_VAT_RATE,
    PricingResult,
    compute_totals,
)


class CartError(ValidationError):
    """Cart operation rejected (unknown product, stock ceiling, bad quantity)."""


@dataclass
class CartLine:
    product_id: int
    name: str
    unit_price_cents: int
    quantity: int
    max_quantity: int
    is_vat_exempt: bool = False
    senior_pwd_eligible: bool = True

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "max_quantity": self.max_quantity,
            "is_vat_exempt": self.is_vat_exempt,
            "senior_pwd_eligible": self.senior_pwd_eligible,
            "line_total_cents": self.line_total_cents,
        }


class Cart:
    def __init__(self):
        self._lines: dict[int, CartLine] = {}
        self.is_senior_pwd = False

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(self._lines.values())

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: int) -> CartLine | None:
        return self._lines.get(product_id)

    def add(
        self,
        *,
        product_id: int,
        name: str,
        unit_price_cents: int,
        max_quantity: int,
        quantity: int = 1,
        is_vat_exempt: bool = False,
        senior_pwd_eligible: bool = True,
    ) -> CartLine:
        """
        Add a product, or bump the quantity of its existing line.

        Raises CartError when the product is out of stock or the new
        quantity would exceed the stock ceiling.
        """
        if quantity < 1:
            raise CartError("Quantity must be at least 1")
        if max_quantity < 1:
            raise CartError(f"{name} is out of stock")

        line = self._lines.get(product_id)
        if line is None:
            if quantity > max_quantity:
                raise CartError(f"Only {max_quantity} of {name} in stock")
            line = CartLine(
                product_id=product_id,
                name=name,
                unit_price_cents=unit_price_cents,
                quantity=quantity,
                max_quantity=max_quantity,
                is_vat_exempt=is_vat_exempt,
                senior_pwd_eligible=senior_pwd_eligible,
            )
            self._lines[product_id] = line
            return line

        # Refresh ceiling/price from the latest product read
        line.max_quantity = max_quantity
        line.unit_price_cents = unit_price_cents
        new_quantity = line.quantity + quantity
        if new_quantity > max_quantity:
            raise CartError(f"Only {max_quantity} of {name} in stock")
        line.quantity = new_quantity
        return line

    def update_quantity(self, product_id: int, quantity: int) -> CartLine | None:
        """
        Set a line's quantity. 0 or less removes the line (returns None).
        Above the stock ceiling is rejected.
        """
        line = self._lines.get(product_id)
        if line is None:
            raise CartError(f"Product {product_id} is not in the cart")
        if quantity <= 0:
            del self._lines[product_id]
            return None
        if quantity > line.max_quantity:
            raise CartError(f"Only {line.max_quantity} of {line.name} in stock")
        line.quantity = quantity
        return line

    def remove(self, product_id: int) -> bool:
        return self._lines.pop(product_id, None) is not None

    def clear(self) -> None:
        self._lines.clear()
        self.is_senior_pwd = False

    def set_senior_pwd(self, enabled: bool) -> None:
        self.is_senior_pwd = bool(enabled)

    def totals(
        self,
        *,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        discount_rate: Decimal = DEFAULT_DISCOUNT_RATE,
    ) -> PricingResult:
        return compute_totals(
            self._lines.values(),
            self.is_senior_pwd,
            vat_rate=vat_rate,
            discount_rate=discount_rate,
        )

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self._lines.values()],
            "is_senior_pwd": self.is_senior_pwd,
            "totals": self.totals().to_dict(),
        }
