from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z

PAYMENT_CASH = "Cash"
PAYMENT_GCASH = "Gcash"
PAYMENT_MAYA = "Maya"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_GCASH, PAYMENT_MAYA)

SENIOR_CITIZEN_DISCOUNT_NAME = "Senior Citizen Discount"


class Discount(db.Model):
    """
    Named discount rates.

    The row named "Senior Citizen Discount" supplies the senior/PWD rate
    at checkout; when absent the configured default (20%) is used.
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_discounts_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    # Whole percent, e.g. 20 for 20%
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False)
    is_vat_exempt = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "discount_percent": float(self.discount_percent),
            "is_vat_exempt": self.is_vat_exempt,
            "is_active": self.is_active,
        }


class Transaction(db.Model):
    """
    A completed sale. Immutable after creation.

    WHY: The header and its items are written in one database transaction
    together with the stock decrement, so the stored amounts are always
    exactly the amounts the customer paid.

    AMOUNTS (all cents):
    - subtotal_cents = sum(unit_price * quantity)
    - discount_cents = senior/PWD discount (0 when is_senior_pwd is False)
    - vat_cents      = 12% of the discounted base of VAT-able lines
    - total_cents    = subtotal - discount + vat
    - change_cents   = max(0, cash_received - total) for Cash, NULL otherwise
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("reference_no", name="uq_transactions_reference_no"),
        db.Index("ix_transactions_order_datetime", "order_datetime"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    reference_no = db.Column(db.String(128), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)
    vatable_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_exempt_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=True)

    is_senior_pwd = db.Column(db.Boolean, nullable=False, default=False)
    senior_pwd_id = db.Column(db.String(64), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    order_datetime = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("transactions", lazy=True))
    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "reference_no": self.reference_no,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "vat_cents": self.vat_cents,
            "vatable_sales_cents": self.vatable_sales_cents,
            "vat_exempt_sales_cents": self.vat_exempt_sales_cents,
            "total_cents": self.total_cents,
            "cash_received_cents": self.cash_received_cents,
            "change_cents": self.change_cents,
            "is_senior_pwd": self.is_senior_pwd,
            "senior_pwd_id": self.senior_pwd_id,
            "user_id": self.user_id,
            "cashier": self.user.full_name if self.user else None,
            "order_datetime": to_utc_z(self.order_datetime),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    One line of a transaction.

    Rows written before per-line breakdowns existed have has_breakdown False
    and carry 0 for both discount_cents and vat_cents; receipts flag those
    as "breakdown not available".
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)
    is_vat_exempt = db.Column(db.Boolean, nullable=False, default=False)
    has_breakdown = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship("Product")
    discount = db.relationship("Discount")

    @property
    def gross_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "discount_id": self.discount_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "gross_cents": self.gross_cents,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "vat_cents": self.vat_cents,
            "is_vat_exempt": self.is_vat_exempt,
            "has_breakdown": self.has_breakdown,
        }
