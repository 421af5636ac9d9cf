from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z


class Supplier(db.Model):
    """Vendors that supply products. Reference data only."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    contact_number = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "contact_number": self.contact_number,
            "email": self.email,
            "address": self.address,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Product master data.

    Read-only from the point of sale; maintained by pharmacists/admins.

    TAX FLAGS:
    - is_vat_exempt: no 12% VAT on this product's lines
    - senior_pwd_eligible: the senior citizen / PWD discount applies to this product
    - prescription_required: informational (cashier prompt)

    Stock lives in ProductItem batches, never on the product row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(128), nullable=True, index=True)
    brand = db.Column(db.String(128), nullable=True)
    image = db.Column(db.String(512), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_vat_exempt = db.Column(db.Boolean, nullable=False, default=False)
    prescription_required = db.Column(db.Boolean, nullable=False, default=False)
    senior_pwd_eligible = db.Column(db.Boolean, nullable=False, default=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))

    def to_dict(self, stock: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "generic_name": self.generic_name,
            "category": self.category,
            "brand": self.brand,
            "image": self.image,
            "price_cents": self.price_cents,
            "is_vat_exempt": self.is_vat_exempt,
            "prescription_required": self.prescription_required,
            "senior_pwd_eligible": self.senior_pwd_eligible,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if stock is not None:
            data["stock"] = stock
        return data


class ProductItem(db.Model):
    """
    A stock batch of a product.

    WHY batches: pharmacy stock is tracked per lot with its own expiry.
    Sales draw down batches first-expiring-first (FIFO by expiry_date,
    undated batches last).

    INVARIANT: stock >= 0. Enforced by a CHECK constraint and by the
    conditional decrement in transaction_service.
    """
    __tablename__ = "product_items"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_items_stock_nonnegative"),
        db.Index("ix_product_items_product_expiry", "product_id", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)
    location = db.Column(db.String(64), nullable=False, default="main_store")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("items", lazy=True))
    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "stock": self.stock,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "batch_number": self.batch_number,
            "location": self.location,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
