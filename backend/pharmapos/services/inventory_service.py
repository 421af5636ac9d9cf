# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/pharmapos/services/inventory_service.py
"""
Inventory Invariants (authoritative)

Stock model:
- Stock is held per batch in product_items.stock; product stock is the
  SUM over that product's active batches.
- A batch never holds negative stock (CHECK constraint + conditional decrement).
- Deactivated batches are excluded from every stock figure and from sales.

Draw-down order (FIFO by expiry):
- earliest expiry_date first
- batches without an expiry_date last
- ties broken by id (oldest batch first)

Sales decrement stock inside the checkout unit of work; see
transaction_service.decrement_stock_fifo.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product, ProductItem
from .products_service import stock_by_product


ITEM_MUTABLE_FIELDS = {"stock", "expiry_date", "batch_number", "location", "is_active"}


def fifo_order(query):
    return query.order_by(
        ProductItem.expiry_date.is_(None).asc(),
        ProductItem.expiry_date.asc(),
        ProductItem.id.asc(),
    )


def active_batches(product_id: int):
    """Active batches with stock, in draw-down order."""
    query = db.session.query(ProductItem).filter(
        ProductItem.product_id == product_id,
        ProductItem.is_active.is_(True),
        ProductItem.stock > 0,
    )
    return fifo_order(query).all()


def list_items(include_inactive: bool = False) -> dict:
    query = db.session.query(ProductItem)
    if not include_inactive:
        query = query.filter(ProductItem.is_active.is_(True))
    items = fifo_order(query.order_by(ProductItem.product_id.asc())).all()
    return {"items": [i.to_dict() for i in items], "count": len(items)}


def items_for_product(product_id: int) -> dict | None:
    if not db.session.get(Product, product_id):
        return None
    query = db.session.query(ProductItem).filter(
        ProductItem.product_id == product_id,
        ProductItem.is_active.is_(True),
    )
    items = fifo_order(query).all()
    return {"items": [i.to_dict() for i in items], "count": len(items)}


def get_stock(product_id: int) -> dict | None:
    product = db.session.get(Product, product_id)
    if not product:
        return None
    return {
        "product_id": product_id,
        "product_name": product.name,
        "stock": stock_by_product([product_id]).get(product_id, 0),
    }


def products_with_stock(in_stock_only: bool = False) -> dict:
    """
    Active products with total stock and the next-expiring batch date,
    the shape the cashier's product grid uses.
    """
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    stock = stock_by_product(p.id for p in products)

    next_expiry = dict(
        db.session.query(ProductItem.product_id, db.func.min(ProductItem.expiry_date))
        .filter(ProductItem.is_active.is_(True), ProductItem.stock > 0)
        .group_by(ProductItem.product_id)
        .all()
    )

    items = []
    for p in products:
        qty = stock.get(p.id, 0)
        if in_stock_only and qty <= 0:
            continue
        data = p.to_dict(stock=qty)
        expiry = next_expiry.get(p.id)
        data["next_expiry_date"] = expiry.isoformat() if expiry else None
        items.append(data)

    return {"items": items, "count": len(items)}


def add_item(*, patch: dict, user_id: int | None) -> dict:
    """
    Receive a new stock batch.

    Raises ValueError if the product doesn't exist or is inactive.
    """
    product = db.session.get(Product, patch.get("product_id"))
    if not product:
        raise ValueError("Product not found")
    if not product.is_active:
        raise ValueError("Product is inactive")

    item = ProductItem(
        product_id=product.id,
        stock=patch.get("stock", 0),
        expiry_date=patch.get("expiry_date"),
        batch_number=patch.get("batch_number"),
        location=patch.get("location") or "main_store",
        is_active=True,
        created_by_user_id=user_id,
    )
    db.session.add(item)
    db.session.commit()
    return item.to_dict()


def update_item(*, item_id: int, patch: dict) -> dict | None:
    item = db.session.get(ProductItem, item_id)
    if not item:
        return None
    for k, v in patch.items():
        if k in ITEM_MUTABLE_FIELDS:
            setattr(item, k, v)
    if not item.location:
        item.location = "main_store"
    db.session.commit()
    return item.to_dict()


def delete_item(*, item_id: int) -> bool:
    """Deactivate a batch. Returns False if not found."""
    item = db.session.get(ProductItem, item_id)
    if not item:
        return False
    item.is_active = False
    db.session.commit()
    return True
