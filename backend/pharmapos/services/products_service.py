# backend/pharmapos/services/products_service.py
"""
Products Service

Catalog reads for the point of sale and catalog maintenance for
pharmacists/admins. Stock figures come from active ProductItem batches.
"""
from __future__ import annotations
from ..extensions import db
from ..models import Product, ProductItem, Supplier
from ..validation import ValidationError

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "generic_name",
    "category",
    "brand",
    "image",
    "price_cents",
    "is_vat_exempt",
    "prescription_required",
    "senior_pwd_eligible",
    "supplier_id",
    "is_active",
}

DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 100


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def stock_by_product(product_ids) -> dict[int, int]:
    """Sum of active batch stock per product id (missing ids -> 0)."""
    ids = list(product_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(ProductItem.product_id, db.func.coalesce(db.func.sum(ProductItem.stock), 0))
        .filter(ProductItem.product_id.in_(ids), ProductItem.is_active.is_(True))
        .group_by(ProductItem.product_id)
        .all()
    )
    totals = {pid: 0 for pid in ids}
    totals.update({pid: int(total) for pid, total in rows})
    return totals


def _paginate(query, page: int | None, per_page: int | None) -> tuple[list, dict | None]:
    if page is None:
        return query.all(), None

    per_page = min(per_page or DEFAULT_PER_PAGE, MAX_PER_PAGE)
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return rows, {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def list_products(
    page: int | None = None,
    per_page: int | None = None,
    category: str | None = None,
    include_inactive: bool = False,
) -> dict:
    """
    Product listing with stock totals and optional pagination.

    Args:
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 50, max 100)
        category: exact category filter
        include_inactive: include soft-deleted products

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    query = query.order_by(Product.name.asc(), Product.id.asc())

    products, pagination = _paginate(query, page, per_page)
    stock = stock_by_product(p.id for p in products)

    result = {
        "items": [p.to_dict(stock=stock.get(p.id, 0)) for p in products],
        "count": len(products),
    }
    if pagination is not None:
        result["pagination"] = pagination
    return result


def search_products(q: str, limit: int = 20) -> dict:
    """Case-insensitive match on name, generic name, brand or category (active only)."""
    term = (q or "").strip()
    if not term:
        return {"items": [], "count": 0}

    pattern = f"%{term.lower()}%"
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            db.or_(
                db.func.lower(Product.name).like(pattern),
                db.func.lower(Product.generic_name).like(pattern),
                db.func.lower(Product.brand).like(pattern),
                db.func.lower(Product.category).like(pattern),
            ),
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(max(1, min(limit, MAX_PER_PAGE)))
        .all()
    )
    stock = stock_by_product(p.id for p in products)
    return {
        "items": [p.to_dict(stock=stock.get(p.id, 0)) for p in products],
        "count": len(products),
    }


def get_product(product_id: int) -> dict | None:
    p = db.session.get(Product, product_id)
    if not p:
        return None
    return p.to_dict(stock=stock_by_product([p.id]).get(p.id, 0))


def _check_supplier(patch: dict) -> None:
    supplier_id = patch.get("supplier_id")
    if supplier_id is not None and not db.session.get(Supplier, supplier_id):
        raise ValidationError("Supplier not found")


def create_product(*, patch: dict) -> dict:
    """Create product using a validated patch dict."""
    _check_supplier(patch)

    p = Product()
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    return p.to_dict(stock=0)


def update_product(*, product_id: int, patch: dict) -> dict | None:
    """
    Update a product. Returns None if not found.

    Price changes affect future sales only; stored transactions keep
    their own unit prices.
    """
    p = db.session.get(Product, product_id)
    if not p:
        return None

    _check_supplier(patch)
    apply_product_patch(p, patch)

    db.session.commit()
    return p.to_dict(stock=stock_by_product([p.id]).get(p.id, 0))


def delete_product(*, product_id: int) -> bool:
    """
    Soft-delete a product.

    Soft-delete only: transaction items keep referencing the row.
    Returns True if deleted, False if not found.
    """
    p = db.session.get(Product, product_id)
    if not p:
        return False

    p.is_active = False
    db.session.commit()
    return True
