# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/pharmapos/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require an authenticated, device-verified session.
- Read operations are open to every staff role
- Write operations require pharmacist or admin
"""
from flask import Blueprint, request, current_app

from ..services import products_service
from ..models import Product
from ..models.auth import ROLE_ADMIN, ROLE_PHARMACIST
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=set(products_service.PRODUCT_MUTABLE_FIELDS),
    required_on_create={"name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with stock totals.

    Query params:
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page (or limit): int (optional) - items per page (default 50, max 100)
    - category: str (optional) - exact category filter
    - include_inactive: bool (optional) - include soft-deleted products
    """
    page = request.args.get("page", type=int)
    per_page = request.args.get("per_page", type=int) or request.args.get("limit", type=int)
    category = request.args.get("category") or None
    include_inactive = request.args.get("include_inactive", "false").lower() in ("1", "true", "yes")

    return products_service.list_products(
        page=page,
        per_page=per_page,
        category=category,
        include_inactive=include_inactive,
    )


@products_bp.get("/search")
@require_auth
def search_products():
    """Search active products by name, generic name, brand or category (?q=)."""
    q = request.args.get("q", "")
    limit = request.args.get("limit", default=20, type=int)
    return products_service.search_products(q, limit=limit)


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    if not product:
        return {"error": "Product not found"}, 404
    return product


@products_bp.post("")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def create_product_route():
    """
    Create a new product.

    Requires pharmacist or admin.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    current_app.logger.info("Product %s created: %s", created["id"], created["name"])
    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def update_product_route(product_id: int):
    """
    Update product fields (partial).

    Requires pharmacist or admin.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ValueError as e:
        return {"error": str(e)}, 400

    if not updated:
        return {"error": "Product not found"}, 404

    return updated, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def delete_product_route(product_id: int):
    """
    Soft-delete a product (is_active=False).

    Requires pharmacist or admin.
    """
    if not products_service.delete_product(product_id=product_id):
        return {"error": "Product not found"}, 404

    return {"ok": True}, 200
