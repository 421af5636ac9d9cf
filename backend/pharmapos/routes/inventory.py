# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/pharmapos/routes/inventory.py
"""
Inventory (stock batch) routes.

SECURITY: All routes require authentication.
- View operations are open to every staff role
- Receiving, editing and deactivating batches require pharmacist or admin
"""
from flask import Blueprint, request, g, current_app

from ..services import inventory_service
from ..models import ProductItem
from ..models.auth import ROLE_ADMIN, ROLE_PHARMACIST
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product_item,
    ValidationError,
)
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ADD_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "stock", "expiry_date", "batch_number", "location"},
    required_on_create={"product_id", "stock"},
)

UPDATE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields=set(inventory_service.ITEM_MUTABLE_FIELDS),
    required_on_create=set(),
)


def _truthy(raw: str | None) -> bool:
    return (raw or "").lower() in ("1", "true", "yes")


@inventory_bp.get("/items")
@require_auth
def list_items_route():
    """All batches in draw-down order (?include_inactive=true for deactivated ones)."""
    return inventory_service.list_items(include_inactive=_truthy(request.args.get("include_inactive")))


@inventory_bp.get("/items/product/<int:product_id>")
@require_auth
def product_items_route(product_id: int):
    result = inventory_service.items_for_product(product_id)
    if result is None:
        return {"error": "Product not found"}, 404
    return result


@inventory_bp.get("/stock/<int:product_id>")
@require_auth
def product_stock_route(product_id: int):
    result = inventory_service.get_stock(product_id)
    if result is None:
        return {"error": "Product not found"}, 404
    return result


@inventory_bp.get("/products-with-stock")
@require_auth
def products_with_stock_route():
    """
    Active products with total stock and next expiry date.

    Query params:
    - in_stock: bool (optional) - only products with stock > 0
    """
    return inventory_service.products_with_stock(in_stock_only=_truthy(request.args.get("in_stock")))


@inventory_bp.post("/add")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def add_item_route():
    """
    Receive a stock batch.

    Request body: {product_id, stock, expiry_date?, batch_number?, location?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=ProductItem, payload=payload, policy=ADD_ITEM_POLICY, partial=False)
        enforce_rules_product_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = inventory_service.add_item(patch=patch, user_id=g.current_user.id)
    except ValueError as e:
        if str(e) == "Product not found":
            return {"error": str(e)}, 404
        return {"error": str(e)}, 400

    current_app.logger.info(
        "Batch %s received for product %s: stock=%s",
        created["id"], created["product_id"], created["stock"],
    )
    return created, 201


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def update_item_route(item_id: int):
    """Update a batch (stock, expiry_date, batch_number, location, is_active)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=ProductItem, payload=payload, policy=UPDATE_ITEM_POLICY, partial=True)
        enforce_rules_product_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = inventory_service.update_item(item_id=item_id, patch=patch)
    if not updated:
        return {"error": "Item not found"}, 404
    return updated, 200


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def delete_item_route(item_id: int):
    """Deactivate a batch; its stock no longer counts or sells."""
    if not inventory_service.delete_item(item_id=item_id):
        return {"error": "Item not found"}, 404
    return {"ok": True}, 200
