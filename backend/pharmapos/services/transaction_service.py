# Overview: Service-layer operations for checkout; writes a sale, its items and the stock decrement atomically.

"""
Transaction Writer

CHECKOUT (create_transaction):
1. Validate the payload: at least one item, a known payment method, a wallet
   reference for GCash/Maya, cash received >= total for Cash.
2. Rebuild the cart from catalog rows (catalog price, tax flags, stock ceiling).
3. Price it (pricing_service).
4. In ONE database transaction:
   - insert the header and flush for its id
   - insert every item
   - decrement batch stock first-expiring-first with a conditional UPDATE
     (... SET stock = stock - n WHERE id = ? AND stock >= n)
   Any failure rolls back all of it. Validation failures happen before the
   first write, so a rejected checkout leaves no rows behind.

ERRORS:
- TransactionError (400): bad payload
- InsufficientStockError (409): not enough stock, including losing a race
- ConflictError (409): reference number already used

History: list_transactions / get_transaction / delete_transaction.
Deleting removes items first, then the header; stock is NOT restored.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Discount, Product, ProductItem, Transaction, TransactionItem
from ..models.sales import PAYMENT_CASH, SENIOR_CITIZEN_DISCOUNT_NAME
from ..validation import ValidationError, ConflictError, parse_money_to_cents
from .cart import Cart
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import fifo_order
from .pricing_service import (
    compute_change,
    format_reference_number,
    format_senior_pwd_id,
    normalize_payment_method,
    percent_to_rate,
    to_rate,
)
from .products_service import stock_by_product
from pharmapos.time_utils import utcnow


DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200


class TransactionError(ValidationError):
    """Checkout payload rejected before anything was written."""


class InsufficientStockError(ConflictError):
    """Not enough stock to complete the sale."""


def get_vat_rate() -> Decimal:
    return to_rate(current_app.config.get("VAT_RATE", "0.12"))


def get_senior_discount() -> tuple[Decimal, Discount | None]:
    """
    Senior/PWD discount rate and its Discount row.

    The active "Senior Citizen Discount" row wins; otherwise the configured
    default rate (20%) with no row.
    """
    row = db.session.query(Discount).filter_by(
        name=SENIOR_CITIZEN_DISCOUNT_NAME,
        is_active=True,
    ).first()
    if row is not None:
        return percent_to_rate(row.discount_percent), row
    return to_rate(current_app.config.get("SENIOR_PWD_DISCOUNT_RATE", "0.20")), None


def _parse_items(raw_items) -> list[tuple[int, int]]:
    """
    [{product_id, quantity}, ...] -> [(product_id, quantity)], duplicates merged
    in first-seen order.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise TransactionError("Transaction must contain at least one item")

    merged: dict[int, int] = {}
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise TransactionError(f"items[{idx}] must be an object")
        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        if not isinstance(product_id, int) or isinstance(product_id, bool) or product_id <= 0:
            raise TransactionError(f"items[{idx}].product_id must be a positive integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise TransactionError(f"items[{idx}].quantity must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity

    return list(merged.items())


def build_cart(items: list[tuple[int, int]], is_senior_pwd: bool) -> Cart:
    """
    Rebuild a cart from catalog rows.

    Raises TransactionError for unknown/inactive products and
    InsufficientStockError when a quantity exceeds current stock.
    """
    ids = [pid for pid, _ in items]
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(ids)).all()
    }
    stock = stock_by_product(ids)

    cart = Cart()
    cart.set_senior_pwd(is_senior_pwd)
    for product_id, quantity in items:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise TransactionError(f"Product {product_id} not found")
        available = stock.get(product_id, 0)
        if quantity > available:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}: requested {quantity}, available {available}"
            )
        cart.add(
            product_id=product.id,
            name=product.name,
            unit_price_cents=product.price_cents,
            max_quantity=available,
            quantity=quantity,
            is_vat_exempt=product.is_vat_exempt,
            senior_pwd_eligible=product.senior_pwd_eligible,
        )
    return cart


def decrement_stock_fifo(product_id: int, quantity: int) -> None:
    """
    Take `quantity` units from the product's active batches, earliest
    expiry first. Must run inside the caller's unit of work; does not commit.

    Each batch is decremented with a conditional UPDATE so a concurrent sale
    can never drive stock negative; losing that race raises
    InsufficientStockError.
    """
    remaining = quantity
    query = db.session.query(ProductItem).filter(
        ProductItem.product_id == product_id,
        ProductItem.is_active.is_(True),
        ProductItem.stock > 0,
    )
    batches = lock_for_update(fifo_order(query)).all()

    for batch in batches:
        if remaining <= 0:
            break
        take = min(batch.stock, remaining)
        result = db.session.execute(
            update(ProductItem)
            .where(ProductItem.id == batch.id, ProductItem.stock >= take)
            .values(stock=ProductItem.stock - take)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise InsufficientStockError(f"Stock changed during checkout for product {product_id}")
        remaining -= take

    if remaining > 0:
        raise InsufficientStockError(f"Insufficient stock for product {product_id}")


def create_transaction(*, user_id: int, payload: dict) -> dict:
    """
    Validate, price and persist a sale.

    Payload:
        reference_number: str (required for gcash/maya; cash auto-generates)
        payment_method: "cash" | "gcash" | "maya"
        is_senior_pwd: bool
        senior_pwd_id / senior_pwd_id_type: required when is_senior_pwd
        cash_received: number in pesos (required for cash)
        items: [{product_id, quantity, unit_price?}]  (unit_price is ignored;
               the catalog price is authoritative)

    Returns dict with transaction_id, reference_no, calculated_amounts, transaction.
    """
    if not isinstance(payload, dict):
        raise TransactionError("Invalid JSON payload")

    items = _parse_items(payload.get("items"))
    try:
        method = normalize_payment_method(payload.get("payment_method"))
    except ValidationError as exc:
        raise TransactionError(str(exc)) from exc

    now = utcnow()
    try:
        reference_no = format_reference_number(
            method,
            payload.get("reference_number"),
            now=now,
            tz_name=current_app.config.get("RECEIPT_TIMEZONE", "Asia/Manila"),
        )
    except ValidationError as exc:
        raise TransactionError(str(exc)) from exc

    is_senior_pwd = payload.get("is_senior_pwd")
    if is_senior_pwd is None:
        is_senior_pwd = False
    elif not isinstance(is_senior_pwd, bool):
        raise TransactionError("is_senior_pwd must be true or false")
    senior_pwd_id = None
    if is_senior_pwd:
        senior_pwd_id = format_senior_pwd_id(payload.get("senior_pwd_id_type"), payload.get("senior_pwd_id"))
        if not senior_pwd_id:
            raise TransactionError("Senior citizen / PWD ID is required when the discount is applied")

    cart = build_cart(items, is_senior_pwd)
    discount_rate, discount_row = get_senior_discount()
    totals = cart.totals(vat_rate=get_vat_rate(), discount_rate=discount_rate)

    cash_received_cents = None
    if method == PAYMENT_CASH:
        if payload.get("cash_received") in (None, ""):
            raise TransactionError("Cash received is required for cash payments")
        cash_received_cents = parse_money_to_cents(payload.get("cash_received"), "cash_received")
        if cash_received_cents < totals.total_cents:
            raise TransactionError("Cash received is less than the total amount due")
    change_cents = compute_change(method, cash_received_cents, totals.total_cents)

    if db.session.query(Transaction.id).filter_by(reference_no=reference_no).first():
        raise ConflictError(f"Reference number {reference_no} already exists")

    def _write() -> Transaction:
        txn = Transaction(
            reference_no=reference_no,
            payment_method=method,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            vat_cents=totals.vat_cents,
            vatable_sales_cents=totals.vatable_sales_cents,
            vat_exempt_sales_cents=totals.vat_exempt_sales_cents,
            total_cents=totals.total_cents,
            cash_received_cents=cash_received_cents,
            change_cents=change_cents,
            is_senior_pwd=is_senior_pwd,
            senior_pwd_id=senior_pwd_id,
            user_id=user_id,
            order_datetime=now,
        )
        db.session.add(txn)
        db.session.flush()

        for line in totals.lines:
            db.session.add(TransactionItem(
                transaction_id=txn.id,
                product_id=line.product_id,
                discount_id=discount_row.id if (line.discount_applied and discount_row) else None,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                subtotal_cents=line.final_cents,
                discount_cents=line.discount_cents,
                vat_cents=line.vat_cents,
                is_vat_exempt=line.is_vat_exempt,
                has_breakdown=True,
            ))

        for line in totals.lines:
            decrement_stock_fifo(line.product_id, line.quantity)

        db.session.commit()
        return txn

    try:
        txn = run_with_retry(_write)
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"Reference number {reference_no} already exists") from exc
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Transaction %s recorded: ref=%s method=%s total_cents=%s user=%s",
        txn.id, txn.reference_no, txn.payment_method, txn.total_cents, user_id,
    )

    amounts = totals.to_dict()
    amounts["cash_received_cents"] = cash_received_cents
    amounts["change_cents"] = change_cents

    return {
        "transaction_id": txn.id,
        "reference_no": txn.reference_no,
        "calculated_amounts": amounts,
        "transaction": txn.to_dict(include_items=True),
    }


def list_transactions(page: int | None = 1, limit: int | None = DEFAULT_PAGE_LIMIT) -> dict:
    """Newest first, with item counts and a first-item preview."""
    page = max(page or 1, 1)
    limit = max(1, min(limit or DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT))

    query = db.session.query(Transaction).order_by(
        Transaction.order_datetime.desc(),
        Transaction.id.desc(),
    )
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()

    ids = [t.id for t in rows]
    counts = {}
    if ids:
        counts = dict(
            db.session.query(TransactionItem.transaction_id, db.func.count(TransactionItem.id))
            .filter(TransactionItem.transaction_id.in_(ids))
            .group_by(TransactionItem.transaction_id)
            .all()
        )

    items = []
    for t in rows:
        data = t.to_dict()
        data["item_count"] = counts.get(t.id, 0)
        first = t.items[0] if t.items else None
        data["first_item"] = {
            "product_name": first.product.name if first and first.product else None,
            "quantity": first.quantity,
        } if first else None
        items.append(data)

    total_pages = (total + limit - 1) // limit if total > 0 else 0

    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_more": page * limit < total,
        },
    }


def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def delete_transaction(transaction_id: int) -> bool:
    """
    Hard-delete a transaction: items first, then the header.

    Stock is NOT restored. Returns False if not found.
    """
    txn = db.session.get(Transaction, transaction_id)
    if not txn:
        return False

    reference_no = txn.reference_no
    try:
        for item in list(txn.items):
            db.session.delete(item)
        db.session.flush()
        db.session.expire(txn, ["items"])
        db.session.delete(txn)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Transaction %s (%s) deleted", transaction_id, reference_no)
    return True
