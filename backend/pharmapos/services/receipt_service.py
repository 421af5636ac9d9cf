# Overview: Receipt payloads and 80mm print HTML for stored transactions; reprint authorization.

"""
Receipt Formatter

build_receipt() maps a stored Transaction to the payload the on-screen
receipt dialog and the print template share. Amounts come from the stored
rows, never recomputed, so a reprint matches what was charged.

PER-ITEM VAT LINE:
- VAT-exempt product -> "VAT Exempt"
- otherwise          -> "VAT (12%)" with the item's stored VAT amount

Items stored without a per-line discount/VAT breakdown (has_breakdown False,
as on rows written before the breakdown existed) are flagged
breakdown_available=False and print
"Detailed breakdown not available for this transaction".

REPRINT: pharmacist/admin reprint directly; a clerk needs a pharmacist or
admin to enter their credentials; any other (or unset) role is denied.
"""

from __future__ import annotations

from flask import current_app, render_template

from ..models import Transaction, User
from ..models.auth import ELEVATED_ROLES, ROLE_CLERK
from ..models.sales import PAYMENT_CASH, PAYMENT_GCASH, PAYMENT_MAYA
from .auth_service import RoleDeniedError, verify_pharmacist_admin
from .pricing_service import format_peso, to_rate
from pharmapos.time_utils import format_receipt_datetime


BREAKDOWN_UNAVAILABLE_NOTE = "Detailed breakdown not available for this transaction"
VAT_EXEMPT_LABEL = "VAT Exempt"

PAYMENT_LABELS = {
    PAYMENT_CASH: "Cash",
    PAYMENT_GCASH: "GCash",
    PAYMENT_MAYA: "Maya",
}


class ReprintDeniedError(Exception):
    """The caller may not reprint receipts (403)."""


def vat_label() -> str:
    """Label such as VAT (12%) for the configured rate."""
    percent = (to_rate(current_app.config.get("VAT_RATE", "0.12")) * 100).normalize()
    return f"VAT ({percent:f}%)"


def _item_payload(item, label: str) -> dict:
    breakdown_available = bool(item.has_breakdown)
    return {
        "product_id": item.product_id,
        "product_name": item.product.name if item.product else f"Product #{item.product_id}",
        "quantity": item.quantity,
        "unit_price_cents": item.unit_price_cents,
        "gross_cents": item.gross_cents,
        "discount_cents": item.discount_cents,
        "vat_cents": item.vat_cents,
        "line_total_cents": item.subtotal_cents,
        "is_vat_exempt": item.is_vat_exempt,
        "vat_label": VAT_EXEMPT_LABEL if item.is_vat_exempt else label,
        "breakdown_available": breakdown_available,
        "breakdown_note": None if breakdown_available else BREAKDOWN_UNAVAILABLE_NOTE,
        "display": {
            "unit_price": format_peso(item.unit_price_cents),
            "gross": format_peso(item.gross_cents),
            "discount": format_peso(item.discount_cents),
            "vat": format_peso(item.vat_cents),
            "line_total": format_peso(item.subtotal_cents),
        },
    }


def build_receipt(txn: Transaction) -> dict:
    cfg = current_app.config
    tz_name = cfg.get("RECEIPT_TIMEZONE", "Asia/Manila")
    date_str, time_str = format_receipt_datetime(txn.order_datetime, tz_name)
    label = vat_label()

    is_cash = txn.payment_method == PAYMENT_CASH

    return {
        "store": {
            "name": cfg.get("PHARMACY_NAME"),
            "address": cfg.get("PHARMACY_ADDRESS") or None,
            "contact": cfg.get("PHARMACY_CONTACT") or None,
        },
        "transaction_id": txn.id,
        "reference_no": txn.reference_no,
        "date": date_str,
        "time": time_str,
        "timezone": tz_name,
        "payment_method": txn.payment_method,
        "payment_method_label": PAYMENT_LABELS.get(txn.payment_method, txn.payment_method),
        "cashier": txn.user.full_name if txn.user else None,
        "is_senior_pwd": txn.is_senior_pwd,
        "senior_pwd_id": txn.senior_pwd_id,
        "items": [_item_payload(item, label) for item in txn.items],
        "vat_label": label,
        "subtotal_cents": txn.subtotal_cents,
        "discount_cents": txn.discount_cents,
        "vatable_sales_cents": txn.vatable_sales_cents,
        "vat_cents": txn.vat_cents,
        "vat_exempt_sales_cents": txn.vat_exempt_sales_cents,
        "total_cents": txn.total_cents,
        "cash_received_cents": txn.cash_received_cents if is_cash else None,
        "change_cents": txn.change_cents if is_cash else None,
        "display": {
            "subtotal": format_peso(txn.subtotal_cents),
            "discount": format_peso(txn.discount_cents),
            "vatable_sales": format_peso(txn.vatable_sales_cents),
            "vat": format_peso(txn.vat_cents),
            "vat_exempt_sales": format_peso(txn.vat_exempt_sales_cents),
            "total": format_peso(txn.total_cents),
            "cash_received": format_peso(txn.cash_received_cents) if is_cash else None,
            "change": format_peso(txn.change_cents) if is_cash else None,
        },
    }


def render_receipt_html(receipt: dict) -> str:
    """Print-ready HTML sized for 80mm thermal paper."""
    return render_template("receipt.html", receipt=receipt)


def authorize_reprint(user: User, credentials: dict | None = None) -> User:
    """
    Decide whether `user` may reprint a receipt.

    Returns the authorizing user (the caller, or the pharmacist/admin whose
    credentials a clerk supplied).

    Raises:
        ReprintDeniedError: role not allowed, or a clerk without supervisor credentials
        InvalidCredentialsError: supervisor credentials don't match an active account
    """
    if user.role in ELEVATED_ROLES:
        return user

    if user.role != ROLE_CLERK:
        raise ReprintDeniedError("Your role is not permitted to reprint receipts")

    credentials = credentials or {}
    identifier = (credentials.get("username") or credentials.get("email") or "").strip()
    password = credentials.get("password") or ""
    if not identifier or not password:
        raise ReprintDeniedError("Pharmacist or admin authorization is required to reprint receipts")

    try:
        return verify_pharmacist_admin(identifier, password)
    except RoleDeniedError as exc:
        raise ReprintDeniedError(str(exc)) from exc
