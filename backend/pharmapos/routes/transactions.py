# Overview: Flask API routes for transactions operations; parses input and returns JSON responses.

# backend/pharmapos/routes/transactions.py
"""
Sales transaction routes.

SECURITY: All routes require an authenticated, device-verified session.
- Any staff role may ring up sales, browse history and view receipts
- Deleting a transaction requires pharmacist or admin
- Reprinting requires pharmacist/admin, or a clerk with supervisor credentials
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import transaction_service
from ..services import receipt_service
from ..services import login_throttle_service
from ..services.auth_service import InvalidCredentialsError
from ..services.receipt_service import ReprintDeniedError
from ..services.security_service import log_security_event
from ..services.transaction_service import TransactionError, InsufficientStockError
from ..models.auth import ROLE_ADMIN, ROLE_PHARMACIST
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@require_auth
def create_transaction_route():
    """
    Record a completed sale.

    Request body:
    {
        "reference_number": "...",       # required for gcash/maya
        "payment_method": "cash" | "gcash" | "maya",
        "is_senior_pwd": false,
        "senior_pwd_id": "...",          # required when is_senior_pwd
        "cash_received": 200,            # pesos, required for cash
        "items": [{"product_id": 1, "quantity": 2}]
    }

    Prices come from the catalog; client unit_price values are ignored.
    Returns transaction_id, reference_no and calculated_amounts (cents).
    """
    try:
        payload = request.get_json(silent=True)
        result = transaction_service.create_transaction(
            user_id=g.current_user.id,
            payload=payload,
        )
        return jsonify(result), 201

    except InsufficientStockError as e:
        return jsonify({"error": str(e)}), 409
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except TransactionError as e:
        return jsonify({"error": str(e)}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    Transaction history, newest first.

    Query params:
    - page: int (default 1)
    - limit: int (default 50, max 200)
    """
    page = request.args.get("page", default=1, type=int)
    limit = request.args.get("limit", default=transaction_service.DEFAULT_PAGE_LIMIT, type=int)
    return jsonify(transaction_service.list_transactions(page=page, limit=limit)), 200


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    txn = transaction_service.get_transaction(transaction_id)
    if not txn:
        return jsonify({"error": "Transaction not found"}), 404
    return jsonify({"transaction": txn.to_dict(include_items=True)}), 200


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
@require_role(ROLE_PHARMACIST, ROLE_ADMIN)
def delete_transaction_route(transaction_id: int):
    """
    Delete a transaction and its items.

    Stock is not restored. Requires pharmacist or admin.
    """
    try:
        if not transaction_service.delete_transaction(transaction_id):
            return jsonify({"error": "Transaction not found"}), 404

        log_security_event(
            user_id=g.current_user.id,
            event_type="TRANSACTION_DELETED",
            success=True,
            resource=request.path,
            action="DELETE",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({"ok": True, "message": "Transaction deleted"}), 200

    except Exception:
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>/receipt")
@require_auth
def receipt_route(transaction_id: int):
    """
    Receipt payload for the on-screen dialog.

    ?format=html returns the print-ready page instead of JSON.
    """
    txn = transaction_service.get_transaction(transaction_id)
    if not txn:
        return jsonify({"error": "Transaction not found"}), 404

    receipt = receipt_service.build_receipt(txn)
    if request.args.get("format") == "html":
        return receipt_service.render_receipt_html(receipt), 200, {"Content-Type": "text/html; charset=utf-8"}
    return jsonify({"receipt": receipt}), 200


def _supervisor_identifier(user, credentials) -> str | None:
    """Username/email a clerk offers as reprint authority; None for elevated roles."""
    if user.role in (ROLE_ADMIN, ROLE_PHARMACIST) or not isinstance(credentials, dict):
        return None
    identifier = credentials.get("username") or credentials.get("email")
    if not isinstance(identifier, str):
        return None
    return identifier.strip() or None


@transactions_bp.post("/<int:transaction_id>/reprint")
@require_auth
def reprint_route(transaction_id: int):
    """
    Reprint a stored receipt.

    Pharmacist/admin: allowed directly.
    Clerk: body must carry a pharmacist's or admin's {"username"|"email", "password"}.

    Returns the receipt payload, its print HTML and who authorized it.
    """
    user = g.current_user
    ip_address = request.remote_addr
    user_agent = request.headers.get("User-Agent")
    try:
        txn = transaction_service.get_transaction(transaction_id)
        if not txn:
            return jsonify({"error": "Transaction not found"}), 404

        credentials = request.get_json(silent=True) or {}
        identifier = _supervisor_identifier(user, credentials)
        if identifier:
            is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
            if is_locked:
                minutes_remaining = (seconds_remaining // 60) + 1 if seconds_remaining else 15
                return jsonify({
                    "error": "Account temporarily locked due to too many failed attempts",
                    "locked": True,
                    "retry_after_seconds": seconds_remaining,
                    "retry_after_minutes": minutes_remaining,
                }), 429

        try:
            approver = receipt_service.authorize_reprint(user, credentials)
        except (ReprintDeniedError, InvalidCredentialsError) as e:
            if identifier and isinstance(e, InvalidCredentialsError):
                login_throttle_service.record_failed_attempt(
                    identifier=identifier,
                    resource=request.path,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    reason="Invalid supervisor credentials for reprint",
                )
            log_security_event(
                user_id=user.id,
                event_type="REPRINT_DENIED",
                success=False,
                resource=request.path,
                action="REPRINT",
                reason=str(e),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            status = 401 if isinstance(e, InvalidCredentialsError) else 403
            return jsonify({"error": str(e)}), status

        log_security_event(
            user_id=user.id,
            event_type="REPRINT_AUTHORIZED",
            success=True,
            resource=request.path,
            action="REPRINT",
            reason=f"Authorized by {approver.username}",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        receipt = receipt_service.build_receipt(txn)
        return jsonify({
            "receipt": receipt,
            "html": receipt_service.render_receipt_html(receipt),
            "authorized_by": {
                "user_id": approver.id,
                "username": approver.username,
                "role": approver.role,
            },
        }), 200

    except Exception:
        current_app.logger.exception("Failed to reprint receipt")
        return jsonify({"error": "Internal server error"}), 500
