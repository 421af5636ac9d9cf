# backend/pharmapos/routes/system.py
"""
System health and version endpoints.

Health checks cover the database, the session table and the store
configuration the receipts and checkout depend on.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, User, SessionToken, Discount
from ..models.sales import SENIOR_CITIZEN_DISCOUNT_NAME
from ..services import email_service
from pharmapos.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        product_count = db.session.query(Product).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "products": product_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_session_service_health() -> dict:
    """
    Check session service health by verifying session table accessibility.
    """
    start_time = time.time()
    try:
        active_sessions = db.session.query(SessionToken).filter_by(
            is_revoked=False
        ).count()

        # Could be cleaned up by `flask maintenance cleanup`
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(False)
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Session service error"
        }


def check_store_config_health() -> dict:
    """
    Degraded (not unhealthy) when the senior discount row is missing or
    OTP e-mail is not configured: sales and logins still work.
    """
    start_time = time.time()
    try:
        discount = db.session.query(Discount).filter_by(
            name=SENIOR_CITIZEN_DISCOUNT_NAME
        ).first()
        email_ready = email_service.is_configured()

        elapsed_ms = (time.time() - start_time) * 1000

        warnings = []
        if discount is None:
            warnings.append("Senior citizen discount not seeded (run `flask system init`)")
        if not email_ready:
            warnings.append("OTP e-mail not configured")

        result = {
            "status": "degraded" if warnings else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "senior_discount_configured": discount is not None,
                "email_configured": email_ready,
            }
        }
        if warnings:
            result["warning"] = "; ".join(warnings)
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Store configuration health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Store configuration error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    session_health = check_session_service_health()
    store_health = check_store_config_health()

    all_checks = [database_health, session_health, store_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "session_service": session_health,
            "store_config": store_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info: API version, environment, Python version."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
        "store": current_app.config.get("PHARMACY_NAME"),
    }
