# Overview: Service-layer operations for maintenance; retention cleanup of security and OTP records.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import OtpCode, SecurityEvent
from pharmapos.time_utils import utcnow


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """Delete security events older than retention_days."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete()
    db.session.commit()
    return deleted


def cleanup_otp_codes() -> int:
    """
    Delete OTP codes that can never verify again (expired or consumed).

    Returns count deleted.
    """
    now = utcnow()
    deleted = db.session.query(OtpCode).filter(
        db.or_(
            OtpCode.expires_at < now,
            OtpCode.consumed_at.isnot(None),
        )
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
