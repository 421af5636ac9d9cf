# Overview: Append-only security audit trail helpers.

from __future__ import annotations

from ..extensions import db
from ..models import SecurityEvent
from pharmapos.time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for security monitoring. Login attempts,
    OTP challenges, role denials and reprint authorizations are logged.

    event_type examples:
    - LOGIN_FAILED / LOGIN_SUCCESS
    - LOGOUT
    - OTP_SENT / OTP_VERIFIED / OTP_FAILED
    - DEVICE_TRUSTED
    - ROLE_DENIED
    - REPRINT_AUTHORIZED / REPRINT_DENIED
    - PASSWORD_CHANGED / USER_DEACTIVATED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event
