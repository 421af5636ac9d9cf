# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.security_service import log_security_event


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def bearer_token() -> str | None:
    """Token from 'Authorization: Bearer <token>', or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _authenticate(f, allow_pending_otp: bool):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        session = session_service.validate_session(token)
        if not session:
            return jsonify({"error": "Invalid or expired token"}), 401

        if not session.otp_verified and not allow_pending_otp:
            return jsonify({
                "error": "Device verification required",
                "requires_otp": True,
            }), 403

        g.current_user = session.user
        g.session_token = token
        g.session_record = session

        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """
    Require an authenticated session that has passed the device-trust gate.

    Sets g.current_user, g.session_token and g.session_record.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired, or idle-timed-out token
    - User account deactivated
    Returns 403 {"requires_otp": true} while the session still awaits OTP.
    """
    return _authenticate(f, allow_pending_otp=False)


def require_session(f):
    """
    Like require_auth, but also admits sessions still waiting on OTP.

    Only the device-trust endpoints (check-first-login, send-otp,
    verify-otp) and logout use this.
    """
    return _authenticate(f, allow_pending_otp=True)


def require_role(*roles: str):
    """
    Require the authenticated user's role to be one of `roles`.

    A user with no role never passes. Denials are written to security_events.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if user.role not in roles:
                log_security_event(
                    user_id=user.id,
                    event_type="ROLE_DENIED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason=f"Role {user.role or 'none'} not in: {', '.join(roles)}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                    "message": f"Requires one of: {', '.join(roles)}"
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
