# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/pharmapos/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration and password change
- Login throttling to prevent brute-force attacks (also guards
  pharmacist/admin credential checks)
- Session management with token-based auth
- Device-trust gate: first login and unknown browsers must pass an
  e-mailed OTP before the session is usable

DEVICE COOKIE: device_token_{user_id} is read only by /login,
/check-first-login and /verify-otp, and written only by /verify-otp.
"""

from flask import Blueprint, request, jsonify, current_app, g, make_response

from ..services import auth_service
from ..services import session_service
from ..services import login_throttle_service
from ..services import device_trust_service
from ..services.auth_service import (
    PasswordValidationError,
    InvalidCredentialsError,
    RoleDeniedError,
)
from ..services.device_trust_service import OtpError, OtpMismatchError
from ..services.email_service import EmailDispatchError
from ..services.security_service import log_security_event
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_session


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client():
    return request.remote_addr, request.headers.get("User-Agent")


def _locked_response(seconds_remaining):
    minutes_remaining = (seconds_remaining // 60) + 1 if seconds_remaining else 15
    return jsonify({
        "error": "Account temporarily locked due to too many failed attempts",
        "locked": True,
        "retry_after_seconds": seconds_remaining,
        "retry_after_minutes": minutes_remaining,
    }), 429


@auth_bp.post("/register")
def register_route():
    """
    Staff self-registration (clerk, or pharmacist when is_pharmacist is true).

    Required: first_name, last_name, username, email, password, contact_number.
    New accounts must pass the OTP gate on first login.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.register_user(data)

        current_app.logger.info("Registered user %s (%s)", user.username, user.role)
        return jsonify({
            "user": user.to_dict(),
            "message": "Registration successful"
        }), 201

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info, session token and requires_otp. When requires_otp is
    true the token only reaches /check-first-login, /send-otp, /verify-otp
    and /logout until the OTP is verified.

    SECURITY:
    - Checks for account lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for audit trail
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not all([identifier, password]):
            return jsonify({"error": "username/email and password required"}), 400

        ip_address, user_agent = _client()

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
        if is_locked:
            return _locked_response(seconds_remaining)

        user = auth_service.authenticate(identifier, password)

        if not user:
            failed_count = login_throttle_service.record_failed_attempt(
                identifier=identifier,
                ip_address=ip_address,
                user_agent=user_agent,
                reason="Invalid credentials"
            )

            remaining = login_throttle_service.MAX_FAILED_ATTEMPTS - failed_count

            if remaining <= 0:
                return jsonify({
                    "error": "Account locked due to too many failed login attempts",
                    "locked": True,
                    "retry_after_minutes": 15,
                }), 429
            elif remaining <= 3:
                return jsonify({
                    "error": "Invalid credentials",
                    "warning": f"{remaining} attempts remaining before account lockout"
                }), 401
            else:
                return jsonify({"error": "Invalid credentials"}), 401

        login_throttle_service.record_successful_login(
            user_id=user.id,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent
        )

        cookie = request.cookies.get(device_trust_service.device_cookie_name(user.id))
        requires_otp = device_trust_service.requires_otp(user, cookie)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
            otp_verified=not requires_otp,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "requires_otp": requires_otp,
            "message": "Verification required" if requires_otp else "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/lockout-status/<identifier>")
def lockout_status_route(identifier: str):
    """Public: lets the login form show when a locked account can retry."""
    status = login_throttle_service.get_lockout_status(identifier)
    return jsonify(status)


@auth_bp.post("/logout")
@require_session
def logout_route():
    """Revoke the caller's session token."""
    try:
        session_service.revoke_session(g.session_token, reason="User logout")

        ip_address, user_agent = _client()
        log_security_event(
            user_id=g.current_user.id,
            event_type="LOGOUT",
            success=True,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.route("/check-first-login", methods=["GET", "POST"])
@require_session
def check_first_login_route():
    """
    Report whether this user/browser still needs an OTP challenge.

    Returns has_completed_first_login, device_trusted and requires_otp.
    """
    try:
        user = g.current_user
        cookie = request.cookies.get(device_trust_service.device_cookie_name(user.id))
        device = device_trust_service.find_trusted_device(user, cookie)
        requires_otp = device_trust_service.requires_otp(user, cookie)

        if not requires_otp and not g.session_record.otp_verified:
            session_service.mark_session_verified(g.session_token)

        return jsonify({
            "has_completed_first_login": user.has_completed_first_login,
            "device_trusted": device is not None,
            "requires_otp": requires_otp,
        }), 200

    except Exception:
        current_app.logger.exception("Failed to check first login")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/send-otp")
@require_session
def send_otp_route():
    """
    E-mail a fresh 6-digit code to the signed-in user.

    Never returns the code, except in debug mode when e-mail is not configured.
    """
    user = g.current_user
    ip_address, user_agent = _client()
    try:
        issued = device_trust_service.issue_otp(user)

        log_security_event(
            user_id=user.id,
            event_type="OTP_SENT",
            success=True,
            resource=request.path,
            reason=None if issued.email_sent else "E-mail not configured",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        body = {
            "success": True,
            "message": "Verification code sent to your email",
            "email_sent": issued.email_sent,
            "expires_in_minutes": current_app.config.get("OTP_TTL_MINUTES", 10),
        }
        if current_app.debug and not issued.email_sent:
            body["debug_code"] = issued.code
        return jsonify(body), 200

    except EmailDispatchError as e:
        log_security_event(
            user_id=user.id,
            event_type="OTP_SENT",
            success=False,
            resource=request.path,
            reason="E-mail dispatch failed",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Failed to send OTP")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/verify-otp")
@require_session
def verify_otp_route():
    """
    Verify the e-mailed code.

    On success: first login is marked complete, this browser becomes a
    trusted device (httpOnly, SameSite=Strict cookie), and the session is
    released from the OTP gate.
    """
    user = g.current_user
    ip_address, user_agent = _client()
    try:
        data = request.get_json(silent=True) or {}
        device, cookie_value = device_trust_service.verify_otp(
            user,
            data.get("code") or data.get("otp"),
            device_info=user_agent,
        )
        session_service.mark_session_verified(g.session_token)

        log_security_event(
            user_id=user.id,
            event_type="OTP_VERIFIED",
            success=True,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        response = make_response(jsonify({
            "success": True,
            "message": "Device verified",
            "user": user.to_dict(),
            "device": device.to_dict(),
        }), 200)
        return device_trust_service.set_device_cookie(response, user.id, cookie_value)

    except OtpMismatchError as e:
        log_security_event(
            user_id=user.id,
            event_type="OTP_FAILED",
            success=False,
            resource=request.path,
            reason="Code mismatch",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"error": str(e)}), 401
    except OtpError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to verify OTP")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/verify-pharmacist-admin")
@require_auth
def verify_pharmacist_admin_route():
    """
    Check a pharmacist's or admin's credentials on behalf of a clerk.

    Request body: {"username" or "email", "password"}
    Returns authorized_by {user_id, username, role}.
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email")
        password = data.get("password")
        if not identifier or not password:
            return jsonify({"error": "username/email and password required"}), 400

        ip_address, user_agent = _client()

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
        if is_locked:
            return _locked_response(seconds_remaining)

        try:
            approver = auth_service.verify_pharmacist_admin(identifier, password)
        except InvalidCredentialsError:
            login_throttle_service.record_failed_attempt(
                identifier=identifier,
                resource=request.path,
                ip_address=ip_address,
                user_agent=user_agent,
                reason="Invalid supervisor credentials"
            )
            return jsonify({"error": "Invalid credentials"}), 401
        except RoleDeniedError as e:
            return jsonify({"error": str(e)}), 403

        return jsonify({
            "success": True,
            "authorized_by": {
                "user_id": approver.id,
                "username": approver.username,
                "role": approver.role,
            },
        }), 200

    except Exception:
        current_app.logger.exception("Failed to verify pharmacist/admin credentials")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.route("/change-password", methods=["PUT", "POST"])
@require_auth
def change_password_route():
    """
    Change the caller's password.

    Request body: {"current_password", "new_password"}
    Other sessions of the user are revoked; this one stays valid.
    A wrong current password is a 400 so the client does not treat it as
    an expired session.
    """
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get("current_password")
        new_password = data.get("new_password")
        if not current_password or not new_password:
            return jsonify({"error": "current_password and new_password required"}), 400

        auth_service.change_password(
            g.current_user,
            current_password,
            new_password,
            keep_token=g.session_token,
        )

        ip_address, user_agent = _client()
        log_security_event(
            user_id=g.current_user.id,
            event_type="PASSWORD_CHANGED",
            success=True,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"message": "Password changed successfully"}), 200

    except InvalidCredentialsError as e:
        return jsonify({"error": str(e)}), 400
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.route("/deactivate", methods=["DELETE", "POST"])
@require_auth
def deactivate_route():
    """
    Deactivate the caller's own account.

    Request body: {"password"} to confirm. All sessions are revoked and all
    trusted devices forgotten.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user
        if not auth_service.verify_password(data.get("password") or "", user.password_hash):
            return jsonify({"error": "Password confirmation failed"}), 400

        auth_service.deactivate_user(user)
        device_trust_service.revoke_trusted_devices(user.id)

        ip_address, user_agent = _client()
        log_security_event(
            user_id=user.id,
            event_type="USER_DEACTIVATED",
            success=True,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        current_app.logger.info("User %s deactivated their account", user.username)
        return jsonify({"message": "Account deactivated"}), 200

    except Exception:
        current_app.logger.exception("Failed to deactivate account")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/profile")
@require_auth
def get_profile_route():
    user = g.current_user
    data = user.to_dict()
    if user.pharmacist_profile is not None:
        data["pharmacist"] = user.pharmacist_profile.to_dict()
    return jsonify({"user": data}), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    """
    Update the caller's profile.

    Writable: first_name, middle_initial, last_name, email, contact_number, address.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.update_profile(g.current_user, data)
        return jsonify({"user": user.to_dict(), "message": "Profile updated"}), 200

    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500
