# Overview: Device-trust gate; decides when a login needs an e-mailed OTP and remembers trusted browsers.

"""
Device-Trust Gate

STATES: NeedsOTP -> OTPSent -> Verified (device trusted)
                           `-> Failed (retry with the same code, or request a new one)

A login skips the OTP challenge only when BOTH hold:
1. user.has_completed_first_login is True
2. the browser presents a device_token_{user_id} cookie whose signature
   verifies and whose token matches a trusted TrustedDevice row for that user

COOKIE:
- Value is a random device token signed with the app SECRET_KEY (itsdangerous)
- Only SHA-256(token) is stored server-side
- httpOnly, SameSite=Strict, no Max-Age (browser-session lifetime)
- Path /api/auth so only the auth endpoints ever see it

OTP CODES (otp_codes table):
- 6 digits, OTP_TTL_MINUTES expiry (default 10)
- Stored hashed; consumed on first successful use
- Issuing a new code consumes the previous outstanding one
- MAX_OTP_ATTEMPTS wrong guesses consume the code
"""

from __future__ import annotations

import hmac
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from itsdangerous import BadSignature, URLSafeSerializer

from ..extensions import db
from ..models import OtpCode, TrustedDevice, User
from . import email_service
from .auth_service import mark_first_login_complete
from .email_service import EmailDispatchError
from .session_service import hash_token
from pharmapos.time_utils import utcnow


DEVICE_COOKIE_PREFIX = "device_token_"
DEVICE_COOKIE_PATH = "/api/auth"
DEVICE_COOKIE_SALT = "pharmapos-device-trust"

OTP_LENGTH = 6
MAX_OTP_ATTEMPTS = 5

_OTP_RE = re.compile(r"^\d{6}$")


class OtpError(Exception):
    """400-level OTP problem: malformed, missing, or expired code."""


class OtpMismatchError(OtpError):
    """The submitted code does not match (401)."""


@dataclass(frozen=True)
class OtpIssue:
    code: str
    expires_at: datetime
    email_sent: bool


def device_cookie_name(user_id: int) -> str:
    return f"{DEVICE_COOKIE_PREFIX}{user_id}"


def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(current_app.config["SECRET_KEY"], salt=DEVICE_COOKIE_SALT)


def sign_device_token(user_id: int, token: str) -> str:
    return _serializer().dumps({"uid": user_id, "tok": token})


def unsign_device_token(user_id: int, cookie_value: str | None) -> str | None:
    """Return the raw device token if the cookie verifies for this user, else None."""
    if not cookie_value:
        return None
    try:
        data = _serializer().loads(cookie_value)
    except BadSignature:
        return None
    if not isinstance(data, dict) or data.get("uid") != user_id:
        return None
    token = data.get("tok")
    return token if isinstance(token, str) and token else None


def find_trusted_device(user: User, cookie_value: str | None) -> TrustedDevice | None:
    token = unsign_device_token(user.id, cookie_value)
    if token is None:
        return None
    return db.session.query(TrustedDevice).filter_by(
        user_id=user.id,
        device_token_hash=hash_token(token),
        is_trusted=True,
    ).first()


def requires_otp(user: User, cookie_value: str | None) -> bool:
    """
    True unless the user has completed first login AND this browser
    carries a valid trusted-device cookie. Bumps last_used_at on a match.
    """
    if not user.has_completed_first_login:
        return True

    device = find_trusted_device(user, cookie_value)
    if device is None:
        return True

    device.last_used_at = utcnow()
    db.session.commit()
    return False


def _hash_code(user_id: int, code: str) -> str:
    # Bind the hash to the user so identical codes for different users differ
    return hash_token(f"{user_id}:{code}")


def _generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def _open_codes(user_id: int):
    return db.session.query(OtpCode).filter(
        OtpCode.user_id == user_id,
        OtpCode.consumed_at.is_(None),
    )


def issue_otp(user: User) -> OtpIssue:
    """
    Generate, store and e-mail a fresh code.

    Raises EmailDispatchError when the provider fails; the new code is
    consumed in that case so it can never be verified.
    """
    now = utcnow()
    ttl = int(current_app.config.get("OTP_TTL_MINUTES", 10))

    for stale in _open_codes(user.id).all():
        stale.consumed_at = now

    code = _generate_code()
    otp = OtpCode(
        user_id=user.id,
        code_hash=_hash_code(user.id, code),
        expires_at=now + timedelta(minutes=ttl),
        failed_attempts=0,
        created_at=now,
    )
    db.session.add(otp)
    db.session.commit()

    try:
        sent = email_service.send_otp_email(
            to_email=user.email,
            recipient_name=user.first_name,
            code=code,
            ttl_minutes=ttl,
        )
    except EmailDispatchError:
        otp.consumed_at = utcnow()
        db.session.commit()
        raise

    if not sent:
        current_app.logger.warning("OTP e-mail not configured; code for user %s was not sent", user.id)

    return OtpIssue(code=code, expires_at=otp.expires_at, email_sent=sent)


def verify_otp(user: User, code, device_info: str | None = None) -> tuple[TrustedDevice, str]:
    """
    Check a submitted code and trust the current browser.

    Returns (trusted_device, signed_cookie_value).

    Raises:
        OtpError: malformed code, no outstanding code, or expired code
        OtpMismatchError: wrong code
    """
    code = str(code or "").strip()
    if not _OTP_RE.match(code):
        raise OtpError("Invalid OTP format")

    now = utcnow()
    otp = _open_codes(user.id).order_by(OtpCode.created_at.desc(), OtpCode.id.desc()).first()
    if otp is None:
        raise OtpError("No OTP found. Please request a new code.")

    if otp.expires_at < now:
        otp.consumed_at = now
        db.session.commit()
        raise OtpError("OTP has expired. Please request a new code.")

    if not hmac.compare_digest(otp.code_hash, _hash_code(user.id, code)):
        otp.failed_attempts = (otp.failed_attempts or 0) + 1
        if otp.failed_attempts >= MAX_OTP_ATTEMPTS:
            otp.consumed_at = now
        db.session.commit()
        raise OtpMismatchError("Invalid verification code. Please try again.")

    otp.consumed_at = now
    db.session.commit()

    mark_first_login_complete(user)

    device_token = secrets.token_urlsafe(32)
    device = TrustedDevice(
        user_id=user.id,
        device_token_hash=hash_token(device_token),
        device_info=(device_info or "")[:512] or None,
        is_trusted=True,
        trusted_at=now,
        last_used_at=now,
    )
    db.session.add(device)
    db.session.commit()

    return device, sign_device_token(user.id, device_token)


def set_device_cookie(response, user_id: int, signed_value: str):
    response.set_cookie(
        device_cookie_name(user_id),
        signed_value,
        httponly=True,
        secure=bool(current_app.config.get("DEVICE_COOKIE_SECURE")),
        samesite="Strict",
        path=DEVICE_COOKIE_PATH,
    )
    return response


def revoke_trusted_devices(user_id: int) -> int:
    """Distrust every device of a user (deactivation, password change)."""
    devices = db.session.query(TrustedDevice).filter_by(user_id=user_id, is_trusted=True).all()
    for device in devices:
        device.is_trusted = False
    db.session.commit()
    return len(devices)
