from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z

ROLE_CLERK = "clerk"
ROLE_PHARMACIST = "pharmacist"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CLERK, ROLE_PHARMACIST, ROLE_ADMIN)

# Roles allowed to reprint receipts, delete transactions, and vouch for a clerk.
ELEVATED_ROLES = (ROLE_PHARMACIST, ROLE_ADMIN)


class User(db.Model):
    """
    Staff accounts for authentication and attribution.

    WHY: Every sale is attributed to the user who rang it up. No shared logins.

    ROLE: One of clerk / pharmacist / admin. A NULL role is treated as
    "unknown" and is denied anything role-gated.

    FIRST LOGIN: has_completed_first_login stays False until the user passes
    an OTP challenge once. See device_trust_service.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(100), nullable=False)
    middle_initial = db.Column(db.String(5), nullable=True)
    last_name = db.Column(db.String(100), nullable=False)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    contact_number = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=True, index=True)
    is_pharmacist = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    has_completed_first_login = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def full_name(self) -> str:
        parts = [self.first_name]
        if self.middle_initial:
            parts.append(f"{self.middle_initial.rstrip('.')}.")
        parts.append(self.last_name)
        return " ".join(p for p in parts if p)

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "middle_initial": self.middle_initial,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "username": self.username,
            "email": self.email,
            "contact_number": self.contact_number,
            "address": self.address,
            "role": self.role,
            "is_pharmacist": self.is_pharmacist,
            "is_active": self.is_active,
            "has_completed_first_login": self.has_completed_first_login,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class Pharmacist(db.Model):
    """Licensing details for users registered as pharmacists."""
    __tablename__ = "pharmacists"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_pharmacists_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    license_number = db.Column(db.String(64), nullable=True)
    specialization = db.Column(db.String(128), nullable=True)
    years_of_experience = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("pharmacist_profile", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "license_number": self.license_number,
            "specialization": self.specialization,
            "years_of_experience": self.years_of_experience,
            "is_active": self.is_active,
        }


class SessionToken(db.Model):
    """
    Secure session token management.

    WHY: Stateless auth tokens with timeout and revocation support.
    Tokens are cryptographically secure random strings (32 bytes = 64 hex chars).

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout, password change, or deactivation
    - otp_verified=False sessions may only reach the OTP endpoints
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # False until the device-trust gate is passed (OTP verified or trusted device)
    otp_verified = db.Column(db.Boolean, nullable=False, default=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "otp_verified": self.otp_verified,
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }


class TrustedDevice(db.Model):
    """
    A browser that has passed an OTP challenge for a user.

    The browser holds a random device token in a signed, httpOnly cookie;
    only the SHA-256 hash of that token is stored here.
    """
    __tablename__ = "trusted_devices"
    __table_args__ = (
        db.UniqueConstraint("user_id", "device_token_hash", name="uq_trusted_devices_user_token"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    device_token_hash = db.Column(db.String(64), nullable=False, index=True)
    device_info = db.Column(db.String(512), nullable=True)

    is_trusted = db.Column(db.Boolean, nullable=False, default=True)
    trusted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("trusted_devices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "device_info": self.device_info,
            "is_trusted": self.is_trusted,
            "trusted_at": to_utc_z(self.trusted_at),
            "last_used_at": to_utc_z(self.last_used_at) if self.last_used_at else None,
        }


class OtpCode(db.Model):
    """
    One-time verification codes for the device-trust gate.

    SECURITY:
    - Only a SHA-256 hash of the 6-digit code is stored
    - expires_at is fixed at issue time (default 10 minutes)
    - consumed_at is set on first successful use; a consumed code never verifies again
    - Issuing a new code consumes any outstanding code for the user
    - Too many wrong guesses consume the code
    """
    __tablename__ = "otp_codes"
    __table_args__ = (
        db.Index("ix_otp_codes_user_open", "user_id", "consumed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    code_hash = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("otp_codes", lazy=True))
