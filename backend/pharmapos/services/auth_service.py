# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and Account Service

WHY: Every sale is attributable to a named staff account. Uses bcrypt for
password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper/lower/digit/special required
- Session tokens managed separately (see session_service.py)
- Self-registration can create clerks and pharmacists only; admins are
  created from the CLI
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Pharmacist
from ..models.auth import ROLES, ROLE_CLERK, ROLE_PHARMACIST, ELEVATED_ROLES
from ..validation import ValidationError, ConflictError
from . import session_service
from pharmapos.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class InvalidCredentialsError(Exception):
    """Username/email and password do not match an active account."""
    pass


class RoleDeniedError(Exception):
    """Credentials are valid but the account's role may not perform the action."""
    pass


REGISTER_REQUIRED_FIELDS = ("first_name", "last_name", "username", "email", "password", "contact_number")

PROFILE_MUTABLE_FIELDS = {"first_name", "middle_initial", "last_name", "email", "contact_number", "address"}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def _find_by_identifier(identifier: str) -> User | None:
    key = (identifier or "").strip().lower()
    if not key:
        return None
    return db.session.query(User).filter(
        db.or_(db.func.lower(User.username) == key, db.func.lower(User.email) == key)
    ).first()


def _ensure_unique(username: str | None = None, email: str | None = None, exclude_user_id: int | None = None) -> None:
    if username is not None:
        query = db.session.query(User).filter(db.func.lower(User.username) == username.lower())
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first():
            raise ConflictError("Username already exists")
    if email is not None:
        query = db.session.query(User).filter(db.func.lower(User.email) == email.lower())
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first():
            raise ConflictError("Email already exists")


def _clean_email(email) -> str:
    value = str(email or "").strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValidationError("Invalid email address")
    return value


def create_user(
    *,
    first_name: str,
    last_name: str,
    username: str,
    email: str,
    password: str,
    role: str | None = ROLE_CLERK,
    contact_number: str | None = None,
    middle_initial: str | None = None,
    address: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: bad email or role
        ConflictError: username or email taken
        PasswordValidationError: weak password
    """
    if role is not None and role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")

    username = str(username or "").strip()
    if not username:
        raise ValidationError("username is required")
    email = _clean_email(email)

    _ensure_unique(username=username, email=email)

    user = User(
        first_name=str(first_name).strip(),
        middle_initial=(middle_initial or None),
        last_name=str(last_name).strip(),
        username=username,
        email=email,
        contact_number=contact_number,
        address=address,
        password_hash=hash_password(password),
        role=role,
        is_pharmacist=role == ROLE_PHARMACIST,
        is_active=True,
        has_completed_first_login=False,
    )

    db.session.add(user)
    db.session.commit()
    return user


def register_user(payload: dict) -> User:
    """
    Self-registration from the staff sign-up form.

    Required: first_name, last_name, username, email, password, contact_number.
    is_pharmacist=True registers a pharmacist (with optional license_number,
    specialization, years_of_experience); otherwise a clerk.
    """
    missing = [f for f in REGISTER_REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    is_pharmacist = bool(payload.get("is_pharmacist"))

    user = create_user(
        first_name=payload["first_name"],
        last_name=payload["last_name"],
        middle_initial=payload.get("middle_initial"),
        username=payload["username"],
        email=payload["email"],
        password=payload["password"],
        contact_number=str(payload["contact_number"]).strip(),
        address=payload.get("address"),
        role=ROLE_PHARMACIST if is_pharmacist else ROLE_CLERK,
    )

    if is_pharmacist:
        years = payload.get("years_of_experience")
        try:
            years = int(years) if years not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("years_of_experience must be an integer")
        profile = Pharmacist(
            user_id=user.id,
            license_number=payload.get("license_number"),
            specialization=payload.get("specialization"),
            years_of_experience=years,
        )
        db.session.add(profile)
        db.session.commit()

    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate user with username-or-email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = _find_by_identifier(identifier)

    if not user or not user.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def verify_pharmacist_admin(identifier: str, password: str) -> User:
    """
    Verify that the given credentials belong to an active pharmacist or admin.

    Used when a clerk needs a supervisor to authorize a receipt reprint.

    Raises:
        InvalidCredentialsError: unknown account, wrong password, or inactive
        RoleDeniedError: valid account whose role is not pharmacist/admin
    """
    user = _find_by_identifier(identifier)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise InvalidCredentialsError("Invalid credentials")
    if user.role not in ELEVATED_ROLES:
        raise RoleDeniedError("Only pharmacist or admin accounts can authorize this action")
    return user


def update_profile(user: User, patch: dict) -> User:
    unknown = [k for k in patch.keys() if k not in PROFILE_MUTABLE_FIELDS]
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    for key in ("first_name", "last_name"):
        if key in patch and not str(patch[key] or "").strip():
            raise ValidationError(f"{key} cannot be blank")

    if "email" in patch:
        patch = dict(patch, email=_clean_email(patch["email"]))
        _ensure_unique(email=patch["email"], exclude_user_id=user.id)

    for key, value in patch.items():
        setattr(user, key, value.strip() if isinstance(value, str) else value)

    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str, keep_token: str | None = None) -> None:
    """
    Change password after re-verifying the current one.

    Revokes every other session of the user.
    """
    if not verify_password(current_password, user.password_hash):
        raise InvalidCredentialsError("Current password is incorrect")
    if current_password == new_password:
        raise PasswordValidationError("New password must be different from the current password")

    user.password_hash = hash_password(new_password)
    db.session.commit()

    session_service.revoke_all_user_sessions(user.id, reason="Password changed", except_token=keep_token)


def deactivate_user(user: User) -> None:
    """Soft-delete the account and end all of its sessions."""
    user.is_active = False
    db.session.commit()
    session_service.revoke_all_user_sessions(user.id, reason="User account deactivated")


def mark_first_login_complete(user: User) -> None:
    if not user.has_completed_first_login:
        user.has_completed_first_login = True
        db.session.commit()
