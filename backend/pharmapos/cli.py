# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--with-demo-users]
#   Idempotent bootstrap: creates tables and the Senior Citizen Discount row.
#   --with-demo-users also creates admin/pharmacist/clerk accounts.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --username admin --email admin@pharmapos.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted). The only way to create admins.
#
# Maintenance:
# - python -m flask maintenance cleanup
#   Delete dead OTP codes, old expired/revoked sessions and old security events.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import click
from decimal import Decimal
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Discount
from .models.auth import ROLES, ROLE_ADMIN, ROLE_PHARMACIST, ROLE_CLERK
from .models.sales import SENIOR_CITIZEN_DISCOUNT_NAME
from .services.auth_service import create_user, PasswordValidationError
from .services import maintenance_service
from .services import session_service
from .services.pricing_service import to_rate
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def ensure_senior_discount() -> tuple[Discount, bool]:
    """Return (discount_row, created)."""
    discount = db.session.query(Discount).filter_by(name=SENIOR_CITIZEN_DISCOUNT_NAME).first()
    if discount:
        return discount, False

    rate = to_rate(current_app.config.get("SENIOR_PWD_DISCOUNT_RATE", "0.20"))
    discount = Discount(
        name=SENIOR_CITIZEN_DISCOUNT_NAME,
        discount_percent=(rate * 100).quantize(Decimal("0.01")),
        is_vat_exempt=True,
        is_active=True,
    )
    db.session.add(discount)
    db.session.commit()
    return discount, True


@system_group.command('init')
@click.option('--with-demo-users', is_flag=True, help='Also create admin, pharmacist and clerk accounts')
@with_appcontext
def init_system(with_demo_users):
    """
    Initialize the pharmacy PoS database.

    Creates:
    - All tables (if missing)
    - Senior Citizen Discount row at SENIOR_PWD_DISCOUNT_RATE
    - With --with-demo-users: admin, pharmacist, clerk (password "Password123!")

    SECURITY: Change demo passwords immediately in production!
    """
    click.echo("START Initializing PharmaPOS...")

    db.create_all()
    click.echo("PASS Tables created")

    discount, created = ensure_senior_discount()
    if created:
        click.echo(f"PASS Created discount: {discount.name} ({discount.discount_percent}%)")
    else:
        click.echo(f"PASS Using existing discount: {discount.name} ({discount.discount_percent}%)")

    if not with_demo_users:
        click.echo("\nDONE PharmaPOS initialized. Create an admin with 'python -m flask users create'.")
        return

    click.echo("\nUSERS Creating demo users...")

    # Default password meets requirements:
    # - Minimum 8 characters
    # - Uppercase, lowercase, digit, special char
    default_password = "Password123!"

    demo_users = [
        ("admin", "admin@pharmapos.local", ROLE_ADMIN, "Store", "Admin"),
        ("pharmacist", "pharmacist@pharmapos.local", ROLE_PHARMACIST, "Head", "Pharmacist"),
        ("clerk", "clerk@pharmapos.local", ROLE_CLERK, "Counter", "Clerk"),
    ]

    for username, email, role, first_name, last_name in demo_users:
        try:
            existing = db.session.query(User).filter_by(username=username).first()
            if existing:
                click.echo(f"WARN  User '{username}' already exists, skipping...")
                continue

            create_user(
                first_name=first_name,
                last_name=last_name,
                username=username,
                email=email,
                password=default_password,
                role=role,
            )
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")

        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")
        except (ValidationError, ConflictError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin      -> admin@pharmapos.local      / Password123!")
    click.echo("   pharmacist -> pharmacist@pharmapos.local / Password123!")
    click.echo("   clerk      -> clerk@pharmapos.local      / Password123!")
    click.echo("\nSECURITY Each account must verify an e-mailed OTP on first login.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), prompt=True, help='Role')
@click.option('--first-name', default='Staff', show_default=True, help='First name')
@click.option('--last-name', default='User', show_default=True, help='Last name')
@with_appcontext
def create_user_cli(username, email, password, role, first_name, last_name):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            first_name=first_name,
            last_name=last_name,
            username=username,
            email=email,
            password=password,
            role=role,
        )
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        click.echo(f"     User ID: {user.id}")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'OTP done':<9} {'Role'}")
    click.echo("="*100)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        first_login_str = "Yes" if user.has_completed_first_login else "No"
        click.echo(
            f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} "
            f"{first_login_str:<9} {user.role or 'none'}"
        )

    click.echo("="*100 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup')
@click.option('--retention-days', type=int, default=90, show_default=True,
              help='Security event retention window')
@with_appcontext
def cleanup_cli(retention_days):
    """Delete dead OTP codes, old sessions and old security events."""
    otp_deleted = maintenance_service.cleanup_otp_codes()
    sessions_deleted = session_service.cleanup_expired_sessions()
    events_deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)

    click.echo(f"Deleted {otp_deleted} expired or consumed OTP codes.")
    click.echo(f"Deleted {sessions_deleted} expired or revoked sessions.")
    click.echo(f"Deleted {events_deleted} security events older than {retention_days} days.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
