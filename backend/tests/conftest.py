"""
Pytest fixtures for PharmaPOS backend tests.

Provides test database setup, staff users per role, catalog products with
stock batches, and test client helpers.
"""

from datetime import date

import pytest
from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import User, Product, ProductItem, Discount
from pharmapos.models.auth import ROLE_ADMIN, ROLE_CLERK, ROLE_PHARMACIST
from pharmapos.models.sales import SENIOR_CITIZEN_DISCOUNT_NAME
from pharmapos.services.auth_service import hash_password
from pharmapos.services import session_service


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SENDGRID_API_KEY': '',
        'SENDGRID_FROM_EMAIL': '',
        'PHARMACY_NAME': "Jambo's Pharmacy",
        'PHARMACY_ADDRESS': '123 Rizal Ave, Manila',
        'PHARMACY_CONTACT': '0917-000-0000',
        'RECEIPT_TIMEZONE': 'Asia/Manila',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(db_session, username: str, role: str | None, **overrides) -> User:
    fields = {
        "first_name": username.capitalize(),
        "last_name": "Tester",
        "username": username,
        "email": f"{username}@pharmapos.test",
        "password_hash": hash_password(TEST_PASSWORD),
        "role": role,
        "is_pharmacist": role == ROLE_PHARMACIST,
        "has_completed_first_login": True,
    }
    fields.update(overrides)
    user = User(**fields)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def pharmacist_user(db_session):
    return make_user(db_session, "pharma", ROLE_PHARMACIST)


@pytest.fixture(scope='function')
def clerk_user(db_session):
    return make_user(db_session, "clerk", ROLE_CLERK)


@pytest.fixture(scope='function')
def new_user(db_session):
    """A clerk who has never passed the OTP challenge."""
    return make_user(db_session, "newbie", ROLE_CLERK, has_completed_first_login=False)


@pytest.fixture(scope='function')
def senior_discount(db_session):
    discount = Discount(
        name=SENIOR_CITIZEN_DISCOUNT_NAME,
        discount_percent=20,
        is_vat_exempt=True,
        is_active=True,
    )
    db_session.add(discount)
    db_session.commit()
    return discount


def add_batch(db_session, product, stock: int, expiry: date | None = None, batch_number: str | None = None):
    item = ProductItem(
        product_id=product.id,
        stock=stock,
        expiry_date=expiry,
        batch_number=batch_number,
        location="main_store",
        is_active=True,
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def paracetamol(db_session):
    """P100.00, VAT-able, senior/PWD eligible, 50 in stock over two batches."""
    product = Product(
        name="Paracetamol 500mg",
        generic_name="Paracetamol",
        category="Analgesic",
        brand="Biogesic",
        price_cents=10000,
        is_vat_exempt=False,
        senior_pwd_eligible=True,
    )
    db_session.add(product)
    db_session.commit()
    add_batch(db_session, product, 20, date(2027, 1, 31), "LOT-B")
    add_batch(db_session, product, 30, date(2026, 12, 31), "LOT-A")
    return product


@pytest.fixture(scope='function')
def insulin(db_session):
    """P850.50, VAT-exempt, 5 in stock."""
    product = Product(
        name="Insulin Glargine",
        generic_name="Insulin",
        category="Antidiabetic",
        price_cents=85050,
        is_vat_exempt=True,
        senior_pwd_eligible=True,
        prescription_required=True,
    )
    db_session.add(product)
    db_session.commit()
    add_batch(db_session, product, 5, date(2027, 6, 30), "INS-1")
    return product


@pytest.fixture(scope='function')
def vitamins(db_session):
    """P250.00, VAT-able, NOT senior/PWD eligible, 10 in stock."""
    product = Product(
        name="Multivitamins",
        category="Supplement",
        price_cents=25000,
        is_vat_exempt=False,
        senior_pwd_eligible=False,
    )
    db_session.add(product)
    db_session.commit()
    add_batch(db_session, product, 10, None, "VIT-1")
    return product


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user through the login endpoint."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def verified_token(user: User) -> str:
    """Session token that has already passed the device-trust gate."""
    _, token = session_service.create_session(user_id=user.id, otp_verified=True)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(verified_token(admin_user))


@pytest.fixture(scope='function')
def pharmacist_headers(pharmacist_user):
    return auth_headers(verified_token(pharmacist_user))


@pytest.fixture(scope='function')
def clerk_headers(clerk_user):
    return auth_headers(verified_token(clerk_user))
