"""Shared test fixtures for the checkout reconciliation test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- gateway: MagicMock payment gateway installed on the app
- seed_data: an admin, a customer and a two-entry service catalog
- login: log a user into the test client by ID
- sign: build a valid Stripe-Signature header for a payload
"""

import hashlib
import hmac
import time
from unittest.mock import MagicMock

import pytest

from app import create_app
from app.extensions import db as _db
from app.models.service import Service
from app.models.user import User
from app.services.stripe_gateway import EXTENSION_KEY, PaymentGateway


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def gateway(app):
    """Replace the app's payment gateway with a MagicMock for one test.

    construct_event returns whatever the test assigns to
    gateway.construct_event.return_value. retrieve_customer defaults to an
    empty customer so the checkout email is kept.
    """
    original = app.extensions[EXTENSION_KEY]
    mock = MagicMock(spec=PaymentGateway)
    mock.enabled = True
    mock.retrieve_customer.return_value = {}
    app.extensions[EXTENSION_KEY] = mock
    yield mock
    app.extensions[EXTENSION_KEY] = original


@pytest.fixture
def login(client):
    """Return a function that logs the given user ID into the test client."""

    def _login(user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = user_id
            sess["_fresh"] = True

    return _login


@pytest.fixture
def seed_data(app, db_session):
    """Seed users and a service catalog.

    Catalog order (by `order`):
      1. Design       left:  Logo Design (price_abc), Icon Set (no price)
                      right: Brand Kit (price_brand)
      2. Development  left:  Landing Page (price_dev)
                      right: Duplicate Logo (price_abc), shadowed by Logo Design
    """
    with app.app_context():
        admin = User(email="admin@studio.test", display_name="Admin", role="admin")
        customer = User(email="jane@example.com", display_name="Jane Doe")
        _db.session.add_all([admin, customer])

        design = Service(
            title="Design",
            category="Design",
            order=1,
            service_details={
                "leftSection": {
                    "title": "Identity",
                    "services": [
                        {"icon": "🎨", "title": "Logo Design",
                         "description": "A custom logo", "price": "price_abc"},
                        {"icon": "✨", "title": "Icon Set",
                         "description": "Twenty icons"},
                    ],
                },
                "rightSection": {
                    "title": "Packages",
                    "services": [
                        {"icon": "📦", "title": "Brand Kit",
                         "description": "Logo + palette", "price": "price_brand"},
                    ],
                },
            },
        )
        development = Service(
            title="Development",
            category="Development",
            order=2,
            service_details={
                "leftSection": {
                    "services": [
                        {"icon": "💻", "title": "Landing Page",
                         "description": "One page site", "price": "price_dev"},
                    ],
                },
                "rightSection": {
                    "services": [
                        {"icon": "🔁", "title": "Duplicate Logo",
                         "description": "Shadowed", "price": "price_abc"},
                    ],
                },
            },
        )
        _db.session.add_all([design, development])
        _db.session.commit()

        # Plain IDs so tests can use them across contexts.
        return {
            "admin_id": admin.id,
            "customer_id": customer.id,
            "customer_email": customer.email,
            "design_service_id": design.id,
            "development_service_id": development.id,
        }


@pytest.fixture
def sign():
    """Return a function producing a valid Stripe-Signature header.

    Same scheme Stripe uses: HMAC-SHA256 over "<timestamp>.<payload>".
    """

    def _sign(payload, secret="whsec_test_fake", timestamp=None):
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        timestamp = timestamp or int(time.time())
        signature = hmac.new(
            secret.encode("utf-8"),
            f"{timestamp}.{payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign
