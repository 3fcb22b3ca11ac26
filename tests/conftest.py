"""Shared test fixtures for the billing reconciliation test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no rate limits)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- recon: reconciliation services bound to the test session
- make_tenant / make_payment: row factories with controllable timestamps
- seed_data: a fresh registration and a trialing tenant
- auth_headers: X-Internal-Token header for the internal API
"""

from datetime import timedelta

import pytest

from app import create_app
from app.extensions import db as _db
from app.models.pending_payment import PendingPayment
from app.models.tenant import Tenant
from app.services.reconciliation import build_reconciliation
from app.utils import utcnow


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
def recon(app, db_session):
    return build_reconciliation(db_session, app.config)


@pytest.fixture
def auth_headers(app):
    return {"X-Internal-Token": app.config["INTERNAL_API_TOKEN"]}


@pytest.fixture
def make_tenant(db_session):
    """Factory: make_tenant(subdomain="al-fath", **columns) -> Tenant."""
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        kwargs.setdefault("name", f"Moskee {counter['n']}")
        kwargs.setdefault("subdomain", f"moskee-{counter['n']}")
        kwargs.setdefault("contact_email", f"admin{counter['n']}@moskee.nl")
        tenant = Tenant(**kwargs)
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make


@pytest.fixture
def make_payment(db_session):
    """Factory: make_payment(minutes_ago=5, **columns) -> PendingPayment.

    Defaults to a pending payment with a customer id, created `minutes_ago`
    minutes ago and expiring two hours after creation.
    """
    counter = {"n": 0}

    def _make(minutes_ago=5, **kwargs):
        counter["n"] += 1
        created = utcnow() - timedelta(minutes=minutes_ago)
        kwargs.setdefault("stripe_session_id", f"cs_test_{counter['n']}")
        kwargs.setdefault("stripe_customer_id", f"cus_test_{counter['n']}")
        kwargs.setdefault("stripe_subscription_id", f"sub_test_{counter['n']}")
        kwargs.setdefault("status", PendingPayment.PENDING)
        kwargs.setdefault("created_at", created)
        kwargs.setdefault("expires_at", PendingPayment.default_expiry(created))
        payment = PendingPayment(**kwargs)
        db_session.add(payment)
        db_session.commit()
        return payment

    return _make


@pytest.fixture
def seed_data(make_tenant):
    """A just-registered tenant and an older trialing tenant.

    Returns plain ids so tests can re-query after commits.
    """
    new_tenant = make_tenant(
        name="Moskee Al-Fath",
        subdomain="al-fath",
        contact_email="bestuur@alfath.nl",
        plan_type="trial",
    )
    trial_tenant = make_tenant(
        name="Moskee Ar-Rahman",
        subdomain="ar-rahman",
        contact_email="info@arrahman.nl",
        subscription_status=Tenant.TRIALING,
        plan_type="trial",
        trial_started_at=utcnow() - timedelta(days=3),
        trial_ends_at=utcnow() + timedelta(days=11),
        max_students=10,
        max_teachers=2,
    )
    return {
        "tenant_id": new_tenant.id,
        "tenant_email": new_tenant.contact_email,
        "trial_tenant_id": trial_tenant.id,
    }
