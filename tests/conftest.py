import itertools
from datetime import date, datetime
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from rentledger import create_app
from rentledger.config import TestingConfig
from rentledger.extensions import db
from rentledger.models import Lease, Property, Tenant, Unit

# 15 Oct 2026 09:00 UTC, mid-month in Africa/Nairobi
NOW = datetime(2026, 10, 15, 9, 0, 0)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions["reconciliation"].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(app):
    token = create_access_token(identity="admin@example.com", additional_claims={"role": "super_admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(app):
    token = create_access_token(identity="clerk@example.com", additional_claims={"role": "clerk"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_tenant(app):
    """Create a tenant, optionally with a unit and an active lease."""
    counter = itertools.count(1)

    def _make(rent="20000.00", unit_number=None, lease=True, lease_rent=None, due_day=5):
        n = next(counter)
        tenant = Tenant(first_name="Wanjiru", last_name=f"Tenant{n}",
                        email=f"tenant{n}@example.com", phone_primary="0712345678")
        db.session.add(tenant)
        if lease:
            prop = Property(name=f"Block {n}", address="Kilimani, Nairobi")
            unit = Unit(property=prop, unit_number=unit_number or f"A{n}-04",
                        rent_amount=Decimal(rent) if rent is not None else None, status="occupied")
            db.session.add_all([prop, unit])
            db.session.add(Lease(
                tenant=tenant,
                unit=unit,
                start_date=date(2026, 1, 1),
                monthly_rent=Decimal(lease_rent) if lease_rent is not None else None,
                payment_due_day=due_day,
                status="active",
            ))
        db.session.commit()
        return tenant

    return _make
