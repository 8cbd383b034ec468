"""
Pytest fixtures for billing backend tests.

Provides test database setup, tenant fixtures, catalog fixtures, and test client.
"""

import pytest
from billing import create_app
from billing.extensions import db
from billing.models import ActivityLogEntry, CustomerOrganization, ProductPlan, ProductPricing, Tenant


ACTOR = "user-42"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Acme Corp", slug="acme", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Beta Inc", slug="beta", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    """Customer organization owned by Tenant A."""
    customer = CustomerOrganization(
        tenant_id=tenant_a.id,
        name="Globex",
        billing_email="billing@globex.test",
        billing_address="1 Globex Way",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, tenant_b):
    """Customer organization owned by Tenant B."""
    customer = CustomerOrganization(tenant_id=tenant_b.id, name="Initech")
    db_session.add(customer)
    db_session.commit()
    return customer


def make_plan(db_session, tenant, name, *pricing):
    """Create a plan with pricing rows given as dicts of ProductPricing fields."""
    plan = ProductPlan(tenant_id=tenant.id, name=name, status="active")
    for row in pricing:
        values = {"pricing_type": "base", "currency": "USD", "amount_cents": 0}
        values.update(row)
        plan.pricing.append(ProductPricing(**values))
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture(scope='function')
def pro_plan(db_session, tenant_a):
    """Monthly base price 4900."""
    return make_plan(db_session, tenant_a, "Pro", {"interval": "monthly", "amount_cents": 4900})


@pytest.fixture(scope='function')
def enterprise_plan(db_session, tenant_a):
    """Yearly base price 118800 (MRR 9900)."""
    return make_plan(db_session, tenant_a, "Enterprise", {"interval": "yearly", "amount_cents": 118800})


@pytest.fixture(scope='function')
def team_plan(db_session, tenant_a):
    """Seat-priced: 1000 per seat per month."""
    return make_plan(
        db_session, tenant_a, "Team",
        {"interval": "monthly", "amount_cents": 0, "per_seat_amount_cents": 1000},
    )


@pytest.fixture(scope='function')
def foreign_plan(db_session, tenant_b):
    """Plan owned by Tenant B."""
    return make_plan(db_session, tenant_b, "Beta Pro", {"interval": "monthly", "amount_cents": 100})


def line(description="Consulting", quantity=1, unit_price=10000, total=None, plan_id=None):
    """Build a caller-style line item dict."""
    row = {"description": description, "quantity": quantity, "unit_price_cents": unit_price}
    if total is not None:
        row["total_cents"] = total
    if plan_id is not None:
        row["product_plan_id"] = plan_id
    return row


def activity_types(entity_type, entity_id):
    """Activity types recorded for an entity, oldest first."""
    rows = (
        db.session.query(ActivityLogEntry)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityLogEntry.created_at.asc(), ActivityLogEntry.id.asc())
        .all()
    )
    return [row.activity_type for row in rows]


def actor_headers(actor=ACTOR):
    return {"X-Actor-Id": actor}
