"""
Pytest fixtures for the authorization network tests.

Provides an in-memory database, a catalog for two manufacturers, a helper
that requests + approves grants, and a test client with actor headers.
"""

import pytest
from authnet import create_app
from authnet.extensions import db
from authnet.models import CatalogProduct
from authnet.services import approval_service


MANUFACTURER = "mfr-acme"
OTHER_MANUFACTURER = "mfr-other"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORAGE_RETRY_ATTEMPTS': 2,
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
def catalog(db_session):
    """
    Catalog products keyed by short name.

    sofa  1000  (sofas)      chair 2500 (chairs)
    lamp  10000 (lighting)   foreign: another manufacturer's sofa
    """
    rows = {
        "sofa": CatalogProduct(manufacturer_id=MANUFACTURER, sku="SOFA-1", name="Sofa", category_id="sofas", base_price_cents=1000),
        "chair": CatalogProduct(manufacturer_id=MANUFACTURER, sku="CHAIR-1", name="Chair", category_id="chairs", base_price_cents=2500),
        "lamp": CatalogProduct(manufacturer_id=MANUFACTURER, sku="LAMP-1", name="Lamp", category_id="lighting", base_price_cents=10000),
        "foreign": CatalogProduct(manufacturer_id=OTHER_MANUFACTURER, sku="SOFA-9", name="Other Sofa", category_id="sofas", base_price_cents=3000),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def make_grant(db_session):
    """
    Request and approve a grant in one call.

    Passing parent= makes it an existing_tier approval under that node.
    Extra keyword arguments go straight to approve_request.
    """
    def _make(
        grantor_id,
        grantee_id,
        *,
        grantee_type="designer",
        discount_rate=60,
        commission_rate=40,
        parent=None,
        tier_company_name="Acme Network",
        allow_sub=False,
        **overrides,
    ):
        req = approval_service.request_authorization(grantor_id, grantee_id, grantee_type)
        return approval_service.approve_request(
            req.id,
            grantor_id,
            discount_rate=discount_rate,
            commission_rate=commission_rate,
            tier_type="existing_tier" if parent is not None else "new_company",
            tier_company_name=None if parent is not None else tier_company_name,
            parent_authorization_id=parent.id if parent is not None else None,
            allow_sub_authorization=allow_sub,
            **overrides,
        )

    return _make


@pytest.fixture(scope='function')
def chain(make_grant):
    """A -> B -> C: manufacturer A grants B (may sub-grant), B grants designer C."""
    a_b = make_grant(MANUFACTURER, "mfr-bravo", grantee_type="manufacturer", allow_sub=True)
    b_c = make_grant("mfr-bravo", "designer-charlie", parent=a_b, discount_rate=70, commission_rate=30)
    return a_b, b_c


def actor_headers(actor_id: str) -> dict:
    """Helper to create actor identity headers."""
    return {'X-Actor-Id': actor_id}
