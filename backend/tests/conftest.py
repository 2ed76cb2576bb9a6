"""
Pytest fixtures for cold-chain backend tests.

Provides test database setup, two-site tenancy fixtures, stocked products,
rentable assets, a fake mobile-money gateway and a test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from coldchain import create_app
from coldchain.extensions import db
from coldchain.models import ColdBox, ColdPlate, ColdRoom, Product, Site, Tricycle
from coldchain.services import stock_ledger_service
from coldchain.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MOMO_ENVIRONMENT': 'sandbox',
        'MOMO_WEBHOOK_SECRET': '',
        'INVOICE_TAX_RATE': Decimal('0'),
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


class FakeGateway:
    """Stands in for MtnMomoClient; records calls instead of doing HTTP."""

    def __init__(self, configured=True):
        self.configured = configured
        self.requests = []
        self.statuses = {}
        self._counter = 0

    def is_configured(self):
        return self.configured

    def request_to_pay(self, amount, phone_number, external_id, payer_message=None, payee_note=None):
        self._counter += 1
        ref = f"ref-{self._counter:04d}"
        self.requests.append({
            "reference_id": ref,
            "amount": amount,
            "phone_number": phone_number,
            "external_id": external_id,
        })
        return ref

    def get_transaction_status(self, reference_id):
        return self.statuses.get(reference_id, {"status": "PENDING"})


@pytest.fixture(scope='function')
def gateway(app):
    """Install a fake gateway for the duration of one test."""
    fake = FakeGateway()
    app.extensions['momo_gateway'] = fake
    yield fake
    app.extensions.pop('momo_gateway', None)


@pytest.fixture(scope='function')
def site_a(db_session):
    """Create Site A (first tenant)."""
    site = Site(name="Kigali Central", location="Nyarugenge")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def site_b(db_session):
    """Create Site B (second tenant)."""
    site = Site(name="Musanze", location="Northern Province")
    db_session.add(site)
    db_session.commit()
    return site


def make_cold_room(db_session, site, *, name="Room 1", capacity="1000"):
    room = ColdRoom(
        site_id=site.id,
        name=name,
        total_capacity_kg=Decimal(capacity),
        used_capacity_kg=Decimal("0"),
        status="AVAILABLE",
        daily_rate=Decimal("5000.00"),
    )
    db_session.add(room)
    db_session.commit()
    return room


def make_product(db_session, room, *, name, price, stock=None):
    """Products start empty; opening stock goes through the ledger."""
    product = Product(
        site_id=room.site_id,
        cold_room_id=room.id,
        name=name,
        selling_price_per_unit=Decimal(price),
    )
    db_session.add(product)
    db_session.commit()
    if stock is not None:
        stock_ledger_service.record_movement(
            product_id=product.id,
            quantity_kg=stock,
            direction="IN",
            reason="Opening stock",
            actor_id=1,
        )
    return product


@pytest.fixture(scope='function')
def room_a(db_session, site_a):
    return make_cold_room(db_session, site_a)


@pytest.fixture(scope='function')
def room_b(db_session, site_b):
    return make_cold_room(db_session, site_b, name="Room B")


@pytest.fixture(scope='function')
def fish(db_session, room_a):
    """Tilapia at 3500.00 per kg, 100kg in stock."""
    return make_product(db_session, room_a, name="Tilapia", price="3500.00", stock="100")


@pytest.fixture(scope='function')
def milk(db_session, room_a):
    """Milk at 800.00 per kg, 50kg in stock."""
    return make_product(db_session, room_a, name="Milk", price="800.00", stock="50")


@pytest.fixture(scope='function')
def product_b(db_session, room_b):
    return make_product(db_session, room_b, name="Beef", price="6000.00", stock="20")


@pytest.fixture(scope='function')
def cold_box(db_session, site_a):
    box = ColdBox(site_id=site_a.id, identification_number="CB-001", size_liters=50, daily_rate=Decimal("2000.00"))
    db_session.add(box)
    db_session.commit()
    return box


@pytest.fixture(scope='function')
def cold_plate(db_session, site_a):
    plate = ColdPlate(site_id=site_a.id, identification_number="CP-001", cooling_temperature=Decimal("-18.00"))
    db_session.add(plate)
    db_session.commit()
    return plate


@pytest.fixture(scope='function')
def tricycle(db_session, site_a):
    trike = Tricycle(site_id=site_a.id, plate_number="RAB 123 C", capacity="300kg")
    db_session.add(trike)
    db_session.commit()
    return trike


@pytest.fixture(scope='function')
def cold_box_b(db_session, site_b):
    box = ColdBox(site_id=site_b.id, identification_number="CB-B-001")
    db_session.add(box)
    db_session.commit()
    return box


@pytest.fixture(scope='function')
def rental_window():
    """A three day window starting tomorrow."""
    start = (utcnow() + timedelta(days=1)).replace(microsecond=0)
    return start, start + timedelta(days=3)


@pytest.fixture(scope='function')
def headers():
    """Identity headers for a cross-site operator."""
    return {'X-Actor-Id': '1'}


@pytest.fixture(scope='function')
def site_a_headers(site_a):
    """Identity headers for an operator scoped to Site A."""
    return {'X-Actor-Id': '2', 'X-Site-Id': str(site_a.id)}
