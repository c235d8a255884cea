"""
Pytest fixtures for the warehouse backend tests.

Provides test database setup, a controllable ledger clock, seeded locations,
and a test client.
"""

from datetime import datetime, timedelta

import pytest
from warehouse import create_app
from warehouse.extensions import db
from warehouse.services import location_service


class FakeClock:
    """Deterministic ledger clock; tests move it explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


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
def clock(app):
    """Ledger clock starting at 2024-01-01 09:00 UTC."""
    fake = FakeClock(datetime(2024, 1, 1, 9, 0, 0))
    app.config['LEDGER_CLOCK'] = fake
    yield fake
    app.config['LEDGER_CLOCK'] = None


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, clock):
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
def locations(db_session):
    """
    Seed locations:
    - A1, A2, B1: capacity-1 rack slots (exclusive)
    - FLOOR: unconstrained bulk area
    """
    for loc_id, aisle, rack in (("A1", "A", 1), ("A2", "A", 2), ("B1", "B", 1)):
        location_service.create_location(
            location_id=loc_id, capacity_pallets=1, aisle=aisle, rack=rack, level=1
        )
    location_service.create_location(location_id="FLOOR", location_type="floor")
    return ["A1", "A2", "B1", "FLOOR"]
