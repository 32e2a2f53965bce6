"""
Test configuration and fixtures
"""

from datetime import datetime

import pytest

from app import create_app
from store import EntityStore, Repositories, db, new_id


NOW = datetime(2025, 3, 15, 10, 30)


# ============================================================================
# APP FIXTURES
# ============================================================================

@pytest.fixture
def app():
    """App on an in-memory database with the clock fixed at NOW."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'CLOCK': lambda: NOW,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def repos(app):
    return Repositories(EntityStore(db.session))


# ============================================================================
# RECORD FACTORIES
# ============================================================================

@pytest.fixture
def add_vehicle(repos):
    def _add(name='Toyota Avanza', status='available', **fields):
        vehicle = {'id': new_id(), 'name': name, 'status': status,
                   'createdAt': NOW.isoformat(), **fields}
        return repos.vehicles.save(vehicle)
    return _add


@pytest.fixture
def booking_payload():
    def _payload(vehicle_id, **overrides):
        payload = {
            'vehicleId': vehicle_id,
            'customerName': 'Sari Indah',
            'customerPhone': '081233334444',
            'startDate': '2025-03-16T09:00:00',
            'endDate': '2025-03-25T09:00:00',
            'pickupLocation': 'Airport',
            'dropoffLocation': 'Office',
            'totalPrice': 3500000,
        }
        payload.update(overrides)
        return payload
    return _payload
