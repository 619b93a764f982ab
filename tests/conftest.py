import pytest

from car_rental import create_app, records
from car_rental.models import db

CARS = [
    {'name': 'Corolla', 'brand': 'Toyota', 'model': 'Corolla', 'year': 2023,
     'category': 'Sedan', 'licencePlate': 'Q-1001', 'dailyRate': 120,
     'images': ['/images/corolla.jpg']},
    {'name': 'Patrol', 'brand': 'Nissan', 'model': 'Patrol', 'year': 2022,
     'category': 'SUV', 'licencePlate': 'Q-1002', 'dailyRate': 350},
]

BOOKING = {
    'pickupDate': '2025-10-20',
    'returnDate': '2025-10-24',
    'pickupLocation': 'Doha Airport',
    'pickupTime': '10:00',
    'returnTime': '10:00',
    'rentalDays': 4,
    'dailyRate': 120,
    'totalAmount': 480,
}


@pytest.fixture
def booking_request():
    """Build a valid booking request for a car, with optional changes."""
    def build(car_id, **changes):
        data = dict(BOOKING, carId=car_id)
        data.update(changes)
        return data
    return build


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'BOOKING_DEMO_PAYMENTS': True,
        'BOOKING_INCLUSIVE_BOUNDARIES': True,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def cars(app):
    """Ids of the seeded cars."""
    with app.app_context():
        return [records.create_car(data).id for data in CARS]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_headers():
    return {'X-User-Id': 'user-1'}


@pytest.fixture
def admin_headers():
    return {'X-User-Id': 'admin-1', 'X-User-Role': 'admin'}
