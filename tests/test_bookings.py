import itertools

import pytest

from car_rental import bookings, notifications
from car_rental.availability import overlaps
from car_rental.errors import ConflictError, NotFoundError, ValidationError
from car_rental.models import Booking, BookingStatus, Car, OCCUPYING_STATUSES, db


def test_missing_fields_are_listed(ctx, cars, booking_request):
    data = booking_request(cars[0])
    del data['pickupLocation']
    data['totalAmount'] = ''
    with pytest.raises(ValidationError) as excinfo:
        bookings.create_booking('user-1', data)
    assert excinfo.value.details['fields'] == ['pickupLocation', 'totalAmount']
    assert Booking.query.count() == 0


@pytest.mark.parametrize('changes', [
    {'rentalDays': 0},
    {'rentalDays': 2.5},
    {'dailyRate': -10},
    {'totalAmount': 'lots'},
    {'rentalDays': 'nan'},
    {'totalAmount': 'inf'},
    {'dailyRate': '1e999'},
    {'carId': 'not-an-id'},
    {'pickupDate': '2025-10-24', 'returnDate': '2025-10-20'},
])
def test_invalid_values_are_rejected_before_writing(ctx, cars, booking_request, changes):
    with pytest.raises(ValidationError):
        bookings.create_booking('user-1', booking_request(cars[0], **changes))
    assert Booking.query.count() == 0


def test_unknown_car(ctx, cars, booking_request):
    with pytest.raises(NotFoundError):
        bookings.create_booking('user-1', booking_request(9999))


def test_created_booking_fields(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(
        cars[0], notes='Child seat', additionalDriver=True))
    assert booking['bookingNumber'].startswith('BKG-')
    assert booking['bookingNumber'].endswith(f"{booking['id']:05d}")
    assert booking['carName'] == 'Corolla'
    assert booking['carModel'] == '2023 Toyota Corolla'
    assert booking['carImage'] == '/images/corolla.jpg'
    assert booking['additionalDriver'] is True
    assert booking['rentalDays'] == 4

    notes = notifications.list_notifications('user-1')
    assert [n['type'] for n in notes] == [notifications.BOOKING_CREATED]
    assert notes[0]['bookingId'] == booking['id']


def test_pending_when_demo_payments_are_off(ctx, cars, booking_request):
    ctx.config['BOOKING_DEMO_PAYMENTS'] = False
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    assert booking['status'] == 'pending'
    assert booking['paymentStatus'] == 'pending'

    # Pending bookings do not hold the car.
    other = bookings.create_booking('user-2', booking_request(cars[0]))
    confirmed = bookings.transition_booking(other['id'], 'confirmed')
    assert confirmed['status'] == 'confirmed'
    with pytest.raises(ConflictError):
        bookings.transition_booking(booking['id'], 'confirmed')
    assert db.session.get(Booking, booking['id']).status is BookingStatus.PENDING


def test_lifecycle_transitions(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    for target in ('upcoming', 'active', 'completed'):
        booking = bookings.transition_booking(booking['id'], target)
        assert booking['status'] == target
    with pytest.raises(ValidationError):
        bookings.transition_booking(booking['id'], 'active')
    with pytest.raises(ValidationError):
        bookings.cancel_booking(booking['id'], 'user-1')


@pytest.mark.parametrize('current, target, allowed', [
    (BookingStatus.PENDING, BookingStatus.CONFIRMED, True),
    (BookingStatus.PENDING, BookingStatus.ACTIVE, False),
    (BookingStatus.CONFIRMED, BookingStatus.ACTIVE, True),
    (BookingStatus.UPCOMING, BookingStatus.CANCELLED, True),
    (BookingStatus.ACTIVE, BookingStatus.UPCOMING, False),
    (BookingStatus.CANCELLED, BookingStatus.CONFIRMED, False),
    (BookingStatus.COMPLETED, BookingStatus.CANCELLED, False),
])
def test_can_transition(current, target, allowed):
    assert bookings.can_transition(current, target) is allowed


def test_unknown_status(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    with pytest.raises(ValidationError):
        bookings.transition_booking(booking['id'], 'parked')


def test_bookings_are_private_to_their_owner(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    assert bookings.get_booking(booking['id'], 'user-1')['id'] == booking['id']
    with pytest.raises(NotFoundError):
        bookings.get_booking(booking['id'], 'user-2')
    with pytest.raises(NotFoundError):
        bookings.cancel_booking(booking['id'], 'user-2')
    assert bookings.cancel_booking(booking['id'], 'admin-1', is_operator=True)['status'] == 'cancelled'
    types = [n['type'] for n in notifications.list_notifications('user-1')]
    assert notifications.BOOKING_CANCELLED in types


def test_list_bookings_survives_deleted_car(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    bookings.create_booking('user-2', booking_request(cars[1]))
    Car.query.filter_by(id=cars[0]).delete()
    db.session.commit()

    rows = bookings.list_bookings('user-1')
    assert len(rows) == 1
    assert rows[0]['id'] == booking['id']
    assert rows[0]['carName'] == 'Unknown Car'
    assert rows[0]['carImage'] == ctx.config['CAR_PLACEHOLDER_IMAGE']


def test_list_all_bookings_filters(ctx, cars, booking_request):
    first = bookings.create_booking('user-1', booking_request(cars[0]))
    bookings.create_booking('user-2', booking_request(
        cars[1], pickupDate='2025-11-01', returnDate='2025-11-03'))
    bookings.cancel_booking(first['id'], 'user-1')

    everything = bookings.list_all_bookings({})
    assert everything['total'] == 2
    assert everything['pageCount'] == 1

    cancelled = bookings.list_all_bookings({'status': 'cancelled'})
    assert [r['id'] for r in cancelled['rows']] == [first['id']]

    nissan = bookings.list_all_bookings({'search': 'patrol'})
    assert nissan['total'] == 1
    assert nissan['rows'][0]['car']['plateNumber'] == 'Q-1002'

    november = bookings.list_all_bookings({'from': '2025-11-01'})
    assert november['total'] == 1

    with pytest.raises(ValidationError):
        bookings.list_all_bookings({'status': 'parked'})


def test_no_double_booking(ctx, cars, booking_request):
    requests = [(20, 24), (22, 26), (25, 28), (24, 25), (1, 5), (5, 9), (10, 12)]
    for pickup, ret in requests:
        try:
            bookings.create_booking('user-1', booking_request(
                cars[0], pickupDate=f'2025-10-{pickup:02d}',
                returnDate=f'2025-10-{ret:02d}'))
        except ConflictError:
            pass

    held = Booking.query.filter(Booking.car_id == cars[0],
                                Booking.status.in_(list(OCCUPYING_STATUSES))).all()
    assert len(held) == 4
    for a, b in itertools.combinations(held, 2):
        assert not overlaps(a.pickup_date, a.return_date, b.pickup_date, b.return_date)


def test_owner_updates_rental_extras(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    updated = bookings.update_booking(booking['id'], 'user-1', {
        'notes': ' Child seat ', 'driverAge': 31, 'additionalDriver': True,
        'insurance': 'full', 'pickupDate': '2025-01-01'})
    assert updated['notes'] == 'Child seat'
    assert updated['driverAge'] == '31'
    assert updated['additionalDriver'] is True
    assert updated['insurance'] == 'full'
    assert updated['pickupDate'] == '2025-10-20'
    assert updated['status'] == 'confirmed'


def test_update_cannot_touch_lifecycle_or_other_users(ctx, cars, booking_request):
    booking = bookings.create_booking('user-1', booking_request(cars[0]))
    with pytest.raises(ValidationError):
        bookings.update_booking(booking['id'], 'user-1', {'status': 'completed'})
    with pytest.raises(ValidationError):
        bookings.update_booking(booking['id'], 'user-1', {'paymentStatus': 'refunded'})
    with pytest.raises(ValidationError):
        bookings.update_booking(booking['id'], 'user-1', {'carId': cars[1]})
    with pytest.raises(NotFoundError):
        bookings.update_booking(booking['id'], 'user-2', {'notes': 'mine now'})
    stored = db.session.get(Booking, booking['id'])
    assert stored.status is BookingStatus.CONFIRMED
    assert stored.notes is None
