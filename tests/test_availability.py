import itertools
from datetime import date, timedelta

import pytest

from car_rental import bookings
from car_rental.availability import (check_availability, overlaps, parse_car_id,
                                     parse_date)
from car_rental.errors import ConflictError, NotFoundError, ValidationError


def d(day):
    return date(2025, 10, day)


def test_overlap_is_symmetric():
    ranges = [(d(s), d(s) + timedelta(days=n)) for s in (1, 3, 5, 8) for n in (0, 2, 4)]
    for (a, b), inclusive in itertools.product(itertools.product(ranges, repeat=2),
                                               (True, False)):
        assert overlaps(*a, *b, inclusive=inclusive) == overlaps(*b, *a, inclusive=inclusive)


def test_touching_ranges_depend_on_boundary_mode():
    assert overlaps(d(20), d(24), d(24), d(26))
    assert not overlaps(d(20), d(24), d(24), d(26), inclusive=False)
    assert not overlaps(d(20), d(24), d(25), d(28))


def test_parse_helpers():
    assert parse_date('2025-10-20T09:30:00Z', 'pickupDate') == d(20)
    assert parse_car_id('7') == 7
    with pytest.raises(ValidationError):
        parse_date('20/10/2025', 'pickupDate')
    with pytest.raises(ValidationError):
        parse_car_id('abc')
    with pytest.raises(ValidationError):
        parse_car_id(0)


def test_first_booking_then_overlap_then_disjoint(ctx, cars, booking_request):
    car_id = cars[0]
    first = bookings.create_booking('user-1', booking_request(car_id))
    assert first['status'] == 'confirmed'
    assert first['paymentStatus'] == 'paid'

    with pytest.raises(ConflictError) as excinfo:
        bookings.create_booking('user-2', booking_request(
            car_id, pickupDate='2025-10-22', returnDate='2025-10-26'))
    assert excinfo.value.booking_ids == [first['id']]
    assert first['bookingNumber'] in excinfo.value.message

    later = bookings.create_booking('user-2', booking_request(
        car_id, pickupDate='2025-10-25', returnDate='2025-10-28'))
    assert later['status'] == 'confirmed'


def test_cancelled_booking_frees_the_dates(ctx, cars, booking_request):
    car_id = cars[0]
    booking = bookings.create_booking('user-1', booking_request(car_id))
    assert not check_availability(car_id, '2025-10-20', '2025-10-24').allowed

    cancelled = bookings.cancel_booking(booking['id'], 'user-1')
    assert cancelled['status'] == 'cancelled'
    result = check_availability(car_id, '2025-10-20', '2025-10-24')
    assert result.allowed
    assert result.conflicts == []


def test_other_cars_are_unaffected(ctx, cars, booking_request):
    bookings.create_booking('user-1', booking_request(cars[0]))
    assert check_availability(cars[1], '2025-10-20', '2025-10-24').allowed


def test_same_day_turnover_with_exclusive_boundaries(ctx, cars, booking_request):
    bookings.create_booking('user-1', booking_request(cars[0]))
    assert not check_availability(cars[0], '2025-10-24', '2025-10-26').allowed

    ctx.config['BOOKING_INCLUSIVE_BOUNDARIES'] = False
    assert check_availability(cars[0], '2025-10-24', '2025-10-26').allowed
    assert not check_availability(cars[0], '2025-10-23', '2025-10-26').allowed


def test_check_availability_errors(ctx, cars):
    with pytest.raises(NotFoundError):
        check_availability(9999, '2025-10-20', '2025-10-24')
    with pytest.raises(ValidationError):
        check_availability(cars[0], '2025-10-24', '2025-10-20')
