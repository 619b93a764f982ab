"""
Availability checks for a car over a date range.

The booking table is the only source of truth here; the car's own ``status``
column is advisory.  A car is available for ``[pickup, return]`` when no
booking in an occupying status (confirmed, upcoming, active) for that car
overlaps the range.
"""

import logging
from datetime import date, datetime
from typing import List, NamedTuple, Optional

from flask import current_app

from .errors import ConflictError, NotFoundError, ValidationError
from .models import Booking, BookingStatus, Car, db, store_operation

log = logging.getLogger(__name__)

OCCUPYING = [status for status in BookingStatus if status.occupies]


class Availability(NamedTuple):
    allowed: bool
    conflicts: List[int]


def parse_date(value, field: str) -> date:
    """Parse an ISO date (``YYYY-MM-DD``, any time suffix ignored)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be an ISO date", field=field)
    try:
        return date.fromisoformat(value.strip().split('T')[0])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date", field=field) from None


def parse_car_id(value) -> int:
    if isinstance(value, bool):
        raise ValidationError('Invalid car ID format', field='carId')
    try:
        car_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError('Invalid car ID format', field='carId') from None
    if car_id <= 0:
        raise ValidationError('Invalid car ID format', field='carId')
    return car_id


def validate_range(pickup_date: date, return_date: date) -> None:
    if not pickup_date < return_date:
        raise ValidationError('Return date must be after pickup date',
                              field='returnDate')


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date,
             inclusive: bool = True) -> bool:
    """Return True if the two date ranges intersect.

    With ``inclusive`` the ranges are closed on both ends, so a range ending
    on the day another starts counts as overlapping.
    """
    if inclusive:
        return a_start <= b_end and a_end >= b_start
    return a_start < b_end and a_end > b_start


def _inclusive_boundaries() -> bool:
    return current_app.config.get('BOOKING_INCLUSIVE_BOUNDARIES', True)


def find_conflicts(car_id: int, pickup_date: date, return_date: date,
                   exclude_id: Optional[int] = None) -> List[Booking]:
    """Occupying bookings for ``car_id`` whose dates intersect the range."""
    query = Booking.query.filter(Booking.car_id == car_id,
                                 Booking.status.in_(OCCUPYING))
    if _inclusive_boundaries():
        query = query.filter(Booking.pickup_date <= return_date,
                             Booking.return_date >= pickup_date)
    else:
        query = query.filter(Booking.pickup_date < return_date,
                             Booking.return_date > pickup_date)
    if exclude_id is not None:
        query = query.filter(Booking.id != exclude_id)
    return query.order_by(Booking.pickup_date.asc(), Booking.id.asc()).all()


def check_availability(car_id, pickup_date, return_date) -> Availability:
    """Decide whether a car can be booked for the given dates.  Read-only."""
    car_id = parse_car_id(car_id)
    pickup = parse_date(pickup_date, 'pickupDate')
    ret = parse_date(return_date, 'returnDate')
    validate_range(pickup, ret)
    with store_operation('check availability'):
        if db.session.get(Car, car_id) is None:
            raise NotFoundError('Car not found', carId=car_id)
        conflicts = find_conflicts(car_id, pickup, ret)
    return Availability(allowed=not conflicts, conflicts=[b.id for b in conflicts])


def ensure_available(car_id: int, pickup_date: date, return_date: date,
                     exclude_id: Optional[int] = None) -> None:
    """Raise ConflictError naming the blocking bookings, if any."""
    conflicts = find_conflicts(car_id, pickup_date, return_date, exclude_id=exclude_id)
    if conflicts:
        ids = [b.id for b in conflicts]
        log.info('Rejected car %s for %s..%s, blocked by bookings %s',
                 car_id, pickup_date, return_date, ids)
        numbers = ', '.join(b.booking_number or str(b.id) for b in conflicts)
        raise ConflictError(
            f"Car is not available for the selected dates (blocked by {numbers})",
            booking_ids=ids,
        )
