"""
Booking lifecycle.

States run ``pending -> confirmed -> upcoming -> active -> completed`` and any
non-terminal booking may be cancelled.  ``completed`` and ``cancelled`` are
terminal.  Creation validates the request, checks availability and inserts
the booking inside one transaction; the car row is selected ``FOR UPDATE`` so
that on databases with row locks two requests for the same car are
serialised between the check and the insert.
"""

import logging
import math
from datetime import date

from flask import current_app
from sqlalchemy import or_, select

from . import notifications
from .availability import ensure_available, parse_car_id, parse_date, validate_range
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (Booking, BookingStatus, Car, PaymentStatus, db,
                     store_operation, utcnow)

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ('carId', 'pickupDate', 'returnDate', 'pickupLocation',
                   'pickupTime', 'returnTime', 'rentalDays', 'dailyRate',
                   'totalAmount')

# Allowed operator transitions.  Cancellation is handled separately since it
# is reachable from every non-terminal state.
TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED},
    BookingStatus.CONFIRMED: {BookingStatus.UPCOMING, BookingStatus.ACTIVE},
    BookingStatus.UPCOMING: {BookingStatus.ACTIVE},
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    if target is BookingStatus.CANCELLED:
        return not current.is_terminal
    return target in TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Input validation

def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _positive_number(data: dict, field: str, integer: bool = False):
    value = data[field]
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", field=field)
    if integer:
        if number != int(number):
            raise ValidationError(f"{field} must be a whole number", field=field)
        number = int(number)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return number


def validate_booking_input(data: dict) -> dict:
    """Check a reservation request and return the cleaned values."""
    if not isinstance(data, dict):
        raise ValidationError('Booking request must be a JSON object')
    missing = [field for field in REQUIRED_FIELDS if _blank(data.get(field))]
    if missing:
        raise ValidationError('Missing required fields', fields=missing)
    pickup_date = parse_date(data['pickupDate'], 'pickupDate')
    return_date = parse_date(data['returnDate'], 'returnDate')
    validate_range(pickup_date, return_date)
    return {
        'car_id': parse_car_id(data['carId']),
        'pickup_date': pickup_date,
        'return_date': return_date,
        'pickup_location': str(data['pickupLocation']).strip(),
        'return_location': data.get('returnLocation') or None,
        'pickup_time': str(data['pickupTime']).strip(),
        'return_time': str(data['returnTime']).strip(),
        'rental_days': _positive_number(data, 'rentalDays', integer=True),
        'daily_rate': _positive_number(data, 'dailyRate'),
        'total_amount': _positive_number(data, 'totalAmount'),
        'notes': data.get('notes') or None,
        'driver_age': str(data['driverAge']) if data.get('driverAge') else None,
        'additional_driver': bool(data.get('additionalDriver')),
        'insurance': data.get('insurance') or None,
    }


# ---------------------------------------------------------------------------
# Serialisation

def car_summary(car) -> dict:
    """Display fields for a booking's car, with placeholders if it is gone."""
    placeholder = current_app.config['CAR_PLACEHOLDER_IMAGE']
    if car is None:
        return {'carName': 'Unknown Car', 'carModel': 'Unknown Model',
                'carImage': placeholder}
    year = car.year or date.today().year
    images = car.images if isinstance(car.images, list) else []
    return {
        'carName': car.name or 'Unknown Car',
        'carModel': f"{year} {car.brand or ''} {car.model or ''}".strip(),
        'carImage': images[0] if images else placeholder,
    }


def serialize_booking(booking: Booking, car=None) -> dict:
    row = {
        'id': booking.id,
        'bookingNumber': booking.booking_number,
        'userId': booking.user_id,
        'carId': booking.car_id,
        'status': booking.status.value,
        'paymentStatus': booking.payment_status.value,
        'pickupDate': booking.pickup_date.isoformat(),
        'returnDate': booking.return_date.isoformat(),
        'pickupLocation': booking.pickup_location,
        'returnLocation': booking.return_location,
        'pickupTime': booking.pickup_time,
        'returnTime': booking.return_time,
        'rentalDays': booking.rental_days,
        'dailyRate': booking.daily_rate,
        'totalAmount': booking.total_amount,
        'bookingDate': booking.created_at.date().isoformat() if booking.created_at else None,
        'notes': booking.notes,
        'driverAge': booking.driver_age,
        'additionalDriver': bool(booking.additional_driver),
        'insurance': booking.insurance,
    }
    row.update(car_summary(car))
    return row


def _cars_by_id(bookings) -> dict:
    ids = {b.car_id for b in bookings if b.car_id is not None}
    if not ids:
        return {}
    return {car.id: car for car in Car.query.filter(Car.id.in_(ids)).all()}


def booking_number(booking: Booking) -> str:
    year = (booking.created_at or utcnow()).year
    return f"BKG-{year}-{booking.id:05d}"


# ---------------------------------------------------------------------------
# Operations

def create_booking(user_id: str, data: dict) -> dict:
    """Validate, check availability and persist a new booking.

    Nothing is written unless every check passes.  In demo payment mode the
    booking is confirmed and marked paid straight away; otherwise it starts
    out pending and must be confirmed by an operator.
    """
    values = validate_booking_input(data)
    demo = current_app.config.get('BOOKING_DEMO_PAYMENTS', True)
    with store_operation('create booking'):
        car = db.session.execute(
            select(Car).where(Car.id == values['car_id']).with_for_update()
        ).scalar_one_or_none()
        if car is None:
            db.session.rollback()
            raise NotFoundError('Car not found', carId=values['car_id'])
        try:
            ensure_available(car.id, values['pickup_date'], values['return_date'])
        except ConflictError:
            db.session.rollback()
            raise
        booking = Booking(
            user_id=str(user_id),
            status=BookingStatus.CONFIRMED if demo else BookingStatus.PENDING,
            payment_status=PaymentStatus.PAID if demo else PaymentStatus.PENDING,
            created_at=utcnow(),
            **values,
        )
        db.session.add(booking)
        db.session.flush()
        booking.booking_number = booking_number(booking)
        db.session.commit()
    log.info('Booking %s created for car %s by user %s (%s..%s)',
             booking.booking_number, car.id, user_id,
             booking.pickup_date, booking.return_date)
    notifications.booking_created(booking, car)
    return serialize_booking(booking, car)


def _load(booking_id) -> Booking:
    try:
        booking_id = int(booking_id)
    except (TypeError, ValueError):
        raise ValidationError('Invalid booking ID format') from None
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError('Booking not found')
    return booking


def get_booking(booking_id, user_id: str) -> dict:
    with store_operation('load booking'):
        booking = _load(booking_id)
        if booking.user_id != str(user_id):
            raise NotFoundError('Booking not found')
        car = db.session.get(Car, booking.car_id)
    return serialize_booking(booking, car)


def list_bookings(user_id: str) -> list:
    """All of a user's bookings, newest first, with car display fields."""
    with store_operation('load bookings'):
        bookings = (Booking.query.filter_by(user_id=str(user_id))
                    .order_by(Booking.created_at.desc(), Booking.id.desc())
                    .all())
        cars = _cars_by_id(bookings)
    return [serialize_booking(b, cars.get(b.car_id)) for b in bookings]


UPDATABLE_FIELDS = {
    'notes': 'notes',
    'driverAge': 'driver_age',
    'additionalDriver': 'additional_driver',
    'insurance': 'insurance',
}


def update_booking(booking_id, user_id: str, data: dict) -> dict:
    """Edit the rental extras on the caller's own booking.

    Status and payment status are not editable here; lifecycle changes go
    through ``transition_booking`` and ``cancel_booking``.
    """
    if not isinstance(data, dict):
        raise ValidationError('Booking update must be a JSON object')
    locked = [field for field in ('status', 'paymentStatus') if field in data]
    if locked:
        raise ValidationError('Booking status cannot be changed here', fields=locked)
    changes = {UPDATABLE_FIELDS[k]: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError('No updatable fields supplied',
                              fields=sorted(UPDATABLE_FIELDS))
    if 'additional_driver' in changes:
        changes['additional_driver'] = bool(changes['additional_driver'])
    for column in ('notes', 'driver_age', 'insurance'):
        if changes.get(column) is not None:
            changes[column] = str(changes[column]).strip() or None
    with store_operation('update booking'):
        booking = _load(booking_id)
        if booking.user_id != str(user_id):
            raise NotFoundError('Booking not found')
        for column, value in changes.items():
            setattr(booking, column, value)
        db.session.commit()
        car = db.session.get(Car, booking.car_id)
    log.info('Booking %s updated by %s: %s', booking.booking_number, user_id,
             ', '.join(sorted(changes)))
    return serialize_booking(booking, car)


def cancel_booking(booking_id, requester_id: str, is_operator: bool = False) -> dict:
    """Cancel a booking owned by the requester (or any booking for operators)."""
    with store_operation('cancel booking'):
        booking = _load(booking_id)
        if not is_operator and booking.user_id != str(requester_id):
            raise NotFoundError('Booking not found')
        if booking.status.is_terminal:
            raise ValidationError(f"Booking is already {booking.status.value}",
                                  status=booking.status.value)
        previous = booking.status
        booking.status = BookingStatus.CANCELLED
        db.session.commit()
        car = db.session.get(Car, booking.car_id)
    log.info('Booking %s cancelled by %s (was %s)', booking.booking_number,
             requester_id, previous.value)
    notifications.booking_cancelled(booking)
    return serialize_booking(booking, car)


def transition_booking(booking_id, target) -> dict:
    """Move a booking to ``target`` if the lifecycle allows it.

    Confirming a pending booking re-runs the availability check, since pending
    bookings do not hold the car's dates.
    """
    try:
        target = BookingStatus(target)
    except ValueError:
        raise ValidationError(f"Unknown booking status: {target}", field='status') from None
    if target is BookingStatus.CANCELLED:
        return cancel_booking(booking_id, requester_id='operator', is_operator=True)
    with store_operation('update booking'):
        booking = _load(booking_id)
        current = booking.status
        if not can_transition(current, target):
            raise ValidationError(
                f"Cannot move booking from {current.value} to {target.value}",
                status=current.value,
            )
        if target.occupies and not current.occupies:
            db.session.execute(
                select(Car.id).where(Car.id == booking.car_id).with_for_update()
            )
            try:
                ensure_available(booking.car_id, booking.pickup_date,
                                 booking.return_date, exclude_id=booking.id)
            except ConflictError:
                db.session.rollback()
                raise
        booking.status = target
        db.session.commit()
        car = db.session.get(Car, booking.car_id)
    log.info('Booking %s moved %s -> %s', booking.booking_number,
             current.value, target.value)
    return serialize_booking(booking, car)


def list_all_bookings(filters: dict, page: int = 1, page_size: int = 10) -> dict:
    """Operator listing across all users with status, date and text filters."""
    query = Booking.query.outerjoin(Car, Car.id == Booking.car_id)
    status = (filters.get('status') or 'all').strip().lower()
    if status != 'all':
        try:
            query = query.filter(Booking.status == BookingStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown booking status: {status}", field='status') from None
    if filters.get('from'):
        query = query.filter(Booking.pickup_date >= parse_date(filters['from'], 'from'))
    if filters.get('to'):
        query = query.filter(Booking.pickup_date <= parse_date(filters['to'], 'to'))
    search = (filters.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Booking.booking_number.ilike(pattern),
            Booking.user_id.ilike(pattern),
            Car.brand.ilike(pattern),
            Car.model.ilike(pattern),
            Car.licence_plate.ilike(pattern),
        ))
    with store_operation('load bookings'):
        result = (query.order_by(Booking.created_at.desc(), Booking.id.desc())
                  .paginate(page=page, per_page=page_size, error_out=False))
        cars = _cars_by_id(result.items)
    rows = []
    for booking in result.items:
        car = cars.get(booking.car_id)
        row = serialize_booking(booking, car)
        row['car'] = {
            'id': booking.car_id,
            'make': car.brand if car else 'Unknown',
            'model': car.model if car else 'Unknown',
            'plateNumber': (car.licence_plate if car else None) or 'N/A',
            'type': (car.category if car else None) or 'Unknown',
        }
        rows.append(row)
    return {'rows': rows, 'page': page, 'pageCount': max(1, result.pages),
            'total': result.total}
