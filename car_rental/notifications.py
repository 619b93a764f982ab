"""
User notifications.  A row is recorded when something happens to a user's
booking; delivery (e-mail, websocket) is handled elsewhere by reading these
rows.  Recording is best-effort: a failure here never undoes the booking
that triggered it.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from .errors import NotFoundError
from .models import Notification, db, store_operation, utcnow

log = logging.getLogger(__name__)

BOOKING_CREATED = 'BOOKING_CREATED'
BOOKING_CANCELLED = 'BOOKING_CANCELLED'


def notify(user_id: str, type_: str, title: str, message: str,
           booking_id=None, action_url=None):
    """Record a notification, logging and swallowing any store failure."""
    try:
        note = Notification(user_id=user_id, booking_id=booking_id, type=type_,
                            title=title, message=message, action_url=action_url)
        db.session.add(note)
        db.session.commit()
        return note
    except SQLAlchemyError:
        db.session.rollback()
        log.warning('Could not record %s notification for user %s',
                    type_, user_id, exc_info=True)
        return None


def booking_created(booking, car) -> None:
    if car is not None:
        vehicle = f"{car.brand} {car.model}"
    else:
        vehicle = 'your car'
    if booking.status.value == 'pending':
        message = f"Your booking for {vehicle} is pending confirmation."
    else:
        message = f"Your booking for {vehicle} is confirmed."
    notify(booking.user_id, BOOKING_CREATED, 'Booking created', message,
           booking_id=booking.id, action_url='/bookings')


def booking_cancelled(booking) -> None:
    notify(booking.user_id, BOOKING_CANCELLED, 'Booking cancelled',
           f"Booking {booking.booking_number} has been cancelled.",
           booking_id=booking.id, action_url='/bookings')


def serialize_notification(note: Notification) -> dict:
    return {
        'id': note.id,
        'userId': note.user_id,
        'bookingId': note.booking_id,
        'type': note.type,
        'title': note.title,
        'message': note.message,
        'actionUrl': note.action_url,
        'read': bool(note.read),
        'readAt': note.read_at.isoformat() if note.read_at else None,
        'createdAt': note.created_at.isoformat() if note.created_at else None,
    }


def list_notifications(user_id: str) -> list:
    with store_operation('load notifications'):
        notes = (Notification.query.filter_by(user_id=user_id)
                 .order_by(Notification.created_at.desc(), Notification.id.desc())
                 .all())
    return [serialize_notification(n) for n in notes]


def mark_read(notification_id: int, user_id: str) -> dict:
    with store_operation('update notification'):
        note = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if note is None:
            raise NotFoundError('Notification not found')
        if not note.read:
            note.read = True
            note.read_at = utcnow()
            db.session.commit()
    return serialize_notification(note)
