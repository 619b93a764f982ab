"""
Database models.  Each model maps to one table; the booking and reporting
layers only ever touch the database through these classes and the shared
``db`` session.
"""

import enum
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError

from .errors import StoreError


log = logging.getLogger(__name__)

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, which is what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column(enum_cls, **kwargs):
    """String-backed enum column storing the member values."""
    return db.Column(db.Enum(enum_cls, native_enum=False, length=20,
                             values_callable=_enum_values,
                             validate_strings=True), **kwargs)


class CarStatus(str, enum.Enum):
    AVAILABLE = 'available'
    RENTED = 'rented'
    MAINTENANCE = 'maintenance'
    RESERVED = 'reserved'


class BookingStatus(str, enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def occupies(self) -> bool:
        return self in OCCUPYING_STATUSES


class PaymentStatus(str, enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    REFUNDED = 'refunded'
    FAILED = 'failed'


# Statuses that block the car's calendar for the booked dates.
OCCUPYING_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.UPCOMING,
                                BookingStatus.ACTIVE})
TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class Car(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    brand = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(80), nullable=False)
    year = db.Column(db.Integer)
    category = db.Column(db.String(80))
    licence_plate = db.Column(db.String(20), unique=True)
    images = db.Column(db.JSON, default=list)
    daily_rate = db.Column(db.Float, nullable=False)
    weekly_rate = db.Column(db.Float)
    monthly_rate = db.Column(db.Float)
    branch = db.Column(db.String(50))
    # Advisory only.  Availability for a date range comes from bookings.
    status = enum_column(CarStatus, nullable=False, default=CarStatus.AVAILABLE)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Car {self.brand} {self.model}>"


class Booking(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(20), unique=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False, index=True)
    status = enum_column(BookingStatus, nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING)
    pickup_date = db.Column(db.Date, nullable=False, index=True)
    return_date = db.Column(db.Date, nullable=False, index=True)
    pickup_location = db.Column(db.String(120), nullable=False)
    return_location = db.Column(db.String(120))
    pickup_time = db.Column(db.String(10), nullable=False)
    return_time = db.Column(db.String(10), nullable=False)
    rental_days = db.Column(db.Integer, nullable=False)
    daily_rate = db.Column(db.Float, nullable=False)
    total_amount = db.Column(db.Float, nullable=False)
    notes = db.Column(db.Text)
    driver_age = db.Column(db.String(10))
    additional_driver = db.Column(db.Boolean, default=False)
    insurance = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('pickup_date < return_date', name='ck_booking_date_order'),
        db.CheckConstraint('rental_days >= 1', name='ck_booking_rental_days'),
        db.CheckConstraint('total_amount >= 0', name='ck_booking_total_amount'),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.booking_number} car={self.car_id} {self.status.value}>"


class Expense(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.String(30), nullable=False, index=True)
    vendor = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False)
    method = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='Pending')
    amount = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Expense {self.category} {self.amount}>"


class Client(db.Model):
    """A storefront customer.  ``uid`` is the identity bookings refer to."""
    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(64), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(50))
    branch = db.Column(db.String(50), default='Doha')
    tier = db.Column(db.String(20), default='Regular')
    status = db.Column(db.String(20), nullable=False, default='active')  # active, banned, suspended
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Client {self.email}>"


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('booking.id'))
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.Text, nullable=False)
    action_url = db.Column(db.String(200))
    read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Notification {self.type} user={self.user_id}>"


# ---------------------------------------------------------------------------
# Store failure handling.  Any SQLAlchemy error inside the block rolls the
# session back and is re-raised as a StoreError with a generic message.

@contextmanager
def store_operation(action: str):
    try:
        yield db.session
    except SQLAlchemyError as exc:
        db.session.rollback()
        log.error('Store failure while %s', action, exc_info=True)
        raise StoreError(f"Failed to {action}. Please try again later.") from exc
