"""
Fleet, expense and client records.  These are plain validated inserts used by
the admin console and by seeding; the interesting logic lives in the booking
and reporting modules.
"""

import logging
import math
from datetime import datetime, timezone

from .availability import parse_date
from .errors import ValidationError
from .models import Car, CarStatus, Client, Expense, db, store_operation

log = logging.getLogger(__name__)

EXPENSE_CATEGORIES = ('Fuel', 'Maintenance', 'Salaries', 'Rent', 'Utilities',
                      'Insurance', 'Other')
EXPENSE_METHODS = ('Card', 'Cash', 'Money Transfer', 'Wallet')
EXPENSE_STATUSES = ('Pending', 'Posted', 'Refunded')
CLIENT_STATUSES = ('active', 'banned', 'suspended')


def _require(data: dict, fields) -> None:
    missing = [f for f in fields
               if data.get(f) is None or (isinstance(data.get(f), str) and not data[f].strip())]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}",
                              fields=missing)


def _choice(data: dict, field: str, allowed) -> str:
    value = data[field]
    if value not in allowed:
        raise ValidationError(f"Invalid {field}. Must be one of: {', '.join(allowed)}",
                              field=field)
    return value


def _amount(value, field: str, allow_zero: bool = True) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number", field=field) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", field=field)
    if number < 0 or (number == 0 and not allow_zero):
        raise ValidationError(f"{field} must be a positive number", field=field)
    return number


def _timestamp(value, field: str) -> datetime:
    """Naive UTC datetime from a datetime, a date or an ISO-8601 string."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO timestamp", field=field) from None
    else:
        day = parse_date(value, field)
        return datetime(day.year, day.month, day.day)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def serialize_expense(expense: Expense) -> dict:
    return {
        'id': expense.id,
        'date': expense.date.isoformat(),
        'category': expense.category,
        'vendor': expense.vendor,
        'description': expense.description,
        'method': expense.method,
        'status': expense.status,
        'amount': expense.amount,
    }


def create_expense(data: dict) -> dict:
    _require(data, ('date', 'category', 'vendor', 'description', 'method',
                    'status', 'amount'))
    expense = Expense(
        date=parse_date(data['date'], 'date'),
        category=_choice(data, 'category', EXPENSE_CATEGORIES),
        vendor=data['vendor'].strip(),
        description=data['description'].strip(),
        method=_choice(data, 'method', EXPENSE_METHODS),
        status=_choice(data, 'status', EXPENSE_STATUSES),
        amount=_amount(data['amount'], 'amount'),
    )
    with store_operation('create expense'):
        db.session.add(expense)
        db.session.commit()
    log.info('Expense %s recorded: %s %.2f', expense.id, expense.category, expense.amount)
    return serialize_expense(expense)


def create_car(data: dict) -> Car:
    _require(data, ('name', 'brand', 'model', 'dailyRate'))
    status = data.get('status') or CarStatus.AVAILABLE.value
    try:
        status = CarStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status: {status}", field='status') from None
    car = Car(
        name=data['name'].strip(),
        brand=data['brand'].strip(),
        model=data['model'].strip(),
        year=int(data['year']) if data.get('year') else None,
        category=data.get('category'),
        licence_plate=data.get('licencePlate'),
        images=list(data.get('images') or []),
        daily_rate=_amount(data['dailyRate'], 'dailyRate', allow_zero=False),
        weekly_rate=_amount(data['weeklyRate'], 'weeklyRate') if data.get('weeklyRate') else None,
        monthly_rate=_amount(data['monthlyRate'], 'monthlyRate') if data.get('monthlyRate') else None,
        branch=data.get('branch'),
        status=status,
    )
    with store_operation('create car'):
        db.session.add(car)
        db.session.commit()
    return car


def create_client(data: dict) -> Client:
    _require(data, ('uid', 'name', 'email'))
    status = data.get('status') or 'active'
    if status not in CLIENT_STATUSES:
        raise ValidationError(f"Invalid status: {status}", field='status')
    client = Client(
        uid=str(data['uid']),
        name=data['name'].strip(),
        email=data['email'].strip().lower(),
        phone=data.get('phone'),
        branch=data.get('branch') or 'Doha',
        tier=data.get('tier') or 'Regular',
        status=status,
    )
    if data.get('createdAt'):
        client.created_at = _timestamp(data['createdAt'], 'createdAt')
    with store_operation('create client'):
        db.session.add(client)
        db.session.commit()
    return client
