"""
Dashboard reports: expenses, clients and fleet analytics.

Each report picks its rows with a SQL query, maps them onto
``DatedRecord`` (date, amount, category) and hands them to the aggregation
engine.  Every independent piece of a report is computed in isolation; if one
fails it is logged and replaced by its empty value so the dashboard still
renders.
"""

import logging
import math
from datetime import date, datetime, time, timedelta

from flask import current_app
from sqlalchemy import case, func, or_

from . import aggregation
from .aggregation import DatedRecord
from .availability import parse_date
from .errors import ValidationError
from .models import (Booking, BookingStatus, Car, CarStatus, Client, Expense,
                     PaymentStatus, db, utcnow)
from .records import serialize_expense

log = logging.getLogger(__name__)

EXPENSE_SORT_FIELDS = {
    'date': Expense.date,
    'amount': Expense.amount,
    'category': Expense.category,
    'vendor': Expense.vendor,
    'status': Expense.status,
    'method': Expense.method,
}
CLIENT_SORT_FIELDS = {
    'name': Client.name,
    'email': Client.email,
    'branch': Client.branch,
    'tier': Client.tier,
    'joined': Client.created_at,
}
# Console labels for the stored client status values.
CLIENT_STATUS_LABELS = {'active': 'Active', 'banned': 'Inactive', 'suspended': 'Suspended'}
CLIENT_STATUS_FILTERS = {label: value for value, label in CLIENT_STATUS_LABELS.items()}


def _isolated(label: str, default, func_, *args, **kwargs):
    """Run one piece of a report, degrading to ``default`` on failure."""
    try:
        return func_(*args, **kwargs)
    except Exception:
        db.session.rollback()
        log.error('Report section %r failed; returning empty value', label, exc_info=True)
        return default


def _default_days() -> int:
    return current_app.config.get('REPORT_DEFAULT_WINDOW_DAYS',
                                  aggregation.DEFAULT_WINDOW_DAYS)


def _selected(filters: dict, name: str):
    value = (filters.get(name) or 'All').strip()
    return None if value == 'All' else value


def _number_filter(filters: dict, name: str):
    """Finite float for a filter, or None when absent or unparseable."""
    value = filters.get(name)
    if value in (None, ''):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        log.warning('Ignoring unparseable %s filter %r', name, value)
        return None
    return number


def _date_filter(filters: dict, name: str):
    """Date for a filter, or None when absent or unparseable."""
    value = filters.get(name)
    if not value:
        return None
    try:
        return parse_date(value, name)
    except ValidationError:
        log.warning('Ignoring unparseable %s filter %r', name, value)
        return None


def _paginate(query, page: int, page_size: int):
    result = query.paginate(page=page, per_page=page_size, error_out=False)
    return result.items, result.total, result.pages


def _day_bounds(day: date):
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


# ---------------------------------------------------------------------------
# Expenses

def expense_query(filters: dict):
    query = Expense.query
    for field in ('status', 'category', 'method'):
        value = _selected(filters, field)
        if value:
            query = query.filter(getattr(Expense, field) == value)
    vendor = _selected(filters, 'vendor')
    if vendor:
        query = query.filter(Expense.vendor.ilike(f"%{vendor}%"))
    start, end = _date_filter(filters, 'from'), _date_filter(filters, 'to')
    if start:
        query = query.filter(Expense.date >= start)
    if end:
        query = query.filter(Expense.date <= end)
    low, high = _number_filter(filters, 'min'), _number_filter(filters, 'max')
    if low is not None:
        query = query.filter(Expense.amount >= low)
    if high is not None:
        query = query.filter(Expense.amount <= high)
    search = (filters.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Expense.description.ilike(pattern),
                                 Expense.vendor.ilike(pattern)))
    return query


def expense_records(query) -> list:
    rows = (query.with_entities(Expense.date, Expense.amount, Expense.category)
            .order_by(Expense.date.asc(), Expense.id.asc()).all())
    return [DatedRecord(day, amount or 0, category) for day, amount, category in rows]


def get_expense_report(filters: dict, page: int = 1, page_size: int = 10,
                       today: date = None) -> dict:
    """Paged expense rows plus filtered total, KPIs and a daily trend."""
    query = expense_query(filters)
    sort_column = EXPENSE_SORT_FIELDS.get(filters.get('sortBy') or 'date', Expense.date)
    ordering = sort_column.asc() if filters.get('sortDir') == 'asc' else sort_column.desc()

    rows, total, page_count = _isolated(
        'expense rows', ([], 0, 0), _paginate,
        query.order_by(ordering, Expense.id.desc()), page, page_size)
    filtered = _isolated('filtered expenses', [], expense_records, query)
    everything = _isolated('all expenses', [], expense_records, Expense.query)

    result = aggregation.aggregate(filtered, everything,
                                   kpi_window=aggregation.month_to_date(today),
                                   today=today, default_days=_default_days())
    return {
        'rows': [serialize_expense(e) for e in rows],
        'total': total,
        'page': page,
        'pageCount': page_count,
        'filteredTotal': aggregation.total(filtered),
        'trend': [point.as_dict() for point in result.trend],
        'kpis': result.kpis.as_dict(),
    }


# ---------------------------------------------------------------------------
# Clients

def client_query(filters: dict):
    query = Client.query
    search = (filters.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Client.name.ilike(pattern),
                                 Client.email.ilike(pattern),
                                 Client.phone.ilike(pattern)))
    for field in ('branch', 'tier'):
        value = _selected(filters, field)
        if value:
            query = query.filter(getattr(Client, field) == value)
    status = _selected(filters, 'status')
    if status:
        query = query.filter(Client.status == CLIENT_STATUS_FILTERS.get(status, status.lower()))
    start, end = _date_filter(filters, 'from'), _date_filter(filters, 'to')
    if start:
        query = query.filter(Client.created_at >= _day_bounds(start)[0])
    if end:
        query = query.filter(Client.created_at <= _day_bounds(end)[1])
    return query


def _booking_stats(uids) -> dict:
    """Booking count and completed spend per client uid."""
    if not uids:
        return {}
    spent = func.sum(case((Booking.status == BookingStatus.COMPLETED, Booking.total_amount),
                          else_=0))
    rows = (db.session.query(Booking.user_id, func.count(Booking.id), spent)
            .filter(Booking.user_id.in_(uids))
            .group_by(Booking.user_id).all())
    return {uid: (count, total or 0) for uid, count, total in rows}


def get_client_report(filters: dict, page: int = 1, page_size: int = 10) -> dict:
    query = client_query(filters)
    sort_column = CLIENT_SORT_FIELDS.get(filters.get('sortBy') or 'name', Client.name)
    ordering = sort_column.desc() if filters.get('sortOrder') == 'desc' else sort_column.asc()

    clients, total, page_count = _isolated(
        'client rows', ([], 0, 0), _paginate,
        query.order_by(ordering, Client.id.asc()), page, page_size)
    stats = _isolated('client booking stats', {}, _booking_stats, [c.uid for c in clients])

    rows = []
    for client in clients:
        bookings, spent = stats.get(client.uid, (0, 0))
        rows.append({
            'id': client.id,
            'uid': client.uid,
            'name': client.name or 'N/A',
            'email': client.email or 'N/A',
            'phone': client.phone or 'N/A',
            'branch': client.branch or 'N/A',
            'tier': client.tier or 'Regular',
            'status': CLIENT_STATUS_LABELS.get(client.status, 'Active'),
            'bookings': bookings,
            'totalSpent': spent,
            'joined': client.created_at.isoformat() if client.created_at else None,
        })
    return {'rows': rows, 'total': total, 'page': page, 'pageCount': page_count}


def get_client_kpis(today: date = None) -> dict:
    start_of_month = datetime.combine(aggregation.month_to_date(today)[0], time.min)
    return {
        'total': _isolated('clients total', 0, lambda: Client.query.count()),
        'active': _isolated('clients active', 0,
                            lambda: Client.query.filter_by(status='active').count()),
        'newThisMonth': _isolated('clients new this month', 0,
                                  lambda: Client.query.filter(
                                      Client.created_at >= start_of_month).count()),
        'suspended': _isolated('clients suspended', 0,
                               lambda: Client.query.filter_by(status='suspended').count()),
    }


def _signup_records(since: datetime) -> list:
    rows = (db.session.query(Client.created_at)
            .filter(Client.created_at >= since)
            .order_by(Client.created_at.asc()).all())
    return [DatedRecord(created.date(), 1) for (created,) in rows]


def get_client_trend(days: int = 30, today: date = None) -> list:
    """Daily signup counts for the trailing ``days`` days, zero-filled."""
    days = min(max(int(days), 1), 365)
    start, end = aggregation.trailing_window(days, today)
    records = _isolated('client signups', [], _signup_records, _day_bounds(start)[0])
    return [{'date': p.date.isoformat(), 'total': int(p.total)}
            for p in aggregation.daily_trend(records, start, end)]


# ---------------------------------------------------------------------------
# Fleet analytics

def _sum_bookings(*criteria) -> float:
    value = (db.session.query(func.coalesce(func.sum(Booking.total_amount), 0))
             .filter(*criteria).scalar())
    return round(value or 0, 2)


def _booking_records(since: datetime, *criteria, count_only: bool = False) -> list:
    rows = (db.session.query(Booking.created_at, Booking.total_amount)
            .filter(Booking.created_at >= since, *criteria)
            .order_by(Booking.created_at.asc(), Booking.id.asc()).all())
    return [DatedRecord(created.date(), 1 if count_only else (amount or 0))
            for created, amount in rows]


def _rent_status() -> dict:
    counts = {status.value: 0 for status in BookingStatus}
    rows = (db.session.query(Booking.status, func.count(Booking.id))
            .group_by(Booking.status).all())
    for status, count in rows:
        counts[BookingStatus(status).value] = count
    return counts


def _car_types(limit: int = 4) -> list:
    label = func.coalesce(Car.category, 'Unknown')
    rows = (db.session.query(label, func.count(Car.id))
            .group_by(label)
            .order_by(func.count(Car.id).desc(), label.asc())
            .limit(limit).all())
    counted = sum(count for _, count in rows)
    return [{'name': name, 'count': count,
             'percentage': round(count / counted * 100) if counted else 0}
            for name, count in rows]


def _series(points, value_name: str, key_name: str, as_int: bool = False) -> list:
    return [{key_name: p.key, 'label': p.label,
             value_name: int(p.total) if as_int else round(p.total, 2)}
            for p in points]


def get_fleet_analytics(today: date = None) -> dict:
    """KPIs and chart series for the operator dashboard."""
    now = utcnow() if today is None else datetime.combine(today, time.max)
    today = today or now.date()
    earning = (Booking.status == BookingStatus.COMPLETED,
               Booking.payment_status == PaymentStatus.PAID)

    kpis = {
        'totalRevenue': _isolated('revenue', 0, _sum_bookings,
                                  Booking.payment_status == PaymentStatus.PAID,
                                  Booking.status != BookingStatus.CANCELLED),
        'totalRevenueAllTime': _isolated('revenue all time', 0, _sum_bookings,
                                         Booking.payment_status == PaymentStatus.PAID),
        'activeRentals': _isolated('active rentals', 0, lambda: Booking.query.filter(
            Booking.status == BookingStatus.ACTIVE).count()),
        'newBookings': _isolated('new bookings', 0, lambda: Booking.query.filter(
            Booking.created_at >= now - timedelta(days=7)).count()),
        'availableCars': _isolated('available cars', 0, lambda: Car.query.filter(
            Car.status == CarStatus.AVAILABLE).count()),
    }

    first_year = datetime(today.year - 4, 1, 1)
    earnings = _isolated('earnings', [], _booking_records, first_year, *earning)
    first_month = datetime.combine(
        aggregation.shift_period(today.replace(day=1), 'month', -5), time.min)
    bookings = _isolated('monthly bookings', [], _booking_records, first_month,
                         count_only=True)

    return {
        'kpis': kpis,
        'earningsWeekly': _series(aggregation.period_series(earnings, 'week', 12, today),
                                  'revenue', 'week'),
        'earningsMonthly': _series(aggregation.period_series(earnings, 'month', 12, today),
                                   'revenue', 'month'),
        'earningsYearly': _series(aggregation.period_series(earnings, 'year', 5, today),
                                  'revenue', 'year'),
        'rentStatus': _isolated('rent status', {s.value: 0 for s in BookingStatus},
                                _rent_status),
        'bookingsMonthly': _series(aggregation.period_series(bookings, 'month', 6, today),
                                   'count', 'month', as_int=True),
        'carTypes': _isolated('car types', [], _car_types),
    }
