"""
Time-windowed aggregation over dated monetary records.

Every report in the console reduces to the same shape: a list of records that
each carry a date, an amount and optionally a category, turned into a KPI
bundle plus a trend series with one point per calendar day (or per week,
month or year for the coarser charts).  Days or periods without records are
filled with zero so charts stay continuous and per-day averages are right.

The functions here are pure: they never touch the database and return the
same output for the same input.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

DEFAULT_WINDOW_DAYS = 30


class DatedRecord(NamedTuple):
    date: date
    amount: float
    category: Optional[str] = None


class DailyPoint(NamedTuple):
    date: date
    total: float

    def as_dict(self) -> dict:
        return {'date': self.date.isoformat(), 'total': self.total}


class PeriodPoint(NamedTuple):
    start: date
    key: str
    label: str
    total: float


class Kpis(NamedTuple):
    total_all_time: float = 0
    total_in_window: float = 0
    average_per_day: float = 0
    top_category: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            'totalAllTime': self.total_all_time,
            'totalInWindow': self.total_in_window,
            'averagePerDay': self.average_per_day,
            'topCategory': self.top_category,
        }


class Aggregate(NamedTuple):
    kpis: Kpis
    trend: List[DailyPoint]

    def as_dict(self) -> dict:
        return {'kpis': self.kpis.as_dict(),
                'trend': [point.as_dict() for point in self.trend]}


Window = Tuple[date, date]


def day_of(value) -> date:
    """Calendar day of a date or datetime."""
    if isinstance(value, datetime):
        return value.date()
    return value


def iter_days(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def date_span(records: Sequence[DatedRecord]) -> Optional[Window]:
    if not records:
        return None
    days = [day_of(r.date) for r in records]
    return min(days), max(days)


def trailing_window(days: int, today: Optional[date] = None) -> Window:
    """The ``days`` calendar days ending today, inclusive."""
    today = today or date.today()
    return today - timedelta(days=max(1, days) - 1), today


def month_to_date(today: Optional[date] = None) -> Window:
    today = today or date.today()
    return today.replace(day=1), today


def resolve_window(records: Sequence[DatedRecord], window: Optional[Window] = None,
                   today: Optional[date] = None,
                   default_days: int = DEFAULT_WINDOW_DAYS) -> Window:
    """Explicit window, else the records' own span, else a trailing default."""
    if window is not None:
        start, end = day_of(window[0]), day_of(window[1])
        if start > end:
            raise ValueError('window start is after window end')
        return start, end
    span = date_span(records)
    if span is not None:
        return span
    return trailing_window(default_days, today)


def total(records: Iterable[DatedRecord], window: Optional[Window] = None) -> float:
    if window is None:
        return sum(r.amount for r in records)
    start, end = window
    return sum(r.amount for r in records if start <= day_of(r.date) <= end)


def group_by(records: Iterable[DatedRecord], key) -> dict:
    """Sum amounts per ``key(day)``."""
    groups = defaultdict(float)
    for record in records:
        groups[key(day_of(record.date))] += record.amount
    return groups


def daily_trend(records: Sequence[DatedRecord], start: date, end: date) -> List[DailyPoint]:
    """One point per day from start to end inclusive, zero where empty."""
    groups = group_by(records, lambda day: day)
    return [DailyPoint(day, groups.get(day, 0)) for day in iter_days(start, end)]


def average_per_day(records: Sequence[DatedRecord]) -> float:
    span = date_span(records)
    if span is None:
        return 0
    days = (span[1] - span[0]).days + 1
    return total(records) / days


def top_category(records: Iterable[DatedRecord]) -> Optional[str]:
    totals = defaultdict(float)
    for record in records:
        if record.category is not None:
            totals[record.category] += record.amount
    if not totals:
        return None
    # Highest total wins; ties go to the alphabetically first category.
    return min(totals.items(), key=lambda item: (-item[1], item[0]))[0]


def aggregate(filtered: Sequence[DatedRecord],
              all_records: Optional[Sequence[DatedRecord]] = None,
              window: Optional[Window] = None,
              kpi_window: Optional[Window] = None,
              today: Optional[date] = None,
              default_days: int = DEFAULT_WINDOW_DAYS) -> Aggregate:
    """KPI bundle and gap-filled daily trend for a filtered record set.

    ``all_records`` is the unfiltered collection used for the all-time and
    ``kpi_window`` (default: month to date) totals; it defaults to
    ``filtered``.  ``window`` bounds the trend; without it the trend spans
    the filtered records, or the trailing ``default_days`` when there are
    none.
    """
    filtered = list(filtered)
    all_records = filtered if all_records is None else list(all_records)
    start, end = resolve_window(filtered, window, today, default_days)
    kpis = Kpis(
        total_all_time=total(all_records),
        total_in_window=total(all_records, kpi_window or month_to_date(today)),
        average_per_day=average_per_day(filtered),
        top_category=top_category(filtered),
    )
    return Aggregate(kpis=kpis, trend=daily_trend(filtered, start, end))


# ---------------------------------------------------------------------------
# Coarser calendar buckets (week, month, year)

PERIODS = ('week', 'month', 'year')


def period_start(day: date, period: str) -> date:
    if period == 'week':
        return day - timedelta(days=day.weekday())
    if period == 'month':
        return day.replace(day=1)
    if period == 'year':
        return day.replace(month=1, day=1)
    raise ValueError(f"unknown period: {period}")


def shift_period(start: date, period: str, count: int) -> date:
    """Start of the period ``count`` periods after ``start`` (negative = before)."""
    if period == 'week':
        return start + timedelta(weeks=count)
    if period == 'month':
        months = start.year * 12 + (start.month - 1) + count
        return date(months // 12, months % 12 + 1, 1)
    if period == 'year':
        return date(start.year + count, 1, 1)
    raise ValueError(f"unknown period: {period}")


def period_key(start: date, period: str) -> Tuple[str, str]:
    """Sortable key and short chart label for a period."""
    if period == 'week':
        iso_year, iso_week, _ = start.isocalendar()
        key = f"{iso_year}-W{iso_week:02d}"
        return key, f"W{iso_week}"
    if period == 'month':
        return start.strftime('%Y-%m'), start.strftime('%b')
    return str(start.year), str(start.year)


def period_series(records: Sequence[DatedRecord], period: str, count: int,
                  today: Optional[date] = None) -> List[PeriodPoint]:
    """Totals for the last ``count`` periods ending with the current one."""
    if period not in PERIODS:
        raise ValueError(f"unknown period: {period}")
    current = period_start(today or date.today(), period)
    first = shift_period(current, period, -(count - 1))
    groups = group_by(records, lambda day: period_start(day, period))
    points = []
    for offset in range(count):
        start = shift_period(first, period, offset)
        key, label = period_key(start, period)
        points.append(PeriodPoint(start, key, label, groups.get(start, 0)))
    return points
