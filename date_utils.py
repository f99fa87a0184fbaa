# date_utils.py

from datetime import date, datetime, timedelta
import calendar

from errors import ValidationError

DATE_FORMAT = '%Y-%m-%d'


def format_date_iso(d):
    if not isinstance(d, date): return ''
    return d.strftime(DATE_FORMAT)


def parse_date_key(date_key):
    """Parses a 'YYYY-MM-DD' key, raising ValidationError on anything else."""
    try:
        return datetime.strptime(str(date_key), DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{date_key}', expected YYYY-MM-DD.")


def format_month_year(d):
    if not isinstance(d, date): return ''
    return f"{d.year}年{d.month}月"


def is_same_day(d1, d2):
    if not d1 or not d2: return False
    return (d1.year, d1.month, d1.day) == (d2.year, d2.month, d2.day)


def date_in_range(date_key, start_date, end_date):
    # ISO date strings order lexicographically; a missing bound never matches.
    if not start_date or not end_date: return False
    return start_date <= date_key <= end_date


def month_bounds(year, month):
    prefix = f"{year:04d}-{month:02d}"
    return f"{prefix}-01", f"{prefix}-31"


def generate_calendar_dates(year, month):
    """Returns the 42 cells of a Sunday-first month grid."""
    if not 1 <= month <= 12: raise ValidationError("Month must be between 1 and 12.")
    first_day = date(year, month, 1)
    start_weekday = (first_day.weekday() + 1) % 7  # 0 = Sunday
    days_in_month = calendar.monthrange(year, month)[1]
    dates = []
    for i in range(start_weekday, 0, -1):
        dates.append({"date": first_day - timedelta(days=i), "isCurrentMonth": False, "isPrevMonth": True})
    for day in range(1, days_in_month + 1):
        dates.append({"date": date(year, month, day), "isCurrentMonth": True, "isPrevMonth": False})
    d = date(year, month, days_in_month)
    while len(dates) < 42:
        d += timedelta(days=1)
        dates.append({"date": d, "isCurrentMonth": False, "isPrevMonth": False})
    return dates
