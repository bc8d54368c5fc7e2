"""Date policy for historical weather requests."""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional, Union

from weathercache.errors import DateRange, data_unavailable_error, date_validation_error

DateLike = Union[date, datetime, str]

MAX_RANGE_DAYS = 31


def to_calendar_date(value: DateLike) -> date:
    """Reduce a date, datetime or ISO string to a calendar day.

    Timezone-aware datetimes are converted to UTC first, so the same instant
    always maps to the same day.

    Examples:
        >>> to_calendar_date("2023-01-01T23:30:00")
        datetime.date(2023, 1, 1)
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected date, datetime or ISO string, got {type(value).__name__}")


def _today(today: Optional[DateLike]) -> date:
    if today is None:
        return datetime.now(timezone.utc).date()
    return to_calendar_date(today)


def _one_year_before(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        # Feb 29
        return day.replace(year=day.year - 1, day=28)


def validate_historical_date(value: DateLike, today: Optional[DateLike] = None) -> date:
    """Check a requested day against the provider's history window.

    Returns:
        The calendar day

    Raises:
        HistoricalWeatherError: date validation error for future days, data
            unavailable error (with the available range) for days older than
            one year
    """
    day = to_calendar_date(value)
    current = _today(today)
    if day > current:
        raise date_validation_error("Cannot fetch weather data for future dates")

    earliest = _one_year_before(current)
    if day < earliest:
        raise data_unavailable_error(
            "Historical data is only available for the past year",
            available_range=DateRange(earliest, current),
        )
    return day


def is_valid_date_range(
    start: DateLike, end: DateLike, today: Optional[DateLike] = None
) -> bool:
    """True if ``start <= end`` and ``start`` is not in the future."""
    try:
        first = to_calendar_date(start)
        last = to_calendar_date(end)
    except (TypeError, ValueError):
        return False
    return first <= last and first <= _today(today)


def check_date_range(
    start: DateLike,
    end: DateLike,
    max_days: int = MAX_RANGE_DAYS,
    today: Optional[DateLike] = None,
) -> DateRange:
    """Validate a multi-day request.

    Raises:
        HistoricalWeatherError: date validation error for inverted ranges,
            future starts, or spans longer than ``max_days``
    """
    first = to_calendar_date(start)
    last = to_calendar_date(end)
    if first > last:
        raise date_validation_error("Start date must be before end date")
    if first > _today(today):
        raise date_validation_error("Start date cannot be in the future")
    if (last - first).days > max_days:
        raise date_validation_error(
            f"Date range too large. Maximum {max_days} days allowed."
        )
    return DateRange(first, last)


def iter_dates(start: DateLike, end: DateLike) -> Iterator[date]:
    """Yield every calendar day from ``start`` to ``end`` inclusive."""
    day = to_calendar_date(start)
    last = to_calendar_date(end)
    while day <= last:
        yield day
        day += timedelta(days=1)
