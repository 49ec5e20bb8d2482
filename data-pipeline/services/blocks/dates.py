"""UTC calendar helpers for daily block resolution."""

import re
from datetime import date, datetime, timedelta
from typing import Iterator, Union

import pytz

from .errors import DateRangeValidationError

DateLike = Union[date, datetime]

DATE_FORMAT = "%Y-%m-%d"
DATE_FORMAT_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ONE_DAY = timedelta(days=1)


def to_utc_day(value: DateLike) -> datetime:
    """Normalize a date or datetime to the UTC midnight that starts its day.

    Naive datetimes are taken to be UTC already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        else:
            value = value.astimezone(pytz.utc)
        return value.replace(hour=0, minute=0, second=0, microsecond=0)

    if isinstance(value, date):
        return pytz.utc.localize(datetime(value.year, value.month, value.day))

    raise DateRangeValidationError(
        "Invalid date",
        operation="findBlocksForDateRange",
        context={"Value": repr(value)},
        hint="Pass a datetime.date or datetime.datetime",
    )


def format_date(value: DateLike) -> str:
    return to_utc_day(value).strftime(DATE_FORMAT)


def parse_date(value: str) -> datetime:
    """Parse a zero-padded ``YYYY-MM-DD`` string as a UTC day."""
    if not isinstance(value, str) or not DATE_FORMAT_REGEX.match(value):
        raise DateRangeValidationError(
            f"Invalid date format: {value}",
            operation="parseDate",
            context={"Expected": "YYYY-MM-DD"},
            hint="Use zero-padded YYYY-MM-DD dates",
        )
    try:
        return pytz.utc.localize(datetime.strptime(value, DATE_FORMAT))
    except ValueError as e:
        raise DateRangeValidationError(
            f"Invalid date format: {value}",
            operation="parseDate",
            context={"Expected": "YYYY-MM-DD"},
            hint="Use zero-padded YYYY-MM-DD dates",
            cause=e,
        ) from e


def midnight_start_timestamp(value: DateLike) -> int:
    """Unix timestamp of 00:00:00 UTC on the given day."""
    return int(to_utc_day(value).timestamp())


def next_midnight_timestamp(value: DateLike) -> int:
    """Unix timestamp of 00:00:00 UTC on the following day."""
    return int((to_utc_day(value) + ONE_DAY).timestamp())


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=pytz.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class DateRange:
    """Inclusive sequence of UTC days between two bounds.

    Iterating twice starts over from ``start``; each iterator is lazy and
    single-use.
    """

    def __init__(self, start: DateLike, end: DateLike):
        self.start = to_utc_day(start)
        self.end = to_utc_day(end)

    def __iter__(self) -> Iterator[datetime]:
        current = self.start
        while current <= self.end:
            yield current
            current = current + ONE_DAY

    def __len__(self) -> int:
        if self.end < self.start:
            return 0
        return (self.end - self.start).days + 1

    def __repr__(self) -> str:
        return f"DateRange({format_date(self.start)}, {format_date(self.end)})"
