from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Union

DateLike = Union[date, datetime]


def local_zone() -> tzinfo:
    """Zone the host is running in."""
    return datetime.now().astimezone().tzinfo


def _zone(tz: Optional[tzinfo]) -> tzinfo:
    return tz if tz is not None else local_zone()


def date_key(when: DateLike, tz: Optional[tzinfo] = None) -> date:
    """Calendar day `when` falls on in the given zone.

    Aware datetimes are converted into `tz` first; naive datetimes are taken
    as already being local to `tz`; plain dates pass through untouched.
    """
    if isinstance(when, datetime):
        if when.tzinfo is not None:
            when = when.astimezone(_zone(tz))
        return when.date()
    return when


def start_of_day(when: DateLike, tz: Optional[tzinfo] = None) -> datetime:
    """Midnight at the start of `when`'s calendar day, as an aware datetime."""
    return datetime.combine(date_key(when, tz), time(0, 0), tzinfo=_zone(tz))


def days_between(a: DateLike, b: DateLike, tz: Optional[tzinfo] = None) -> int:
    """Signed number of whole calendar days from `a` to `b`."""
    return (date_key(b, tz) - date_key(a, tz)).days


def add_days(day: date, count: int) -> date:
    try:
        return day + timedelta(days=count)
    except OverflowError:
        return day


def day_number(when: DateLike, start: DateLike, tz: Optional[tzinfo] = None) -> int:
    """1-indexed day of the program; dates before the start map to day 1."""
    return max(1, days_between(start, when, tz) + 1)


def strict_target(number: int) -> int:
    return max(1, number)


def start_of_year(when: DateLike, tz: Optional[tzinfo] = None) -> datetime:
    """Jan 1 00:00 of `when`'s year in the same zone."""
    day = date_key(when, tz)
    return datetime(day.year, 1, 1, tzinfo=_zone(tz))
