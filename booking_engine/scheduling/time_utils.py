"""Wall-clock helpers shared by the scheduling components.

Times are ``HH:MM`` strings on a 24 hour clock. The engine runs in a single
reference timezone (``SCHEDULER_TIMEZONE``, or the host timezone when unset);
aware datetimes are converted to it before their calendar date is taken.
"""

import re
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking_engine.core import config
from booking_engine.scheduling.errors import ParseError

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def reference_timezone() -> ZoneInfo | None:
    if not config.SCHEDULER_TIMEZONE:
        return None
    try:
        return ZoneInfo(config.SCHEDULER_TIMEZONE)
    except ZoneInfoNotFoundError as exc:
        raise ParseError(f'Unknown timezone {config.SCHEDULER_TIMEZONE!r}.') from exc


def reference_today() -> date:
    tz = reference_timezone()
    if tz is None:
        return date.today()
    return datetime.now(tz).date()


def to_minutes(value: str | time) -> int:
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise ParseError(f'Expected an HH:MM string, got {type(value).__name__}.')

    match = _TIME_PATTERN.match(value.strip())
    if match is None:
        raise ParseError(f'Malformed time {value!r}; expected HH:MM.')

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours >= 24 or minutes >= 60:
        raise ParseError(f'Time {value!r} is out of range.')

    return hours * 60 + minutes


def format_minutes(total_minutes: int) -> str:
    total_minutes %= MINUTES_PER_DAY
    return f'{total_minutes // 60:02d}:{total_minutes % 60:02d}'


def add_minutes(value: str | time, minutes: int) -> str:
    return format_minutes(to_minutes(value) + minutes)


def to_local_date(value: date | datetime | str) -> date:
    """Return the calendar date of ``value`` in the reference timezone."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ParseError(f'Malformed date {value!r}.') from exc

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            tz = reference_timezone()
            value = value.astimezone(tz) if tz is not None else value.astimezone()
        return value.date()

    if isinstance(value, date):
        return value

    raise ParseError(f'Expected a date, got {type(value).__name__}.')


def same_day(a: date | datetime | str, b: date | datetime | str) -> bool:
    return to_local_date(a) == to_local_date(b)


def is_past(value: date | datetime | str, today: date | None = None) -> bool:
    if today is None:
        today = reference_today()
    return to_local_date(value) < today
