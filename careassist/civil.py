"""Civil (wall-clock) time helpers.

Exchange timestamps are stored as naive local times. Every day-boundary
decision uses the stored value as-is; only "now" is derived from the clinic
timezone, and it is made naive immediately so both sides compare like for like.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from careassist.config import CLINIC_TIMEZONE

UNKNOWN_DATE = "Unknown Date"

CivilValue = Union[datetime, date, str, None]


def civil_now(tz_name: Optional[str] = None) -> datetime:
    """Current wall-clock time in the clinic timezone, without tzinfo."""
    tz = ZoneInfo(tz_name or CLINIC_TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None)


def civil_today(tz_name: Optional[str] = None) -> date:
    return civil_now(tz_name).date()


def utc_now() -> datetime:
    """Naive UTC for audit columns (``created_at``/``updated_at``)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_civil(value: CivilValue) -> Optional[datetime]:
    """Read a stored timestamp as civil time.

    Offsets are dropped, not applied: ``2024-05-01T23:30:00+00:00`` stays at
    23:30 on May 1st. Empty values give ``None``; anything else that is not an
    ISO timestamp raises ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)

    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1]
    return datetime.fromisoformat(text).replace(tzinfo=None)


def to_civil_date(value: CivilValue) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_civil(value)
    return parsed.date() if parsed else None


def civil_date_key(value: CivilValue) -> str:
    """``YYYY-MM-DD`` of a record timestamp, or ``Unknown Date``."""
    try:
        day = to_civil_date(value)
    except ValueError:
        return UNKNOWN_DATE
    return day.isoformat() if day else UNKNOWN_DATE


def day_bounds(day: date) -> tuple:
    """First and last instant of a civil day (inclusive)."""
    start = datetime.combine(day, time.min)
    return start, datetime.combine(day, time.max)


def window_start(window_days: int, now: Optional[datetime] = None) -> datetime:
    """Civil midnight ``window_days`` days before ``now``."""
    now = parse_civil(now) if now is not None else civil_now()
    return datetime.combine(now.date() - timedelta(days=window_days), time.min)


def default_entry_timestamp(now: Optional[datetime] = None) -> str:
    """Minute-precision ``YYYY-MM-DDTHH:MM`` for a new entry form."""
    now = now or civil_now()
    return now.strftime("%Y-%m-%dT%H:%M")


def normalize_entry_timestamp(text: str) -> str:
    # datetime-local inputs omit seconds
    text = text.strip()
    return text + ":00" if len(text) == 16 else text


def format_clock(value: CivilValue) -> str:
    """``HH:MM`` straight from the civil timestamp, ``-`` when absent."""
    try:
        parsed = parse_civil(value)
    except ValueError:
        return "-"
    return parsed.strftime("%H:%M") if parsed else "-"


def format_clock_12h(value: CivilValue) -> str:
    try:
        parsed = parse_civil(value)
    except ValueError:
        return "--"
    if parsed is None:
        return "--"
    period = "PM" if parsed.hour >= 12 else "AM"
    hour = parsed.hour % 12 or 12
    return f"{hour}:{parsed.minute:02d} {period}"


def short_date_label(value: CivilValue) -> str:
    """Chart label such as ``19 Oct``."""
    day = to_civil_date(value)
    return f"{day.day} {day.strftime('%b')}"
