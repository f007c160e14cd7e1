"""
Time rules and duration service.
Handles timezone conversions, session durations and DST detection.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional
import pytz

IN_PROGRESS = "in progress"


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def local_to_utc(local_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive)
        timezone_str: Timezone string (e.g., "America/New_York")

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (naive values are taken as UTC)
        timezone_str: Timezone string (e.g., "America/New_York")

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str)
    return ensure_utc(utc_datetime).astimezone(tz)


def combine_date_time(date_val: date, time_val: time, timezone_str: str) -> datetime:
    """Combine a local date and wall-clock time into a UTC datetime."""
    return local_to_utc(datetime.combine(date_val, time_val), timezone_str)


def minutes_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60


def duration_minutes(
    clock_in_time: datetime,
    clock_out_time: Optional[datetime],
    break_minutes: float = 0,
) -> Optional[float]:
    """
    Worked minutes for a session: clock-out minus clock-in minus breaks, never negative.

    Returns None while the session has no clock-out, so an open session is never
    mistaken for a closed one that lasted zero minutes.
    """
    if clock_out_time is None:
        return None
    worked = minutes_between(clock_in_time, clock_out_time) - float(break_minutes or 0)
    return max(0.0, worked)


def describe_duration(minutes: Optional[float]) -> str:
    if minutes is None:
        return IN_PROGRESS
    hours, mins = divmod(int(round(minutes)), 60)
    return f"{hours}h {mins:02d}m"


def spans_dst_transition(start: datetime, end: Optional[datetime], timezone_str: str) -> bool:
    """True when the UTC offset of timezone_str differs between start and end."""
    if end is None:
        return False
    tz = pytz.timezone(timezone_str)
    start_local = ensure_utc(start).astimezone(tz)
    end_local = ensure_utc(end).astimezone(tz)
    return start_local.utcoffset() != end_local.utcoffset()


def day_bounds_utc(start_date: date, end_date: date, timezone_str: str):
    """UTC [start, end) covering the local calendar days start_date..end_date inclusive."""
    start = combine_date_time(start_date, time.min, timezone_str)
    end = combine_date_time(end_date + timedelta(days=1), time.min, timezone_str)
    return start, end


def local_date(dt: datetime, timezone_str: str) -> date:
    return utc_to_local(dt, timezone_str).date()


def worked_hours(
    clock_in_time: datetime,
    clock_out_time: Optional[datetime],
    break_minutes: float = 0,
    corrected_hours: Optional[float] = None,
) -> Optional[float]:
    """Hours that count for pay: an admin correction wins over the clocked duration."""
    if clock_out_time is None:
        return None
    if corrected_hours is not None:
        return float(corrected_hours)
    return duration_minutes(clock_in_time, clock_out_time, break_minutes) / 60
