"""Calendar helpers shared by the snapshot and health pipelines.

All timestamps are naive local datetimes, the same way they are stored.
Anything timezone-aware coming in from the outside is converted to local
time first so that day boundaries line up everywhere.
"""

from datetime import date, datetime, time, timedelta


def to_local(ts: datetime) -> datetime:
    """Drop tzinfo after converting an aware datetime to local time."""
    if ts.tzinfo is not None:
        return ts.astimezone().replace(tzinfo=None)
    return ts


def day_floor(ts: datetime | date) -> datetime:
    """Truncate a timestamp (or date) to midnight of its calendar day."""
    if isinstance(ts, datetime):
        return datetime.combine(to_local(ts).date(), time.min)
    return datetime.combine(ts, time.min)


def end_of_tomorrow(now: datetime) -> datetime:
    return day_floor(now) + timedelta(days=2) - timedelta(microseconds=1)


def iter_days(start: datetime | date, end: datetime | date):
    """Yield every midnight from day_floor(start) to day_floor(end), inclusive."""
    current = day_floor(start)
    last = day_floor(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def parse_timestamp(val: str | None) -> datetime | None:
    if val is None or val == "":
        return None
    # fromisoformat only accepts a trailing Z from Python 3.11 on
    if val.endswith(("Z", "z")):
        val = val[:-1] + "+00:00"
    return to_local(datetime.fromisoformat(val))


def format_timestamp(ts: datetime) -> str:
    return to_local(ts).isoformat(sep=" ", timespec="seconds")


def parse_day(val: str) -> datetime:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into its day-floor."""
    if not val:
        raise ValueError("empty date")
    return day_floor(parse_timestamp(val))
