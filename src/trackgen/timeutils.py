"""Conversions between unix timestamps and the naive-UTC datetimes stored on tracks."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_timestamp(ts: float) -> datetime:
    """Unix seconds -> naive UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def to_timestamp(dt: datetime) -> int:
    """Naive-UTC (or aware) datetime -> unix seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def day_bounds(dt: datetime):
    """Return (start, end) unix seconds of the UTC day containing ``dt``."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    start = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    start_ts = to_timestamp(start)
    return start_ts, start_ts + 86399
