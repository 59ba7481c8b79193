from datetime import datetime, timezone, timedelta
from typing import Optional

FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def to_iso(dt: datetime) -> str:
    """
    UTC timestamp like '2025-11-06T09:12:34.123456Z'.
    Always carries microseconds so string order matches time order.
    """
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_in_utc_from_seconds_from_now(seconds: int, now: Optional[datetime] = None) -> str:
    """
    Return UTC ISO time `seconds` after `now` (default: current time).
    Offsets past the end of the calendar clamp to FAR_FUTURE.
    """
    base = now if now is not None else utcnow()
    try:
        return to_iso(base + timedelta(seconds=seconds))
    except OverflowError:
        return to_iso(FAR_FUTURE)
