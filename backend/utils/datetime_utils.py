from datetime import datetime, date, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_since(earlier: datetime | date, now: datetime | None = None) -> int:
    """Whole days elapsed between ``earlier`` and ``now`` (floored, never negative)."""
    current = as_naive_utc(now) if now is not None else utcnow()
    if isinstance(earlier, datetime):
        delta = current - as_naive_utc(earlier)
        return max(int(delta.total_seconds() // 86400), 0)
    return max((current.date() - earlier).days, 0)
