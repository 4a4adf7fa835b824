from datetime import UTC, date, datetime, time, timedelta, tzinfo


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """Return the half-open UTC interval [start, next_start) covering `day` in `zone`."""
    start = datetime.combine(day, time.min, tzinfo=zone)
    next_start = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(UTC), next_start.astimezone(UTC)


def today(zone: tzinfo, now: datetime | None = None) -> date:
    return (now or utcnow()).astimezone(zone).date()
