from datetime import date, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from climawatch.core.timeutil import as_utc, utcnow
from climawatch.database import DailySummaryRecord, DatabaseHandler
from climawatch.models import DailySummary

_NEWEST_FIRST = (DailySummaryRecord.created_at.desc(), DailySummaryRecord.id.desc())


def _to_model(row: DailySummaryRecord) -> DailySummary:
    summary = DailySummary.model_validate(row)
    return summary.model_copy(update={"created_at": as_utc(row.created_at)})


def _latest_per_key(rows: list[DailySummaryRecord]) -> list[DailySummary]:
    """Keep the first row seen per (city, day); rows must be sorted newest first within a key."""
    seen: set[tuple[str, date]] = set()
    latest = []
    for row in rows:
        key = (row.city, row.day)
        if key in seen:
            continue
        seen.add(key)
        latest.append(_to_model(row))
    return latest


class SummaryStore:
    """
    Append-only store of daily summaries.

    Several summaries may exist for the same (city, day); readers always take
    the most recently created one.
    """

    def __init__(self, db: DatabaseHandler, retention_days: int = 7) -> None:
        self.db = db
        self.retention = timedelta(days=retention_days)

    def append(self, summary: DailySummary, session: Session | None = None) -> DailySummary:
        row = DailySummaryRecord(
            **summary.model_dump(exclude={"id", "created_at"}),
            created_at=as_utc(summary.created_at) if summary.created_at else utcnow(),
        )
        with self.db.scope(session) as s:
            s.add(row)
            s.flush()
            return _to_model(row)

    def find_latest(self, city: str, day: date) -> DailySummary | None:
        stmt = (
            select(DailySummaryRecord)
            .where(DailySummaryRecord.city == city, DailySummaryRecord.day == day)
            .order_by(*_NEWEST_FIRST)
            .limit(1)
        )
        with self.db.get_session() as s:
            row = s.execute(stmt).scalar_one_or_none()
            return _to_model(row) if row is not None else None

    def find_for_day(self, city: str, day: date) -> list[DailySummary]:
        """Every summary computed for the day, newest first."""
        stmt = (
            select(DailySummaryRecord)
            .where(DailySummaryRecord.city == city, DailySummaryRecord.day == day)
            .order_by(*_NEWEST_FIRST)
        )
        with self.db.get_session() as s:
            return [_to_model(row) for row in s.execute(stmt).scalars()]

    def find_latest_per_day(self, city: str, start: date, end: date) -> list[DailySummary]:
        """Latest summary for each day in [start, end], ascending by day."""
        stmt = (
            select(DailySummaryRecord)
            .where(
                DailySummaryRecord.city == city,
                DailySummaryRecord.day >= start,
                DailySummaryRecord.day <= end,
            )
            .order_by(DailySummaryRecord.day, *_NEWEST_FIRST)
        )
        with self.db.get_session() as s:
            return _latest_per_key(list(s.execute(stmt).scalars()))

    def find_latest_created_since(
        self, since: datetime, city: str | None = None
    ) -> list[DailySummary]:
        """Latest summary per (city, day) among summaries created at or after `since`."""
        stmt = select(DailySummaryRecord).where(DailySummaryRecord.created_at >= as_utc(since))
        if city:
            stmt = stmt.where(DailySummaryRecord.city == city)
        stmt = stmt.order_by(DailySummaryRecord.city, DailySummaryRecord.day, *_NEWEST_FIRST)
        with self.db.get_session() as s:
            return _latest_per_key(list(s.execute(stmt).scalars()))

    def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = as_utc(now or utcnow()) - self.retention
        with self.db.get_session() as s:
            result = s.execute(
                delete(DailySummaryRecord).where(DailySummaryRecord.created_at < cutoff)
            )
            return result.rowcount or 0
