from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from climawatch.core.timeutil import as_utc, utcnow
from climawatch.database import DatabaseHandler, MeasurementRecord
from climawatch.models import AirQuality, Measurement

logger = structlog.get_logger("MeasurementStore")


def _to_model(row: MeasurementRecord) -> Measurement:
    air_quality = None
    if row.aqi is not None:
        air_quality = AirQuality(
            lat=row.aqi_lat,
            lon=row.aqi_lon,
            aqi=row.aqi,
            components=row.aqi_components or {},
            timestamp=as_utc(row.aqi_sampled_at),
        )
    return Measurement(
        id=row.id,
        city=row.city,
        temperature=row.temperature,
        feels_like=row.feels_like,
        humidity=row.humidity,
        wind_speed=row.wind_speed,
        condition=row.condition,
        air_quality=air_quality,
        captured_at=as_utc(row.captured_at),
        created_at=as_utc(row.created_at),
    )


class MeasurementStore:
    """Append-only time series of per-city readings with a bounded retention window."""

    def __init__(self, db: DatabaseHandler, retention_days: int = 7) -> None:
        self.db = db
        self.retention = timedelta(days=retention_days)

    def append(self, measurement: Measurement, session: Session | None = None) -> Measurement:
        """Unconditional insert. Returns the stored measurement with id and created_at set."""
        aq = measurement.air_quality
        row = MeasurementRecord(
            city=measurement.city,
            temperature=measurement.temperature,
            feels_like=measurement.feels_like,
            humidity=measurement.humidity,
            wind_speed=measurement.wind_speed,
            condition=measurement.condition,
            aqi=aq.aqi if aq else None,
            aqi_components=aq.components if aq else None,
            aqi_lat=aq.lat if aq else None,
            aqi_lon=aq.lon if aq else None,
            aqi_sampled_at=as_utc(aq.timestamp) if aq else None,
            captured_at=as_utc(measurement.captured_at),
            created_at=as_utc(measurement.created_at) if measurement.created_at else utcnow(),
        )
        with self.db.scope(session) as s:
            s.add(row)
            s.flush()
            stored = _to_model(row)

        logger.info(
            "measurement_saved",
            city=stored.city,
            temperature=round(stored.temperature, 2),
            aqi=stored.aqi,
        )
        return stored

    def find_latest(self, city: str, session: Session | None = None) -> Measurement | None:
        """Most recent measurement for the city by capture time."""
        stmt = (
            select(MeasurementRecord)
            .where(MeasurementRecord.city == city)
            .order_by(MeasurementRecord.captured_at.desc(), MeasurementRecord.id.desc())
            .limit(1)
        )
        with self.db.scope(session) as s:
            row = s.execute(stmt).scalar_one_or_none()
            return _to_model(row) if row is not None else None

    def find_in_range(
        self,
        city: str,
        start: datetime,
        end: datetime,
        descending: bool = False,
        session: Session | None = None,
    ) -> list[Measurement]:
        """Measurements captured in [start, end), ordered by capture time."""
        order = MeasurementRecord.captured_at.desc() if descending else MeasurementRecord.captured_at
        tiebreak = MeasurementRecord.id.desc() if descending else MeasurementRecord.id
        stmt = (
            select(MeasurementRecord)
            .where(
                MeasurementRecord.city == city,
                MeasurementRecord.captured_at >= as_utc(start),
                MeasurementRecord.captured_at < as_utc(end),
            )
            .order_by(order, tiebreak)
        )
        with self.db.scope(session) as s:
            return [_to_model(row) for row in s.execute(stmt).scalars()]

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete measurements created before the retention window. Returns the row count."""
        cutoff = as_utc(now or utcnow()) - self.retention
        with self.db.get_session() as s:
            result = s.execute(delete(MeasurementRecord).where(MeasurementRecord.created_at < cutoff))
            return result.rowcount or 0
