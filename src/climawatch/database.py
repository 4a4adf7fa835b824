import logging
import typing
from contextlib import contextmanager

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from climawatch.core.timeutil import utcnow

logger = logging.getLogger("Database")

Base: typing.Any = declarative_base()


class MeasurementRecord(Base):  # type: ignore
    __tablename__ = "measurements"
    __table_args__ = (Index("ix_measurements_city_captured_at", "city", "captured_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String(100), nullable=False)

    # Weather (Celsius)
    temperature = Column(Float, nullable=False)
    feels_like = Column(Float, nullable=False)
    humidity = Column(Float, nullable=False)
    wind_speed = Column(Float, nullable=False)
    condition = Column(String(50), nullable=False)

    # Embedded air quality, all NULL when no sample was available
    aqi = Column(Integer, nullable=True)
    aqi_components = Column(JSON, nullable=True)
    aqi_lat = Column(Float, nullable=True)
    aqi_lon = Column(Float, nullable=True)
    aqi_sampled_at = Column(DateTime(timezone=True), nullable=True)

    captured_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class DailySummaryRecord(Base):  # type: ignore
    __tablename__ = "daily_summaries"
    __table_args__ = (Index("ix_daily_summaries_city_day", "city", "day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String(100), nullable=False)
    day = Column(Date, nullable=False)

    avg_temp = Column(Float, nullable=False)
    max_temp = Column(Float, nullable=False)
    min_temp = Column(Float, nullable=False)
    avg_humidity = Column(Float, nullable=False)
    avg_wind_speed = Column(Float, nullable=False)
    avg_aqi = Column(Float, nullable=True)
    dominant_condition = Column(String(50), nullable=False)
    sample_count = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class ThresholdRecord(Base):  # type: ignore
    __tablename__ = "thresholds"
    # NULL limits never collide, so a rule only takes part in the axes it sets.
    __table_args__ = (
        UniqueConstraint("city", "temperature_threshold", "email", name="uq_thresholds_city_temp"),
        UniqueConstraint("city", "aqi_threshold", "email", name="uq_thresholds_city_aqi"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String(100), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    temperature_threshold = Column(Float, nullable=True)
    aqi_threshold = Column(Float, nullable=True)
    weather_condition = Column(String(50), nullable=True)

    # Hysteresis state (evaluator only)
    temperature_breach_count = Column(Integer, nullable=False, default=0)
    aqi_breach_count = Column(Integer, nullable=False, default=0)
    alert_triggered = Column(Boolean, nullable=False, default=False)
    last_measurement_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class DatabaseHandler:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.engine: Engine | None = None
        self.Session: sessionmaker[Session] | None = None

    def connect(self) -> bool:
        """Create the engine and the tables. Returns False if the database is unreachable."""
        try:
            connect_args: dict[str, typing.Any] = {}
            if self.db_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False

            self.engine = create_engine(self.db_url, pool_pre_ping=True, connect_args=connect_args)
            Base.metadata.create_all(self.engine)

            self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info("Database connected and initialized.")
            return True
        except Exception as e:
            logger.error(f"Failed to connect/init database: {e}")
            self.Session = None
            return False

    @contextmanager
    def get_session(self) -> typing.Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        if not self.Session:
            if not self.connect():
                raise ConnectionError("Database not connected")

        assert self.Session is not None
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def scope(self, session: Session | None = None) -> typing.Iterator[Session]:
        """Reuse the caller's session if given (no commit/close here), else open a new one."""
        if session is not None:
            yield session
            return
        with self.get_session() as local_sess:
            yield local_sess

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
