import threading
from dataclasses import dataclass, field
from datetime import date

import structlog
from sqlalchemy.exc import SQLAlchemyError

from climawatch.aggregation import AggregationEngine
from climawatch.client import OpenWeatherClient
from climawatch.config import CityCoords
from climawatch.core.timeutil import today
from climawatch.errors import NoDataError, UpstreamError
from climawatch.evaluator import ThresholdEvaluator
from climawatch.measurements import MeasurementStore
from climawatch.models import AlertEvent, DailySummary, Measurement

logger = structlog.get_logger("Pipeline")


@dataclass
class TickReport:
    day: date
    stored: list[Measurement] = field(default_factory=list)
    failed_cities: list[str] = field(default_factory=list)
    summaries: list[DailySummary] = field(default_factory=list)
    alerts: list[AlertEvent] = field(default_factory=list)


class IngestionPipeline:
    """
    One tick: fetch every city -> store -> aggregate every city -> evaluate every threshold.

    Phases run in order, so aggregation only sees measurements whose ingestion
    already finished. A trigger that arrives while a tick is running is skipped.
    """

    def __init__(
        self,
        cities: dict[str, CityCoords],
        client: OpenWeatherClient,
        measurements: MeasurementStore,
        aggregator: AggregationEngine,
        evaluator: ThresholdEvaluator,
    ) -> None:
        self.cities = cities
        self.client = client
        self.measurements = measurements
        self.aggregator = aggregator
        self.evaluator = evaluator
        self._running = threading.Lock()

    def run_tick(self) -> TickReport | None:
        if not self._running.acquire(blocking=False):
            logger.warning("tick_skipped", reason="previous tick still running")
            return None
        try:
            logger.info("tick_started", cities=len(self.cities))
            report = TickReport(day=today(self.aggregator.zone))
            self.ingest_all(report)
            self.aggregate_all(report)
            try:
                report.alerts = self.evaluator.evaluate_all()
            except (SQLAlchemyError, ConnectionError) as e:
                logger.error("evaluation_failed", error=str(e))
            logger.info(
                "tick_finished",
                stored=len(report.stored),
                failed=report.failed_cities,
                summaries=len(report.summaries),
                alerts=len(report.alerts),
            )
            return report
        finally:
            self._running.release()

    def ingest_city(self, city: str, coords: CityCoords) -> Measurement:
        air_quality = self.client.fetch_air_quality(coords.lat, coords.lon)
        reading = self.client.fetch_weather(city)
        return self.measurements.append(Measurement.from_reading(reading, air_quality))

    def ingest_all(self, report: TickReport) -> None:
        for city, coords in self.cities.items():
            try:
                report.stored.append(self.ingest_city(city, coords))
            except UpstreamError as e:
                logger.error("fetch_failed", city=city, error=str(e))
                report.failed_cities.append(city)
            except (SQLAlchemyError, ConnectionError) as e:
                logger.error("store_failed", city=city, error=str(e))
                report.failed_cities.append(city)

    def aggregate_all(self, report: TickReport) -> None:
        for city in self.cities:
            try:
                report.summaries.append(self.aggregator.compute_and_store(city, report.day))
            except NoDataError:
                logger.warning("no_data_for_summary", city=city, day=report.day.isoformat())
            except (SQLAlchemyError, ConnectionError) as e:
                logger.error("summary_failed", city=city, error=str(e))
