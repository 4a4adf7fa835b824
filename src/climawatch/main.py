import signal
import sys
import time
from types import FrameType

import structlog

from climawatch.aggregation import AggregationEngine
from climawatch.client import OpenWeatherClient
from climawatch.config import Settings
from climawatch.core.logging import setup_logging
from climawatch.database import DatabaseHandler
from climawatch.evaluator import ThresholdEvaluator
from climawatch.janitor import RetentionJanitor
from climawatch.measurements import MeasurementStore
from climawatch.notifier import Notifier
from climawatch.pipeline import IngestionPipeline
from climawatch.scheduler import Scheduler
from climawatch.service import WeatherService
from climawatch.summaries import SummaryStore
from climawatch.thresholds import ThresholdStore

logger = structlog.get_logger("ClimaWatch")


def build_scheduler(settings: Settings, db: DatabaseHandler) -> Scheduler:
    """Wire every component from one settings value."""
    measurements = MeasurementStore(db, settings.retention_days)
    summaries = SummaryStore(db, settings.retention_days)
    thresholds = ThresholdStore(db)
    client = OpenWeatherClient(settings)

    aggregator = AggregationEngine(measurements, summaries, settings.zone())
    evaluator = ThresholdEvaluator(
        db, thresholds, measurements, Notifier(settings), settings.breach_limit
    )
    pipeline = IngestionPipeline(settings.cities, client, measurements, aggregator, evaluator)
    janitor = RetentionJanitor(measurements, summaries)
    return Scheduler(settings, pipeline, janitor)


def build_service(settings: Settings, db: DatabaseHandler) -> WeatherService:
    return WeatherService(
        OpenWeatherClient(settings),
        MeasurementStore(db, settings.retention_days),
        SummaryStore(db, settings.retention_days),
        ThresholdStore(db),
        settings.zone(),
    )


def main() -> None:
    settings = Settings.load()
    try:
        setup_logging(settings)
    except Exception as e:
        logger.exception(f"Startup failed: {e}")
        time.sleep(10)
        sys.exit(1)

    db = DatabaseHandler(settings.database_url)
    retries = 10
    while not db.connect():
        retries -= 1
        if retries == 0:
            logger.error("database_unavailable", url=settings.database_url.split("@")[-1])
            sys.exit(1)
        logger.warning("database_not_ready", retries_left=retries)
        time.sleep(5)

    scheduler = build_scheduler(settings, db)

    def signal_handler(signum: int, frame: FrameType | None) -> None:
        logger.info("signal_received", signal=signum, msg="Shutting down gracefully...")
        scheduler.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Initial tick so fresh deployments have data before the first interval elapses
    scheduler.run_tick_now()
    scheduler.run_forever()
    db.dispose()


if __name__ == "__main__":
    main()
