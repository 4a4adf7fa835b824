import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from climawatch.measurements import MeasurementStore
from climawatch.summaries import SummaryStore

logger = logging.getLogger("Janitor")


class RetentionJanitor:
    """Removes measurements and summaries that have outlived the retention window."""

    def __init__(self, measurements: MeasurementStore, summaries: SummaryStore) -> None:
        self.measurements = measurements
        self.summaries = summaries

    def purge(self, now: datetime | None = None) -> tuple[int, int]:
        """Returns (measurements_deleted, summaries_deleted)."""
        try:
            measurements_deleted = self.measurements.purge_expired(now)
            summaries_deleted = self.summaries.purge_expired(now)
        except (SQLAlchemyError, ConnectionError) as e:
            logger.error(f"Retention purge failed: {e}")
            return 0, 0

        if measurements_deleted or summaries_deleted:
            logger.info(
                f"Purged {measurements_deleted} measurements and {summaries_deleted} summaries."
            )
        return measurements_deleted, summaries_deleted
