import typing
from datetime import date, datetime, timedelta, tzinfo

import structlog

from climawatch.client import OpenWeatherClient
from climawatch.core.timeutil import day_bounds, today, utcnow
from climawatch.errors import NoDataError
from climawatch.measurements import MeasurementStore
from climawatch.models import DailySummary, Measurement, Threshold, ThresholdCreate, ThresholdUpdate
from climawatch.summaries import SummaryStore
from climawatch.thresholds import ThresholdStore

logger = structlog.get_logger("WeatherService")


class WeatherService:
    """Management surface for the rest of the system. No pipeline logic lives here."""

    def __init__(
        self,
        client: OpenWeatherClient,
        measurements: MeasurementStore,
        summaries: SummaryStore,
        thresholds: ThresholdStore,
        zone: tzinfo,
    ) -> None:
        self.client = client
        self.measurements = measurements
        self.summaries = summaries
        self.thresholds = thresholds
        self.zone = zone

    # --- Thresholds ---

    def create_threshold(
        self,
        city: str,
        email: str,
        weather_condition: str | None = None,
        temperature_threshold: float | None = None,
        aqi_threshold: float | None = None,
    ) -> Threshold:
        rule = ThresholdCreate(
            city=city,
            email=email,
            weather_condition=weather_condition,
            temperature_threshold=temperature_threshold,
            aqi_threshold=aqi_threshold,
        )
        return self.thresholds.create(rule)

    def list_thresholds(self, email: str) -> list[Threshold]:
        return self.thresholds.list_for_owner(email)

    def update_threshold(self, threshold_id: int, email: str, **fields: typing.Any) -> Threshold:
        return self.thresholds.update(threshold_id, email, ThresholdUpdate(**fields))

    def delete_threshold(self, threshold_id: int, email: str) -> Threshold:
        return self.thresholds.delete(threshold_id, email)

    # --- Summaries & history ---

    def get_daily_summary(self, city: str, day: date | None = None) -> DailySummary:
        day = day or today(self.zone)
        summary = self.summaries.find_latest(city, day)
        if summary is None:
            raise NoDataError(f"No daily summary found for city: {city}")
        return summary

    def get_history(self, city: str, start: date, end: date) -> list[DailySummary]:
        """Latest summary for each day in [start, end]."""
        if start > end:
            raise ValueError("start must not be after end")
        return self.summaries.find_latest_per_day(city, start, end)

    def get_summaries_for_date(self, city: str, day: date) -> list[DailySummary]:
        history = self.summaries.find_for_day(city, day)
        if not history:
            raise NoDataError(
                f"No weather history found for city: {city} on date: {day.isoformat()}."
            )
        return history

    def get_latest_history(self, days: int = 1, city: str | None = None) -> list[DailySummary]:
        since = utcnow() - timedelta(days=days)
        logger.debug("latest_history", city=city or "all", since=since.isoformat())
        return self.summaries.find_latest_created_since(since, city)

    def get_measurements(
        self, city: str, start: datetime | date, end: datetime | date | None = None
    ) -> list[Measurement]:
        """Raw readings, newest first. Plain dates expand to whole calendar days."""
        if not isinstance(start, datetime):
            start = day_bounds(start, self.zone)[0]
        if end is None:
            end = utcnow()
        elif not isinstance(end, datetime):
            end = day_bounds(end, self.zone)[1]
        return self.measurements.find_in_range(city, start, end, descending=True)

    def get_current_weather(self, city: str) -> dict[str, typing.Any]:
        return self.client.get_current_weather(city)
