"""
Daily aggregation of stored measurements.

The engine never updates an existing summary: every run appends a fresh one and
readers pick the newest per (city, day).
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date, tzinfo
from statistics import fmean

import structlog

from climawatch.core.timeutil import day_bounds, today
from climawatch.errors import NoDataError
from climawatch.measurements import MeasurementStore
from climawatch.models import DailySummary, Measurement
from climawatch.summaries import SummaryStore

logger = structlog.get_logger("Aggregation")


def dominant_condition(conditions: Iterable[str]) -> str:
    """
    Most frequent condition tag.

    Ties go to the condition encountered first: Counter keeps insertion order
    and max() returns the first maximal key.
    """
    counts = Counter(conditions)
    if not counts:
        raise ValueError("no conditions to rank")
    return max(counts, key=lambda c: counts[c])


def summarize(city: str, day: date, measurements: Sequence[Measurement]) -> DailySummary:
    if not measurements:
        raise NoDataError(f"No measurements for {city} on {day.isoformat()}")

    temperatures = [m.temperature for m in measurements]
    aqi_values = [m.aqi for m in measurements if m.aqi is not None]

    return DailySummary(
        city=city,
        day=day,
        avg_temp=fmean(temperatures),
        max_temp=max(temperatures),
        min_temp=min(temperatures),
        avg_humidity=fmean(m.humidity for m in measurements),
        avg_wind_speed=fmean(m.wind_speed for m in measurements),
        avg_aqi=fmean(aqi_values) if aqi_values else None,
        dominant_condition=dominant_condition(m.condition for m in measurements),
        sample_count=len(measurements),
    )


class AggregationEngine:
    def __init__(self, measurements: MeasurementStore, summaries: SummaryStore, zone: tzinfo) -> None:
        self.measurements = measurements
        self.summaries = summaries
        self.zone = zone

    def compute_daily_summary(self, city: str, day: date) -> DailySummary:
        """Aggregate the city's measurements for `day`. Raises NoDataError if there are none."""
        start, end = day_bounds(day, self.zone)
        readings = self.measurements.find_in_range(city, start, end)
        return summarize(city, day, readings)

    def compute_and_store(self, city: str, day: date | None = None) -> DailySummary:
        day = day or today(self.zone)
        summary = self.summaries.append(self.compute_daily_summary(city, day))
        logger.info(
            "daily_summary_saved",
            city=city,
            day=day.isoformat(),
            avg_temp=round(summary.avg_temp, 2),
            avg_humidity=round(summary.avg_humidity, 2),
            avg_wind_speed=round(summary.avg_wind_speed, 2),
            dominant_condition=summary.dominant_condition,
        )
        return summary
