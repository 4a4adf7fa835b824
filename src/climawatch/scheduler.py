import time
import typing

import schedule
import structlog

from climawatch.config import Settings
from climawatch.janitor import RetentionJanitor
from climawatch.pipeline import IngestionPipeline

logger = structlog.get_logger("Scheduler")


class Scheduler:
    """
    Owns the timers: the pipeline tick every `fetch_interval_minutes`, the retention
    janitor hourly, and an optional daily job at `daily_job_time`.

    Jobs run one at a time on the loop thread, so ticks can never overlap.
    The pipeline can also be driven directly (run_tick) without waiting on the clock.
    """

    def __init__(
        self,
        settings: Settings,
        pipeline: IngestionPipeline,
        janitor: RetentionJanitor,
        daily_job: typing.Callable[[], typing.Any] | None = None,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self.janitor = janitor
        self.daily_job = daily_job
        self.running = False
        self._schedule = schedule.Scheduler()
        self._register()

    def _register(self) -> None:
        self._schedule.every(self.settings.fetch_interval_minutes).minutes.do(
            self._run_job, "tick", self.pipeline.run_tick
        ).tag("tick")
        self._schedule.every(1).hours.do(self._run_job, "retention", self.janitor.purge).tag(
            "retention"
        )
        if self.daily_job is not None:
            self._schedule.every().day.at(self.settings.daily_job_time).do(
                self._run_job, "daily", self.daily_job
            ).tag("daily")

    @property
    def jobs(self) -> list[schedule.Job]:
        return list(self._schedule.jobs)

    def _run_job(self, name: str, job: typing.Callable[[], typing.Any]) -> None:
        try:
            job()
        except Exception:
            # Keep the loop alive; the next trigger retries.
            logger.exception("job_failed", job=name)

    def run_tick_now(self) -> None:
        self._run_job("tick", self.pipeline.run_tick)

    def run_pending(self) -> None:
        self._schedule.run_pending()

    def run_all(self) -> None:
        """Run every registered job now, regardless of its schedule."""
        self._schedule.run_all()

    def run_forever(
        self, poll_seconds: float = 1.0, sleep: typing.Callable[[float], None] = time.sleep
    ) -> None:
        self.running = True
        logger.info(
            "scheduler_started",
            interval_minutes=self.settings.fetch_interval_minutes,
            jobs=len(self._schedule.jobs),
        )
        while self.running:
            self.run_pending()
            sleep(poll_seconds)
        logger.info("scheduler_stopped")

    def stop(self) -> None:
        self.running = False
