import threading
import typing
from collections import defaultdict
from contextlib import contextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError

from climawatch.database import DatabaseHandler, ThresholdRecord
from climawatch.errors import DeliveryError
from climawatch.hysteresis import BREACH_LIMIT, BreachState, Rule, Transition, advance
from climawatch.measurements import MeasurementStore
from climawatch.models import AlertEvent, AlertKind
from climawatch.notifier import Notifier
from climawatch.thresholds import ThresholdStore, to_model

logger = structlog.get_logger("ThresholdEvaluator")


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: defaultdict[int, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, key: int) -> typing.Iterator[None]:
        with self._guard:
            lock = self._locks[key]
        with lock:
            yield


def _write_state(row: ThresholdRecord, state: BreachState) -> None:
    row.temperature_breach_count = state.temperature
    row.aqi_breach_count = state.aqi
    row.alert_triggered = state.alert_triggered
    row.last_measurement_id = state.last_measurement_id


class ThresholdEvaluator:
    """
    Advances every threshold against its city's latest measurement and sends
    the alerts that fall out.

    The read-modify-write of a threshold's counters runs under a per-id lock
    and inside one transaction (row locked with FOR UPDATE where supported),
    so two concurrent evaluations of the same rule are serialized.
    """

    def __init__(
        self,
        db: DatabaseHandler,
        thresholds: ThresholdStore,
        measurements: MeasurementStore,
        notifier: Notifier,
        breach_limit: int = BREACH_LIMIT,
    ) -> None:
        self.db = db
        self.thresholds = thresholds
        self.measurements = measurements
        self.notifier = notifier
        self.breach_limit = breach_limit
        self._locks = KeyedLocks()

    def evaluate_all(self) -> list[AlertEvent]:
        events: list[AlertEvent] = []
        for threshold_id in self.thresholds.list_ids():
            try:
                events.extend(self.evaluate(threshold_id))
            except (SQLAlchemyError, ConnectionError) as e:
                logger.error("threshold_evaluation_failed", threshold_id=threshold_id, error=str(e))
        return events

    def evaluate(self, threshold_id: int) -> list[AlertEvent]:
        """Evaluate one threshold. Notifications go out after the state is committed."""
        with self._locks.hold(threshold_id):
            transition = self._advance(threshold_id)
        if transition is None:
            return []
        return [self._dispatch(event) for event in transition.alerts]

    def _advance(self, threshold_id: int) -> Transition | None:
        with self.db.get_session() as s:
            row = self.thresholds.get_for_update(s, threshold_id)
            if row is None:
                # deleted since list_ids()
                return None

            threshold = to_model(row)
            latest = self.measurements.find_latest(threshold.city, session=s)
            if latest is None:
                logger.debug("no_measurement", threshold_id=threshold_id, city=threshold.city)
                return None

            transition = advance(BreachState.of(threshold), Rule.of(threshold), latest, self.breach_limit)
            _write_state(row, transition.state)
            return transition

    def _dispatch(self, event: AlertEvent) -> AlertEvent:
        if event.kind is AlertKind.TEMP:
            logger.warning(f"ALERT! {event.city} temperature has exceeded threshold: {event.value}°C")
        else:
            logger.warning(f"ALERT! {event.city} AQI has exceeded threshold: {event.value}")

        try:
            self.notifier.send_alert(event)
        except DeliveryError as e:
            logger.error("alert_delivery_failed", threshold_id=event.threshold_id, error=str(e))
            return event
        return event.model_copy(update={"delivered": True})
