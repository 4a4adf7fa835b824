import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from climawatch.core.timeutil import as_utc
from climawatch.database import DatabaseHandler, ThresholdRecord
from climawatch.errors import DuplicateRuleError, NotFoundError
from climawatch.models import Threshold, ThresholdCreate, ThresholdUpdate

logger = structlog.get_logger("ThresholdStore")


def to_model(row: ThresholdRecord) -> Threshold:
    threshold = Threshold.model_validate(row)
    return threshold.model_copy(
        update={"created_at": as_utc(row.created_at), "updated_at": as_utc(row.updated_at)}
    )


def _duplicate_message(city: str, email: str, temperature: float | None, aqi: float | None) -> str:
    return (
        f'A threshold for city "{city}", temperature "{temperature}", AQI "{aqi}" '
        f'and email "{email}" already exists.'
    )


def _reset_stale_counters(row: ThresholdRecord, changed: set[str]) -> None:
    """Counts built against a limit that has since changed must not carry over."""
    if changed & {"city", "weather_condition"}:
        changed = changed | {"temperature_threshold", "aqi_threshold"}
    if "temperature_threshold" in changed:
        row.temperature_breach_count = 0
    if "aqi_threshold" in changed:
        row.aqi_breach_count = 0


class ThresholdStore:
    """
    CRUD over alert rules.

    Every owner-facing mutation matches on (id, email) so one user can never
    touch another user's rule, whatever the caller above us checked.
    """

    def __init__(self, db: DatabaseHandler) -> None:
        self.db = db

    def create(self, rule: ThresholdCreate) -> Threshold:
        row = ThresholdRecord(**rule.model_dump())
        try:
            with self.db.get_session() as s:
                s.add(row)
                s.flush()
                created = to_model(row)
        except IntegrityError as e:
            raise DuplicateRuleError(
                _duplicate_message(rule.city, rule.email, rule.temperature_threshold, rule.aqi_threshold)
            ) from e

        logger.info("threshold_created", threshold_id=created.id, city=created.city)
        return created

    def list_for_owner(self, email: str) -> list[Threshold]:
        stmt = select(ThresholdRecord).where(ThresholdRecord.email == email).order_by(ThresholdRecord.id)
        with self.db.get_session() as s:
            return [to_model(row) for row in s.execute(stmt).scalars()]

    def list_ids(self) -> list[int]:
        with self.db.get_session() as s:
            return list(s.execute(select(ThresholdRecord.id).order_by(ThresholdRecord.id)).scalars())

    def get(self, threshold_id: int) -> Threshold | None:
        with self.db.get_session() as s:
            row = s.get(ThresholdRecord, threshold_id)
            return to_model(row) if row is not None else None

    def get_for_update(self, session: Session, threshold_id: int) -> ThresholdRecord | None:
        """Load a row inside the caller's transaction, locking it where the backend supports it."""
        stmt = select(ThresholdRecord).where(ThresholdRecord.id == threshold_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def _owned(self, session: Session, threshold_id: int, email: str) -> ThresholdRecord:
        stmt = select(ThresholdRecord).where(
            ThresholdRecord.id == threshold_id, ThresholdRecord.email == email
        )
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"Threshold with ID {threshold_id} not found.")
        return row

    def update(self, threshold_id: int, email: str, changes: ThresholdUpdate) -> Threshold:
        fields = changes.model_dump(exclude_unset=True)
        message = ""
        try:
            with self.db.get_session() as s:
                row = self._owned(s, threshold_id, email)
                changed = {key for key, value in fields.items() if getattr(row, key) != value}
                for key, value in fields.items():
                    setattr(row, key, value)
                ThresholdCreate.model_validate(
                    {
                        "city": row.city,
                        "email": row.email,
                        "temperature_threshold": row.temperature_threshold,
                        "aqi_threshold": row.aqi_threshold,
                        "weather_condition": row.weather_condition,
                    }
                )
                _reset_stale_counters(row, changed)
                message = _duplicate_message(
                    row.city, email, row.temperature_threshold, row.aqi_threshold
                )
                s.flush()
                updated = to_model(row)
        except IntegrityError as e:
            raise DuplicateRuleError(message) from e

        logger.info("threshold_updated", threshold_id=threshold_id, fields=sorted(fields))
        return updated

    def delete(self, threshold_id: int, email: str) -> Threshold:
        with self.db.get_session() as s:
            row = self._owned(s, threshold_id, email)
            deleted = to_model(row)
            s.delete(row)

        logger.info("threshold_deleted", threshold_id=threshold_id)
        return deleted
