import pytest
from climawatch.database import ThresholdRecord
from climawatch.errors import DuplicateRuleError, NotFoundError
from climawatch.models import ThresholdCreate, ThresholdUpdate
from pydantic import ValidationError

OWNER = "owner@example.com"
OTHER = "intruder@example.com"


def rule(**kwargs) -> ThresholdCreate:
    kwargs.setdefault("city", "Berlin")
    kwargs.setdefault("email", OWNER)
    return ThresholdCreate(**kwargs)


def test_create_defaults(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))

    assert created.id is not None
    assert created.temperature_threshold == 25
    assert created.temperature_breach_count == 0
    assert created.aqi_breach_count == 0
    assert created.alert_triggered is False
    assert created.last_measurement_id is None


def test_create_requires_a_criterion() -> None:
    with pytest.raises(ValidationError):
        rule()


def test_create_rejects_bad_email() -> None:
    with pytest.raises(ValidationError):
        rule(email="not-an-email", temperature_threshold=25)


def test_duplicate_temperature_rule_rejected(threshold_store) -> None:
    threshold_store.create(rule(temperature_threshold=25))

    with pytest.raises(DuplicateRuleError):
        threshold_store.create(rule(temperature_threshold=25))


def test_unset_aqi_does_not_collide(threshold_store) -> None:
    """Two rules without an AQI limit only differ in temperature: both are allowed."""
    threshold_store.create(rule(temperature_threshold=25))
    second = threshold_store.create(rule(temperature_threshold=30))

    assert second.temperature_threshold == 30
    assert len(threshold_store.list_for_owner(OWNER)) == 2


def test_duplicate_aqi_rule_rejected_even_with_other_temperature(threshold_store) -> None:
    threshold_store.create(rule(temperature_threshold=25, aqi_threshold=3))

    with pytest.raises(DuplicateRuleError):
        threshold_store.create(rule(temperature_threshold=30, aqi_threshold=3))


def test_same_limits_for_other_owner_or_city(threshold_store) -> None:
    threshold_store.create(rule(temperature_threshold=25, aqi_threshold=3))
    threshold_store.create(rule(email=OTHER, temperature_threshold=25, aqi_threshold=3))
    threshold_store.create(rule(city="Paris", temperature_threshold=25, aqi_threshold=3))

    assert len(threshold_store.list_ids()) == 3


def test_list_is_scoped_to_owner(threshold_store) -> None:
    threshold_store.create(rule(temperature_threshold=25))
    threshold_store.create(rule(email=OTHER, temperature_threshold=25))

    owned = threshold_store.list_for_owner(OWNER)

    assert [t.email for t in owned] == [OWNER]


def test_update_only_touches_given_fields(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25, weather_condition="Rain"))

    updated = threshold_store.update(created.id, OWNER, ThresholdUpdate(aqi_threshold=4))

    assert updated.aqi_threshold == 4
    assert updated.temperature_threshold == 25
    assert updated.weather_condition == "Rain"


def test_update_can_clear_a_limit(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25, aqi_threshold=3))

    updated = threshold_store.update(created.id, OWNER, ThresholdUpdate(temperature_threshold=None))

    assert updated.temperature_threshold is None
    assert updated.aqi_threshold == 3


def test_update_by_other_owner_is_not_found(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))

    with pytest.raises(NotFoundError):
        threshold_store.update(created.id, OTHER, ThresholdUpdate(temperature_threshold=99))

    assert threshold_store.get(created.id).temperature_threshold == 25


def test_update_missing_id(threshold_store) -> None:
    with pytest.raises(NotFoundError):
        threshold_store.update(12345, OWNER, ThresholdUpdate(temperature_threshold=1))


def test_update_into_duplicate(threshold_store) -> None:
    threshold_store.create(rule(temperature_threshold=25))
    other = threshold_store.create(rule(temperature_threshold=30))

    with pytest.raises(DuplicateRuleError):
        threshold_store.update(other.id, OWNER, ThresholdUpdate(temperature_threshold=25))

    assert threshold_store.get(other.id).temperature_threshold == 30


def test_delete_by_owner(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))

    deleted = threshold_store.delete(created.id, OWNER)

    assert deleted.id == created.id
    assert threshold_store.get(created.id) is None


def test_delete_by_other_owner_is_not_found(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))

    with pytest.raises(NotFoundError):
        threshold_store.delete(created.id, OTHER)

    assert threshold_store.get(created.id) is not None


def test_create_rejects_condition_only_rule() -> None:
    with pytest.raises(ValidationError):
        rule(weather_condition="Rain")


def test_update_cannot_null_city(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))

    with pytest.raises(ValidationError):
        threshold_store.update(created.id, OWNER, ThresholdUpdate(city=None))

    assert threshold_store.get(created.id).city == "Berlin"


def test_update_cannot_clear_last_limit(threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25, weather_condition="Rain"))

    with pytest.raises(ValidationError):
        threshold_store.update(created.id, OWNER, ThresholdUpdate(temperature_threshold=None))

    assert threshold_store.get(created.id).temperature_threshold == 25


def _set_counts(db, threshold_id: int, temperature: int, aqi: int) -> None:
    with db.get_session() as s:
        row = s.get(ThresholdRecord, threshold_id)
        row.temperature_breach_count = temperature
        row.aqi_breach_count = aqi


def test_changed_limit_resets_its_counter(db, threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25, aqi_threshold=3))
    _set_counts(db, created.id, temperature=1, aqi=1)

    updated = threshold_store.update(created.id, OWNER, ThresholdUpdate(temperature_threshold=35))

    assert updated.temperature_breach_count == 0
    assert updated.aqi_breach_count == 1


def test_unchanged_limit_keeps_counter(db, threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25))
    _set_counts(db, created.id, temperature=1, aqi=0)

    updated = threshold_store.update(created.id, OWNER, ThresholdUpdate(temperature_threshold=25))

    assert updated.temperature_breach_count == 1


def test_changed_condition_resets_all_counters(db, threshold_store) -> None:
    created = threshold_store.create(rule(temperature_threshold=25, aqi_threshold=3))
    _set_counts(db, created.id, temperature=1, aqi=1)

    updated = threshold_store.update(created.id, OWNER, ThresholdUpdate(weather_condition="Snow"))

    assert (updated.temperature_breach_count, updated.aqi_breach_count) == (0, 0)
