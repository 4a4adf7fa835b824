from datetime import UTC, datetime, timedelta

from climawatch.core.timeutil import utcnow


def test_append_assigns_id_and_created_at(measurement_store, make_measurement) -> None:
    stored = measurement_store.append(make_measurement(temperature=21.5, aqi=3))

    assert stored.id is not None
    assert stored.created_at is not None
    assert stored.temperature == 21.5
    assert stored.aqi == 3
    assert stored.air_quality.components == {"pm2_5": 12.5, "pm10": 20.1}


def test_append_does_not_deduplicate(measurement_store, make_measurement) -> None:
    """Two identical readings are two records."""
    first = measurement_store.append(make_measurement())
    second = measurement_store.append(make_measurement())

    assert first.id != second.id
    start = datetime(2026, 10, 19, tzinfo=UTC)
    assert len(measurement_store.find_in_range("Berlin", start, start + timedelta(days=1))) == 2


def test_find_latest_uses_capture_time(measurement_store, make_measurement) -> None:
    """The latest reading is chosen by capture time, not insertion order."""
    base = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    measurement_store.append(make_measurement(temperature=30.0, captured_at=base))
    measurement_store.append(make_measurement(temperature=10.0, captured_at=base - timedelta(hours=1)))
    measurement_store.append(make_measurement(city="Paris", captured_at=base + timedelta(hours=1)))

    latest = measurement_store.find_latest("Berlin")

    assert latest is not None
    assert latest.temperature == 30.0
    assert latest.captured_at == base


def test_find_latest_unknown_city(measurement_store) -> None:
    assert measurement_store.find_latest("Atlantis") is None


def test_find_in_range_ordering_and_bounds(measurement_store, make_measurement) -> None:
    start = datetime(2026, 10, 19, tzinfo=UTC)
    end = start + timedelta(days=1)
    for hour, temp in [(23, 3.0), (1, 1.0), (12, 2.0)]:
        measurement_store.append(make_measurement(temperature=temp, captured_at=start + timedelta(hours=hour)))
    # Outside the window on both sides
    measurement_store.append(make_measurement(temperature=99.0, captured_at=start - timedelta(seconds=1)))
    measurement_store.append(make_measurement(temperature=99.0, captured_at=end))

    ascending = measurement_store.find_in_range("Berlin", start, end)
    descending = measurement_store.find_in_range("Berlin", start, end, descending=True)

    assert [m.temperature for m in ascending] == [1.0, 2.0, 3.0]
    assert [m.temperature for m in descending] == [3.0, 2.0, 1.0]


def test_find_in_range_accepts_other_timezones(measurement_store, make_measurement) -> None:
    """Bounds in another offset describe the same instants."""
    from datetime import timezone

    measurement_store.append(make_measurement(captured_at=datetime(2026, 10, 19, 12, 0, tzinfo=UTC)))
    plus_two = timezone(timedelta(hours=2))
    start = datetime(2026, 10, 19, 13, 30, tzinfo=plus_two)  # 11:30 UTC
    end = datetime(2026, 10, 19, 14, 30, tzinfo=plus_two)  # 12:30 UTC

    assert len(measurement_store.find_in_range("Berlin", start, end)) == 1


def test_purge_expired(measurement_store, make_measurement) -> None:
    now = utcnow()
    measurement_store.append(make_measurement(temperature=1.0, created_at=now - timedelta(days=8)))
    measurement_store.append(make_measurement(temperature=2.0, created_at=now - timedelta(days=6)))

    assert measurement_store.purge_expired(now) == 1

    latest = measurement_store.find_latest("Berlin")
    assert latest is not None
    assert latest.temperature == 2.0
