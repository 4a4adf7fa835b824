import os
import sys
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

# Add src to pythonpath
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from climawatch.config import CityCoords, Settings  # noqa: E402
from climawatch.database import DatabaseHandler  # noqa: E402
from climawatch.measurements import MeasurementStore  # noqa: E402
from climawatch.models import AirQuality, Measurement  # noqa: E402
from climawatch.notifier import Notifier  # noqa: E402
from climawatch.summaries import SummaryStore  # noqa: E402
from climawatch.thresholds import ThresholdStore  # noqa: E402

DAY_NOON = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file and a fake provider."""
    return Settings(
        database_url_override=f"sqlite:///{tmp_path / 'climawatch.db'}",
        openweather_api_key="test-key",
        openweather_api_url="https://owm.test/data/2.5",
        cities={
            "Berlin": CityCoords(lat=52.52, lon=13.40),
            "Paris": CityCoords(lat=48.85, lon=2.35),
        },
        log_file=str(tmp_path / "logs" / "climawatch.log"),
        config_path=str(tmp_path / "missing.json"),
        smtp_user="alerts@example.com",
        smtp_password="secret",
    )


@pytest.fixture
def db(settings: Settings) -> Generator[DatabaseHandler, None, None]:
    handler = DatabaseHandler(settings.database_url)
    assert handler.connect() is True
    yield handler
    handler.dispose()


@pytest.fixture
def measurement_store(db: DatabaseHandler) -> MeasurementStore:
    return MeasurementStore(db, retention_days=7)


@pytest.fixture
def summary_store(db: DatabaseHandler) -> SummaryStore:
    return SummaryStore(db, retention_days=7)


@pytest.fixture
def threshold_store(db: DatabaseHandler) -> ThresholdStore:
    return ThresholdStore(db)


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Notifier that always succeeds."""
    return MagicMock(spec=Notifier)


@pytest.fixture
def make_measurement() -> Callable[..., Measurement]:
    """Factory for measurements; unspecified fields get plain defaults."""

    def _make(
        city: str = "Berlin",
        temperature: float = 20.0,
        condition: str = "Clear",
        aqi: int | None = None,
        captured_at: datetime = DAY_NOON,
        humidity: float = 50.0,
        wind_speed: float = 3.0,
        measurement_id: int | None = None,
        created_at: datetime | None = None,
    ) -> Measurement:
        air_quality = None
        if aqi is not None:
            air_quality = AirQuality(
                lat=52.52,
                lon=13.40,
                aqi=aqi,
                components={"pm2_5": 12.5, "pm10": 20.1},
                timestamp=captured_at,
            )
        return Measurement(
            id=measurement_id,
            city=city,
            temperature=temperature,
            feels_like=temperature - 1.0,
            humidity=humidity,
            wind_speed=wind_speed,
            condition=condition,
            air_quality=air_quality,
            captured_at=captured_at,
            created_at=created_at,
        )

    return _make


@pytest.fixture
def weather_payload() -> Callable[..., dict]:
    """OpenWeatherMap /weather response (Kelvin)."""

    def _payload(temp_k: float = 300.0, condition: str = "Clear", dt: int = 1792411200) -> dict:
        return {
            "main": {"temp": temp_k, "feels_like": temp_k - 1.0, "humidity": 65},
            "wind": {"speed": 3.5},
            "weather": [{"main": condition, "description": condition.lower()}],
            "dt": dt,
            "name": "Berlin",
        }

    return _payload


@pytest.fixture
def air_payload() -> Callable[..., dict]:
    """OpenWeatherMap /air_pollution response."""

    def _payload(aqi: int = 2, dt: int = 1792411200) -> dict:
        return {
            "coord": {"lon": 13.4, "lat": 52.52},
            "list": [
                {
                    "main": {"aqi": aqi},
                    "components": {"co": 201.9, "no2": 0.7, "o3": 68.7, "pm2_5": 0.5, "pm10": 0.5},
                    "dt": dt,
                }
            ],
        }

    return _payload
