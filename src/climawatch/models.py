from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AirQuality(BaseModel):
    """Air-quality sample as reported by the provider (AQI index 1-5)."""

    lat: float
    lon: float
    aqi: int = Field(..., ge=1, le=5)
    components: dict[str, float] = Field(default_factory=dict)
    timestamp: datetime


class WeatherReading(BaseModel):
    """Current weather for one city, already converted to Celsius."""

    city: str
    temperature: float
    feels_like: float
    humidity: float = Field(..., ge=0, le=100)
    wind_speed: float = Field(..., ge=0)
    condition: str
    timestamp: datetime


class Measurement(BaseModel):
    """
    One stored reading for one city at one instant.
    Immutable once written.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    city: str
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    condition: str
    air_quality: AirQuality | None = None
    captured_at: datetime
    created_at: datetime | None = None

    @classmethod
    def from_reading(cls, reading: WeatherReading, air_quality: AirQuality | None) -> "Measurement":
        return cls(
            city=reading.city,
            temperature=reading.temperature,
            feels_like=reading.feels_like,
            humidity=reading.humidity,
            wind_speed=reading.wind_speed,
            condition=reading.condition,
            air_quality=air_quality,
            captured_at=reading.timestamp,
        )

    @property
    def aqi(self) -> int | None:
        return self.air_quality.aqi if self.air_quality else None


class DailySummary(BaseModel):
    """Aggregate of one city's measurements over one calendar day."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    city: str
    day: date
    avg_temp: float
    max_temp: float
    min_temp: float
    avg_humidity: float
    avg_wind_speed: float
    avg_aqi: float | None = None
    dominant_condition: str
    sample_count: int
    created_at: datetime | None = None


class Threshold(BaseModel):
    """A user's alert rule plus the hysteresis state the evaluator keeps on it."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    city: str
    email: str
    temperature_threshold: float | None = None
    aqi_threshold: float | None = None
    weather_condition: str | None = None

    # Owned by the evaluator
    temperature_breach_count: int = 0
    aqi_breach_count: int = 0
    alert_triggered: bool = False
    last_measurement_id: int | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None


class ThresholdCreate(BaseModel):
    city: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"[^@]+@[^@]+\.[^@]+")
    temperature_threshold: float | None = None
    aqi_threshold: float | None = None
    weather_condition: str | None = None

    @model_validator(mode="after")
    def require_limit(self) -> "ThresholdCreate":
        # A weather condition only narrows the limits, it never alerts on its own
        if self.temperature_threshold is None and self.aqi_threshold is None:
            raise ValueError("A threshold needs a temperature or AQI limit")
        return self


class ThresholdUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    city: str | None = Field(default=None, min_length=1)
    temperature_threshold: float | None = None
    aqi_threshold: float | None = None
    weather_condition: str | None = None

    @field_validator("city")
    @classmethod
    def city_not_null(cls, v: str | None) -> str:
        if v is None:
            raise ValueError("city cannot be cleared")
        return v


class AlertKind(StrEnum):
    TEMP = "TEMP"
    AQI = "AQI"


class AlertEvent(BaseModel):
    threshold_id: int
    city: str
    email: str
    kind: AlertKind
    value: float
    limit: float
    measured_at: datetime
    delivered: bool = False
