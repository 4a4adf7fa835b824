import json
import logging
import re
from datetime import UTC, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("Config")

DEFAULT_CONFIG_PATH = "/config/climawatch.json"


class CityCoords(BaseModel):
    """Coordinates used for the air-quality lookup of a city."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


def _default_cities() -> dict[str, CityCoords]:
    return {
        "Delhi": CityCoords(lat=28.6139, lon=77.2090),
        "Mumbai": CityCoords(lat=19.0760, lon=72.8777),
        "Chennai": CityCoords(lat=13.0827, lon=80.2707),
        "Bangalore": CityCoords(lat=12.9716, lon=77.5946),
        "Kolkata": CityCoords(lat=22.5726, lon=88.3639),
        "Hyderabad": CityCoords(lat=17.3850, lon=78.4867),
    }


class Settings(BaseSettings):
    """
    Runtime configuration.
    Reads from CLIMAWATCH_* environment variables, an optional .env file and
    an optional JSON override file (see load()).
    """

    # Application
    log_level: str = "INFO"
    log_file: str = "/var/log/climawatch/climawatch.log"
    config_path: str = DEFAULT_CONFIG_PATH

    # Upstream provider (OpenWeatherMap)
    openweather_api_key: SecretStr = Field(default=SecretStr(""))
    openweather_api_url: str = "https://api.openweathermap.org/data/2.5"
    request_timeout: float = Field(default=10.0, gt=0)

    # Monitored cities
    cities: dict[str, CityCoords] = Field(default_factory=_default_cities)

    # Pipeline
    fetch_interval_minutes: int = Field(default=5, ge=1)
    breach_limit: int = Field(default=2, ge=1, description="Consecutive breaches before alerting")
    retention_days: int = Field(default=7, ge=1)
    timezone: str = Field(default="UTC", description="Zone used for calendar-day windows")
    daily_job_time: str = Field(default="10:00", description="HH:MM for the daily job")

    # Database
    postgres_user: str = "climawatch"
    postgres_password: str = "climawatch"
    postgres_db: str = "climawatch"
    postgres_host: str = "db"
    postgres_port: int = 5432
    database_url_override: str | None = None

    # Notifications
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: SecretStr | None = None
    sender_email: str | None = None
    apprise_urls: list[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="CLIMAWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @computed_field
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v.upper() == "UTC":
            return "UTC"
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("daily_job_time")
    @classmethod
    def validate_daily_job_time(cls, v: str) -> str:
        if not re.fullmatch(r"([01]\d|2[0-3]):[0-5]\d", v):
            raise ValueError("daily_job_time must be HH:MM")
        return v

    def zone(self) -> tzinfo:
        """Timezone that defines where a calendar day starts and ends."""
        if self.timezone == "UTC":
            return UTC
        return ZoneInfo(self.timezone)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Settings":
        """Load settings from env/defaults, then overlay the JSON file if present."""
        base_settings = cls()
        path = Path(config_path or base_settings.config_path)

        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    file_data = json.load(f)

                updated_data = base_settings.model_dump(exclude={"database_url"})
                updated_data.update(file_data)
                return cls.model_validate(updated_data)
            except Exception as e:
                logger.warning(f"Failed to load config file {path}, using defaults/env: {e}")

        return base_settings
