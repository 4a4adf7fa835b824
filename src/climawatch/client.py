import typing
from datetime import UTC, datetime

import httpx
import structlog

from climawatch.config import Settings
from climawatch.errors import UpstreamError
from climawatch.models import AirQuality, WeatherReading

logger = structlog.get_logger("WeatherClient")

KELVIN_OFFSET = 273.15


def kelvin_to_celsius(kelvin: float) -> float:
    return kelvin - KELVIN_OFFSET


class OpenWeatherClient:
    """
    Thin client for the OpenWeatherMap current-weather and air-pollution endpoints.
    Stateless, no retries: every failure surfaces as UpstreamError.
    """

    def __init__(self, settings: Settings, http: httpx.Client | None = None) -> None:
        self.base_url = settings.openweather_api_url.rstrip("/")
        self.api_key = settings.openweather_api_key.get_secret_value()
        self.timeout = settings.request_timeout
        self._http = http

    def _get(self, path: str, params: dict[str, typing.Any]) -> dict[str, typing.Any]:
        url = f"{self.base_url}/{path}"
        query = {**params, "appid": self.api_key}
        try:
            if self._http is not None:
                response = self._http.get(url, params=query, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.get(url, params=query)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"{path} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{path} request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"{path} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise UpstreamError(f"{path} returned unexpected payload")
        return data

    def get_current_weather(self, city: str) -> dict[str, typing.Any]:
        """Raw provider payload for a city (temperatures in Kelvin)."""
        return self._get("weather", {"q": city})

    def fetch_weather(self, city: str) -> WeatherReading:
        data = self.get_current_weather(city)
        try:
            main = data["main"]
            return WeatherReading(
                city=city,
                temperature=kelvin_to_celsius(float(main["temp"])),
                feels_like=kelvin_to_celsius(float(main["feels_like"])),
                humidity=main["humidity"],
                wind_speed=data["wind"]["speed"],
                condition=data["weather"][0]["main"],
                timestamp=datetime.fromtimestamp(data["dt"], tz=UTC),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed weather payload for {city}: {e}") from e

    def fetch_air_quality(self, lat: float, lon: float) -> AirQuality | None:
        """Latest air-quality sample, or None when the provider has none for the location."""
        data = self._get("air_pollution", {"lat": lat, "lon": lon})
        samples = data.get("list")
        if samples is None:
            raise UpstreamError(f"Malformed air quality payload for ({lat},{lon})")
        if not samples:
            logger.warning("air_quality_empty", lat=lat, lon=lon)
            return None

        try:
            sample = samples[0]
            air_quality = AirQuality(
                lat=lat,
                lon=lon,
                aqi=sample["main"]["aqi"],
                components=sample.get("components") or {},
                timestamp=datetime.fromtimestamp(sample["dt"], tz=UTC),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed air quality payload for ({lat},{lon}): {e}") from e

        logger.info("air_quality_fetched", lat=lat, lon=lon, aqi=air_quality.aqi)
        return air_quality
