"""
Upstream weather gateway — Tomorrow.io daily forecast client.

Endpoint: {TOMORROW_API_BASE}/weather/forecast

We request daily (``timesteps=1d``) imperial values and normalise each
timeline entry into a WeatherReading:

    temperatureAvg  → air_temp_f      (falls back to Max, then Min)
    uvIndexAvg      → uv_index
    precipitationAccumulation → rainfall_in
        (falls back to precipitationIntensityAvg × 24)
    windSpeedAvg    → wind_speed_mph
    humidityAvg     → humidity_percent
    pressureSurfaceLevelAvg → pressure_inhg

Failure mapping:
    HTTP 429            → RateLimitError (Retry-After header, else default)
    other non-2xx       → UpstreamError
    transport / decode  → UpstreamError
    no API key          → ProviderNotConfiguredError
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import (
    ProviderNotConfiguredError,
    RateLimitError,
    UpstreamError,
)

from .models import Coordinates, TimeRange, WeatherReading, ensure_utc

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Tomorrow.io"

DAILY_FIELDS = [
    "temperatureAvg",
    "temperatureMin",
    "temperatureMax",
    "uvIndexAvg",
    "precipitationAccumulation",
    "precipitationIntensityAvg",
    "windSpeedAvg",
    "humidityAvg",
    "pressureSurfaceLevelAvg",
]


class WeatherProvider(ABC):
    """Anything that can fetch daily readings for a coordinate."""

    @abstractmethod
    async def fetch_daily_weather(
        self,
        location_key: str,
        coordinates: Coordinates,
        time_range: Optional[TimeRange] = None,
    ) -> List[WeatherReading]:
        ...

    async def close(self) -> None:
        return None


def parse_retry_after(
    value: Optional[str],
    default: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Parse a Retry-After header into whole seconds.

    Accepts delta-seconds ("120") or an HTTP-date. Missing or unparseable
    values yield ``default``; dates in the past yield 0.
    """
    if value is None:
        return default
    value = value.strip()
    if not value:
        return default
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when is None:
        return default
    now = now or datetime.now(timezone.utc)
    return max(0, int((ensure_utc(when) - now).total_seconds()))


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _first_number(values: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        num = _number(values.get(key))
        if num is not None:
            return num
    return None


def parse_daily_timeline(payload: Dict[str, Any]) -> List[WeatherReading]:
    """Normalise a Tomorrow.io forecast payload; unparseable entries are skipped."""
    daily = ((payload or {}).get("timelines") or {}).get("daily") or []
    readings: List[WeatherReading] = []

    for entry in daily:
        try:
            recorded_at = ensure_utc(
                datetime.fromisoformat(str(entry["time"]).replace("Z", "+00:00"))
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping timeline entry without a valid time: %s", e)
            continue

        values = entry.get("values") or {}
        precipitation = _number(values.get("precipitationAccumulation"))
        if precipitation is None:
            intensity = _number(values.get("precipitationIntensityAvg"))
            precipitation = intensity * 24 if intensity is not None else None

        readings.append(WeatherReading(
            recorded_at=recorded_at,
            air_temp_f=_first_number(values, "temperatureAvg", "temperatureMax", "temperatureMin"),
            uv_index=_number(values.get("uvIndexAvg")),
            rainfall_in=precipitation,
            wind_speed_mph=_number(values.get("windSpeedAvg")),
            humidity_percent=_number(values.get("humidityAvg")),
            pressure_inhg=_number(values.get("pressureSurfaceLevelAvg")),
        ))

    readings.sort(key=lambda r: r.recorded_at)
    return readings


class TomorrowIoProvider(WeatherProvider):
    """
    Tomorrow.io v4 client.

    Usage:
        provider = TomorrowIoProvider(api_key="...")
        readings = await provider.fetch_daily_weather(
            "loc-1", Coordinates(33.75, -84.39),
        )
        await provider.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        default_retry_after: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.TOMORROW_API_KEY
        self.base_url = (base_url or settings.TOMORROW_API_BASE).rstrip("/")
        self.timeout = timeout or settings.WEATHER_FETCH_TIMEOUT
        self.default_retry_after = (
            default_retry_after
            if default_retry_after is not None
            else settings.WEATHER_RATE_LIMIT_DEFAULT_RETRY_AFTER
        )
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _build_params(
        self,
        coordinates: Coordinates,
        time_range: Optional[TimeRange],
    ) -> Dict[str, str]:
        params = {
            "location": coordinates.as_query(),
            "fields": ",".join(DAILY_FIELDS),
            "timesteps": "1d",
            "units": "imperial",
        }
        if time_range and time_range.start:
            params["startTime"] = ensure_utc(time_range.start).isoformat()
        if time_range and time_range.end:
            params["endTime"] = ensure_utc(time_range.end).isoformat()
        params["apikey"] = self.api_key or ""
        return params

    async def fetch_daily_weather(
        self,
        location_key: str,
        coordinates: Coordinates,
        time_range: Optional[TimeRange] = None,
    ) -> List[WeatherReading]:
        if not self.api_key:
            raise ProviderNotConfiguredError()

        client = await self._get_client()
        url = f"{self.base_url}/weather/forecast"

        try:
            response = await client.get(url, params=self._build_params(coordinates, time_range))
        except httpx.HTTPError as e:
            logger.error("Weather request for %s failed: %s", location_key, e)
            raise UpstreamError(f"{PROVIDER_NAME} request failed ({type(e).__name__})") from e

        if response.status_code == 429:
            retry_after = parse_retry_after(
                response.headers.get("Retry-After"), self.default_retry_after
            )
            logger.warning(
                "Weather provider rate limited for %s (retry after %ss)",
                location_key, retry_after,
                extra={"location_id": location_key, "retry_after_seconds": retry_after},
            )
            raise RateLimitError(
                f"{PROVIDER_NAME} request failed (429)",
                retry_after_seconds=retry_after,
            )

        if not response.is_success:
            raise UpstreamError(
                f"{PROVIDER_NAME} request failed ({response.status_code})",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"{PROVIDER_NAME} returned invalid JSON") from e

        readings = parse_daily_timeline(payload)
        logger.info(
            "Fetched %d daily readings for %s", len(readings), location_key,
            extra={"location_id": location_key},
        )
        return readings
