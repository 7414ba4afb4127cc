"""
Weather data structures shared by the provider, the cache stores and the
get-or-refresh service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class FreshnessDecision(str, Enum):
    """Outcome of the freshness policy."""
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def as_query(self) -> str:
        return f"{self.latitude},{self.longitude}"


@dataclass(frozen=True)
class TimeRange:
    """Inclusive [start, end] window; either bound may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


@dataclass
class WeatherReading:
    """
    One normalised daily observation/forecast for a location.

    Units follow the provider request (imperial): °F, inches, mph, inHg.
    """
    recorded_at: datetime
    air_temp_f: Optional[float] = None
    uv_index: Optional[float] = None
    rainfall_in: Optional[float] = None
    wind_speed_mph: Optional[float] = None
    humidity_percent: Optional[float] = None
    pressure_inhg: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recorded_at": self.recorded_at.isoformat(),
            "air_temp_f": self.air_temp_f,
            "uv_index": self.uv_index,
            "rainfall_in": self.rainfall_in,
            "wind_speed_mph": self.wind_speed_mph,
            "humidity_percent": self.humidity_percent,
            "pressure_inhg": self.pressure_inhg,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherReading":
        return cls(
            recorded_at=ensure_utc(datetime.fromisoformat(data["recorded_at"])),
            air_temp_f=data.get("air_temp_f"),
            uv_index=data.get("uv_index"),
            rainfall_in=data.get("rainfall_in"),
            wind_speed_mph=data.get("wind_speed_mph"),
            humidity_percent=data.get("humidity_percent"),
            pressure_inhg=data.get("pressure_inhg"),
        )


@dataclass
class CacheEntry:
    """Latest known-good readings for one location key."""
    location_id: str
    readings: List[WeatherReading] = field(default_factory=list)
    last_fetch_at: Optional[datetime] = None

    def within(self, time_range: Optional[TimeRange]) -> List[WeatherReading]:
        if time_range is None:
            return list(self.readings)
        return [r for r in self.readings if time_range.contains(r.recorded_at)]


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def merge_readings(
    existing: Iterable[WeatherReading],
    incoming: Iterable[WeatherReading],
) -> List[WeatherReading]:
    """
    Upsert ``incoming`` into ``existing`` keyed by ``recorded_at``.

    Last write wins per timestamp; output is sorted ascending.
    """
    merged: Dict[datetime, WeatherReading] = {r.recorded_at: r for r in existing}
    for reading in incoming:
        merged[reading.recorded_at] = reading
    return [merged[ts] for ts in sorted(merged)]
