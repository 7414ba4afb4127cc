"""
Weather get-or-refresh service.

═══════════════════════════════════════════════════════════════════════════
CACHE POLICY
═══════════════════════════════════════════════════════════════════════════

    1. Load the cache entry for the location
    2. FRESH (fetched less than TTL ago)   → serve cache, no upstream call
    3. STALE (or never fetched, or refresh requested) → call the provider
         success          → upsert readings + last_fetch_at, serve upstream data
         RateLimitError   → cached readings in range? serve them (stale)
                            otherwise re-raise with retry_after_seconds
         any other error  → propagate, no fallback

Stale data is tolerated only for rate limits: those are transient and the
provider tells us when to come back. Other failures are surfaced so they
get noticed and fixed.

Concurrent stale requests for the same location and window share a single
upstream call.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.config import settings
from backend.app.core.errors import (
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from backend.app.core.single_flight import SingleFlight
from backend.app.locations.directory import Location, LocationDirectory

from .freshness import evaluate_freshness
from .models import (
    Coordinates,
    FreshnessDecision,
    TimeRange,
    WeatherReading,
    ensure_utc,
)
from .provider import WeatherProvider
from .store import WeatherCacheStore

logger = logging.getLogger(__name__)


class WeatherSource(str, Enum):
    CACHE = "cache"
    UPSTREAM = "upstream"
    STALE_CACHE = "stale_cache"


@dataclass
class WeatherResult:
    location_id: str
    readings: List[WeatherReading] = field(default_factory=list)
    last_fetch_at: Optional[datetime] = None
    source: WeatherSource = WeatherSource.CACHE

    @property
    def stale(self) -> bool:
        return self.source is WeatherSource.STALE_CACHE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [r.to_dict() for r in reversed(self.readings)],
            "lastFetchAt": self.last_fetch_at.isoformat() if self.last_fetch_at else None,
            "source": self.source.value,
            "stale": self.stale,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WeatherService:
    """
    Usage:
        service = WeatherService(store, provider, locations)
        result = await service.get_weather_for_location(
            "loc-1", user_id="user-1",
        )
    """

    def __init__(
        self,
        store: WeatherCacheStore,
        provider: WeatherProvider,
        locations: Optional[LocationDirectory] = None,
        *,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.provider = provider
        self.locations = locations
        self.ttl = ttl if ttl is not None else timedelta(seconds=settings.WEATHER_CACHE_TTL_SECONDS)
        self._clock = clock
        self._flights = SingleFlight()

    async def close(self) -> None:
        await self.provider.close()

    # ── Core policy ──

    async def get_data(
        self,
        key: str,
        coordinates: Coordinates,
        now: Optional[datetime] = None,
        *,
        time_range: Optional[TimeRange] = None,
        force_refresh: bool = False,
    ) -> WeatherResult:
        """Serve cached readings for ``key`` or refresh them from upstream."""
        now = ensure_utc(now) if now is not None else self._clock()
        entry = await self.store.load(key)

        decision = evaluate_freshness(entry.last_fetch_at, self.ttl, now)
        if decision is FreshnessDecision.FRESH and not force_refresh:
            logger.debug("Weather cache HIT for %s", key)
            return WeatherResult(
                location_id=key,
                readings=entry.within(time_range),
                last_fetch_at=entry.last_fetch_at,
                source=WeatherSource.CACHE,
            )

        flight_key = (key, time_range)
        if self._flights.in_flight(flight_key):
            logger.debug("Joining in-flight weather refresh for %s", key)
        try:
            readings = await self._flights.do(
                flight_key,
                lambda: self._refresh(key, coordinates, time_range, now),
            )
        except RateLimitError as e:
            cached = entry.within(time_range)
            if not cached:
                raise
            logger.warning(
                "Serving stale weather for %s after rate limit (retry after %ss)",
                key, e.retry_after_seconds,
                extra={
                    "event": "weather.stale_fallback",
                    "location_id": key,
                    "retry_after_seconds": e.retry_after_seconds,
                },
            )
            return WeatherResult(
                location_id=key,
                readings=cached,
                last_fetch_at=entry.last_fetch_at,
                source=WeatherSource.STALE_CACHE,
            )

        return WeatherResult(
            location_id=key,
            readings=readings,
            last_fetch_at=now,
            source=WeatherSource.UPSTREAM,
        )

    async def _refresh(
        self,
        key: str,
        coordinates: Coordinates,
        time_range: Optional[TimeRange],
        now: datetime,
    ) -> List[WeatherReading]:
        readings = await self.provider.fetch_daily_weather(key, coordinates, time_range)
        # Only reached on success; failures leave the entry untouched
        await self.store.save(key, readings, now)
        logger.info(
            "Refreshed weather for %s (%d readings)", key, len(readings),
            extra={"event": "weather.refreshed", "location_id": key},
        )
        return sorted(readings, key=lambda r: r.recorded_at)

    # ── Location-aware entry point ──

    async def _ensure_location_access(
        self,
        location_id: str,
        user_id: Optional[str],
        role: Optional[str],
    ) -> Location:
        if self.locations is None:
            raise NotFoundError("Location", location_id=location_id)
        location = await self.locations.get(location_id)
        if location is None:
            raise NotFoundError("Location", location_id=location_id)
        if role == "admin":
            return location
        if location.user_id != user_id:
            raise ForbiddenError()
        if location.is_active is False:
            raise ValidationError("Location inactive")
        return location

    async def get_weather_for_location(
        self,
        location_id: str,
        *,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
        refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> WeatherResult:
        location = await self._ensure_location_access(location_id, user_id, role)
        if location.latitude is None or location.longitude is None:
            raise ValidationError("Location is missing coordinates")

        return await self.get_data(
            location_id,
            Coordinates(location.latitude, location.longitude),
            now,
            time_range=time_range,
            force_refresh=refresh,
        )
