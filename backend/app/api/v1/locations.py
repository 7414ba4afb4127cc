"""
FastAPI route: cached weather for a saved pool location.

    GET /api/v1/locations/{location_id}/weather
        ?from=<iso>&to=<iso>&granularity=day&refresh=false

Fresh cache entries are served without an upstream call. Stale entries are
refreshed from Tomorrow.io; when the provider rate-limits, previously cached
readings are returned with ``stale: true``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from backend.app.api.schemas import WeatherResponse
from backend.app.core.errors import ValidationError
from backend.app.dependencies import Caller, get_caller, get_weather_service
from backend.app.weather.models import TimeRange, ensure_utc
from backend.app.weather.service import WeatherService

router = APIRouter(prefix="/api/v1/locations", tags=["weather"])


def _time_range(start: Optional[datetime], end: Optional[datetime]) -> Optional[TimeRange]:
    if start is None and end is None:
        return None
    start = ensure_utc(start) if start else None
    end = ensure_utc(end) if end else None
    if start and end and start > end:
        raise ValidationError("'from' must not be after 'to'", field="from")
    return TimeRange(start, end)


@router.get(
    "/{location_id}/weather",
    response_model=WeatherResponse,
    summary="Daily weather for a location",
    description=(
        "Returns cached daily readings, refreshing from the weather provider "
        "once the cache is older than WEATHER_CACHE_TTL_SECONDS. "
        "Pass refresh=true to bypass a fresh cache."
    ),
)
async def location_weather(
    location_id: UUID,
    start: Optional[datetime] = Query(None, alias="from", description="Inclusive lower bound"),
    end: Optional[datetime] = Query(None, alias="to", description="Inclusive upper bound"),
    granularity: Literal["day"] = Query("day"),
    refresh: bool = Query(False, description="Force an upstream refresh"),
    caller: Caller = Depends(get_caller),
    service: WeatherService = Depends(get_weather_service),
):
    result = await service.get_weather_for_location(
        str(location_id),
        user_id=caller.user_id,
        role=caller.role,
        time_range=_time_range(start, end),
        refresh=refresh,
    )
    return result.to_dict()
