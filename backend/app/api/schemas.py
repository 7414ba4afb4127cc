"""
Pydantic response schemas for the HTTP API.

Separated from the route handlers so tests and background jobs can reuse
them without importing FastAPI routers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

class WeatherReadingOut(BaseModel):
    recorded_at: str
    air_temp_f: Optional[float] = None
    uv_index: Optional[float] = None
    rainfall_in: Optional[float] = None
    wind_speed_mph: Optional[float] = None
    humidity_percent: Optional[float] = None
    pressure_inhg: Optional[float] = None


class WeatherResponse(BaseModel):
    """Newest reading first."""
    items: List[WeatherReadingOut] = Field(default_factory=list)
    lastFetchAt: Optional[str] = None
    source: str
    stale: bool = False


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------

class WebhookAck(BaseModel):
    accepted: bool
    ingested: int = 0
    queued_for_retry: bool = False
    failure_id: Optional[int] = None


class IngestionFailureOut(BaseModel):
    failure_id: int
    provider: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    next_attempt_at: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    payload: Optional[Any] = None


class RetrySummaryOut(BaseModel):
    processed: int = 0
    resolved: int = 0
    dead: int = 0
    pending: int = 0
    skipped: bool = Field(
        default=False,
        description="True when a retry tick was already running",
    )


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

class WorkerOut(BaseModel):
    name: str
    enabled: bool
    state: str
    tick_seconds: float
    ticks_completed: int
    ticks_skipped: int
