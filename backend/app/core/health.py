"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (PostgreSQL)
    • Redis connectivity (only when it backs the weather cache)
    • Weather provider configuration
    • Background worker states

Returns a structured health report suitable for liveness/readiness probes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from backend.app.core.config import settings
from backend.app.workers.base import PeriodicWorker, WorkerState

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


def _redact(url: str) -> str:
    return url.split("@")[-1]


async def _timed_probe(
    comp: ComponentHealth,
    probe: Callable[[], Awaitable[None]],
    ok_message: str,
    failed_status: HealthStatus,
) -> ComponentHealth:
    started = time.monotonic()
    try:
        await probe()
        comp.message = ok_message
    except Exception as exc:
        logger.warning("Health probe %s failed: %s", comp.name, exc)
        comp.status = failed_status
        comp.message = str(exc)
    comp.latency_ms = (time.monotonic() - started) * 1000
    return comp


async def check_database() -> ComponentHealth:
    from backend.app.core import database

    return await _timed_probe(
        ComponentHealth(name="postgresql", details={"url": _redact(settings.DATABASE_URL)}),
        database.ping_db,
        "Weather cache and dead-letter tables reachable",
        HealthStatus.UNHEALTHY,
    )


async def check_redis() -> ComponentHealth:
    from backend.app.core import cache

    return await _timed_probe(
        ComponentHealth(name="redis", details={"url": _redact(settings.REDIS_URL)}),
        cache.ping_redis,
        "Weather cache available",
        HealthStatus.DEGRADED,
    )


async def check_weather_provider() -> ComponentHealth:
    comp = ComponentHealth(name="weather_provider", details={"base_url": settings.TOMORROW_API_BASE})
    if settings.TOMORROW_API_KEY:
        comp.message = "API key configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "TOMORROW_API_KEY not set; only cached weather can be served"
    return comp


def check_workers(workers: Sequence[PeriodicWorker]) -> ComponentHealth:
    comp = ComponentHealth(name="workers")
    comp.details = {"workers": [w.describe() for w in workers]}
    idle = [w.name for w in workers if w.enabled and w.state is WorkerState.STOPPED]
    if idle:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Enabled but not running: {', '.join(idle)}"
    return comp


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


async def run_health_check(workers: Sequence[PeriodicWorker] = ()) -> HealthReport:
    """Probe every subsystem; the report takes the worst component status."""
    components = [await check_database()]
    if settings.WEATHER_CACHE_BACKEND == "redis":
        components.append(await check_redis())
    components.append(await check_weather_provider())
    components.append(check_workers(workers))

    return HealthReport(
        status=max((c.status for c in components), key=_SEVERITY.__getitem__),
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
        components=components,
    )
