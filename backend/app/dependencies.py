"""
Service wiring — lazily built singletons shared by routes and the
application lifespan.

Routes depend on the ``get_*`` functions through FastAPI ``Depends`` so
tests can swap any of them with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, Header

from backend.app.core.config import Settings, settings
from backend.app.core.database import get_session_factory
from backend.app.core.errors import AuthenticationError, ForbiddenError
from backend.app.integrations.failures import IngestionFailureService, SqlFailureStore
from backend.app.locations.directory import SqlLocationDirectory
from backend.app.sensors.ingest import SensorReadingIngestor
from backend.app.sensors.retention import (
    RetentionPolicy,
    SensorRetentionService,
    SqlSensorReadingStore,
)
from backend.app.weather.provider import TomorrowIoProvider
from backend.app.weather.service import WeatherService
from backend.app.weather.store import (
    InMemoryWeatherStore,
    RedisWeatherStore,
    SqlWeatherStore,
    WeatherCacheStore,
)
from backend.app.workers.backoff import backoff_from_settings
from backend.app.workers.base import PeriodicWorker
from backend.app.workers.integration_retry import IntegrationRetryWorker
from backend.app.workers.sensor_retention import SensorRetentionWorker

logger = logging.getLogger(__name__)

_weather_service: Optional[WeatherService] = None
_failure_service: Optional[IngestionFailureService] = None
_workers: Optional[List[PeriodicWorker]] = None


def build_weather_store(cfg: Settings) -> WeatherCacheStore:
    if cfg.WEATHER_CACHE_BACKEND == "memory":
        return InMemoryWeatherStore()
    if cfg.WEATHER_CACHE_BACKEND == "redis":
        from backend.app.core.cache import get_redis
        return RedisWeatherStore(get_redis())
    return SqlWeatherStore(get_session_factory())


def get_weather_service() -> WeatherService:
    global _weather_service
    if _weather_service is None:
        _weather_service = WeatherService(
            store=build_weather_store(settings),
            provider=TomorrowIoProvider(),
            locations=SqlLocationDirectory(get_session_factory()),
        )
        logger.info("Weather service ready (cache backend: %s)", settings.WEATHER_CACHE_BACKEND)
    return _weather_service


def get_ingestion_failure_service() -> IngestionFailureService:
    global _failure_service
    if _failure_service is None:
        factory = get_session_factory()
        _failure_service = IngestionFailureService(
            store=SqlFailureStore(factory),
            processor=SensorReadingIngestor(factory),
            backoff=backoff_from_settings(settings),
        )
    return _failure_service


def get_integration_retry_worker() -> IntegrationRetryWorker:
    return next(w for w in get_workers() if isinstance(w, IntegrationRetryWorker))


def get_workers() -> List[PeriodicWorker]:
    global _workers
    if _workers is None:
        retention = SensorRetentionService(
            SqlSensorReadingStore(get_session_factory()),
            RetentionPolicy(
                hot_days=settings.SENSOR_RETENTION_HOT_DAYS,
                warm_days=settings.SENSOR_RETENTION_WARM_DAYS,
            ),
        )
        _workers = [
            IntegrationRetryWorker(
                get_ingestion_failure_service(),
                enabled=settings.INTEGRATION_RETRY_WORKER_ENABLED,
                tick_seconds=settings.INTEGRATION_RETRY_TICK_SECONDS,
                batch_size=settings.INTEGRATION_RETRY_BATCH_SIZE,
                max_attempts=settings.INTEGRATION_RETRY_MAX_ATTEMPTS,
            ),
            SensorRetentionWorker(
                retention,
                enabled=settings.SENSOR_RETENTION_WORKER_ENABLED,
                tick_seconds=settings.SENSOR_RETENTION_TICK_SECONDS,
            ),
        ]
    return _workers


async def shutdown_services() -> None:
    """Stop workers (letting in-flight ticks finish) and close clients."""
    global _weather_service, _failure_service, _workers
    if _workers is not None:
        for worker in _workers:
            await worker.stop()
    if _weather_service is not None:
        await _weather_service.close()
    _weather_service = None
    _failure_service = None
    _workers = None


# ── Caller identity ──

@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    """Identity forwarded by the auth gateway in front of this service."""
    if not x_user_id:
        raise AuthenticationError()
    return Caller(user_id=x_user_id, role=(x_user_role or "member").lower())


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise ForbiddenError()
    return caller
