"""
Weather cache stores — latest known-good readings per location.

Three backends share one contract:

    load(location_id)                      → CacheEntry (empty if unknown)
    save(location_id, readings, fetched_at) → CacheEntry after upsert

``save`` merges by ``recorded_at`` (last write wins per timestamp) and
advances ``last_fetch_at`` in the same atomic step. A reader never sees a
fetch time newer than the readings written with it:

    memory    — per-key asyncio.Lock around a dict (dev / tests)
    database  — one SQLAlchemy transaction (INSERT … ON CONFLICT DO UPDATE)
    redis     — one MULTI/EXEC pipeline over a hash + a string key, for
                reads as well as writes
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import CacheEntry, WeatherReading, ensure_utc, merge_readings
from .tables import WeatherDataRow, WeatherFetchStateRow

logger = logging.getLogger(__name__)

READING_COLUMNS = (
    "air_temp_f",
    "uv_index",
    "rainfall_in",
    "wind_speed_mph",
    "humidity_percent",
    "pressure_inhg",
)


class WeatherCacheStore(ABC):
    """Persistence contract for the get-or-refresh service."""

    @abstractmethod
    async def load(self, location_id: str) -> CacheEntry:
        ...

    @abstractmethod
    async def save(
        self,
        location_id: str,
        readings: Sequence[WeatherReading],
        fetched_at: datetime,
    ) -> CacheEntry:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryWeatherStore(WeatherCacheStore):
    """Process-local store. Entries are copied in and out."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def load(self, location_id: str) -> CacheEntry:
        entry = self._entries.get(location_id)
        if entry is None:
            return CacheEntry(location_id=location_id)
        return CacheEntry(
            location_id=location_id,
            readings=list(entry.readings),
            last_fetch_at=entry.last_fetch_at,
        )

    async def save(
        self,
        location_id: str,
        readings: Sequence[WeatherReading],
        fetched_at: datetime,
    ) -> CacheEntry:
        async with self._locks[location_id]:
            current = self._entries.get(location_id)
            existing = current.readings if current else []
            entry = CacheEntry(
                location_id=location_id,
                readings=merge_readings(existing, readings),
                last_fetch_at=fetched_at,
            )
            self._entries[location_id] = entry
        return await self.load(location_id)


# ═══════════════════════════════════════════════════════════════════════════
# SQL (PostgreSQL)
# ═══════════════════════════════════════════════════════════════════════════

def _row_to_reading(row: WeatherDataRow) -> WeatherReading:
    return WeatherReading(
        recorded_at=ensure_utc(row.recorded_at),
        **{col: getattr(row, col) for col in READING_COLUMNS},
    )


def readings_upsert(location_id: str, readings: Sequence[WeatherReading]):
    """INSERT … ON CONFLICT (location_id, recorded_at) DO UPDATE; last write wins."""
    stmt = pg_insert(WeatherDataRow).values([
        {
            "location_id": location_id,
            "recorded_at": r.recorded_at,
            **{col: getattr(r, col) for col in READING_COLUMNS},
        }
        for r in readings
    ])
    return stmt.on_conflict_do_update(
        index_elements=[WeatherDataRow.location_id, WeatherDataRow.recorded_at],
        set_={
            **{col: stmt.excluded[col] for col in READING_COLUMNS},
            "updated_at": func.now(),
        },
    )


def fetch_state_upsert(location_id: str, fetched_at: datetime):
    stmt = pg_insert(WeatherFetchStateRow).values(
        location_id=location_id, last_fetch_at=fetched_at,
    )
    return stmt.on_conflict_do_update(
        index_elements=[WeatherFetchStateRow.location_id],
        set_={"last_fetch_at": stmt.excluded.last_fetch_at},
    )


class SqlWeatherStore(WeatherCacheStore):
    """Readings in ``weather_data``, fetch time in ``weather_fetch_state``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, location_id: str) -> CacheEntry:
        async with self._session_factory() as session:
            # Fetch time first; a concurrent save can only make the entry look older
            last_fetch_at = await session.scalar(
                select(WeatherFetchStateRow.last_fetch_at)
                .where(WeatherFetchStateRow.location_id == location_id)
            )
            rows = (await session.scalars(
                select(WeatherDataRow)
                .where(WeatherDataRow.location_id == location_id)
                .order_by(WeatherDataRow.recorded_at)
            )).all()
        return CacheEntry(
            location_id=location_id,
            readings=[_row_to_reading(r) for r in rows],
            last_fetch_at=ensure_utc(last_fetch_at) if last_fetch_at else None,
        )

    async def save(
        self,
        location_id: str,
        readings: Sequence[WeatherReading],
        fetched_at: datetime,
    ) -> CacheEntry:
        # Duplicate timestamps within one batch would trip ON CONFLICT twice
        deduped = merge_readings([], readings)

        async with self._session_factory() as session:
            async with session.begin():
                if deduped:
                    await session.execute(readings_upsert(location_id, deduped))
                await session.execute(fetch_state_upsert(location_id, fetched_at))

        logger.debug("Stored %d readings for %s", len(deduped), location_id)
        return await self.load(location_id)


# ═══════════════════════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════════════════════

class RedisWeatherStore(WeatherCacheStore):
    """
    Key layout:
        {prefix}:{location_id}:readings       hash  iso-timestamp → reading JSON
        {prefix}:{location_id}:last_fetch_at  string iso-timestamp
    """

    def __init__(self, client, prefix: str = "weather"):
        self._client = client
        self._prefix = prefix

    def _keys(self, location_id: str) -> tuple:
        base = f"{self._prefix}:{location_id}"
        return f"{base}:readings", f"{base}:last_fetch_at"

    async def load(self, location_id: str) -> CacheEntry:
        readings_key, fetch_key = self._keys(location_id)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hgetall(readings_key)
            pipe.get(fetch_key)
            raw_readings, raw_fetch = await pipe.execute()

        readings: List[WeatherReading] = []
        for raw in (raw_readings or {}).values():
            try:
                readings.append(WeatherReading.from_dict(json.loads(raw)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping unreadable cached reading for %s: %s", location_id, e)
        readings.sort(key=lambda r: r.recorded_at)

        last_fetch_at: Optional[datetime] = None
        if raw_fetch:
            last_fetch_at = ensure_utc(datetime.fromisoformat(raw_fetch))

        return CacheEntry(location_id=location_id, readings=readings, last_fetch_at=last_fetch_at)

    async def save(
        self,
        location_id: str,
        readings: Sequence[WeatherReading],
        fetched_at: datetime,
    ) -> CacheEntry:
        readings_key, fetch_key = self._keys(location_id)
        mapping = {
            r.recorded_at.isoformat(): json.dumps(r.to_dict())
            for r in merge_readings([], readings)
        }

        async with self._client.pipeline(transaction=True) as pipe:
            if mapping:
                pipe.hset(readings_key, mapping=mapping)
            pipe.set(fetch_key, ensure_utc(fetched_at).isoformat())
            await pipe.execute()

        return await self.load(location_id)
