"""
Shared fakes for the test suite.

Every external seam (weather provider, location lookup, dead-letter store,
sensor reading store) has an in-memory stand-in here so tests never need
PostgreSQL, Redis or network access.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.dialects import postgresql

from backend.app.integrations.failures import FailureStatus, FailureStore, IngestionFailure
from backend.app.locations.directory import Location, LocationDirectory
from backend.app.sensors.retention import SensorReadingStore
from backend.app.weather.models import Coordinates, TimeRange, WeatherReading
from backend.app.weather.provider import WeatherProvider

T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

OWNER_ID = "user-1"
LOCATION_ID = "6f1c1a52-3c1e-4a57-9d7e-1a2b3c4d5e6f"


def reading(day: int, temp: float = 80.0, **kwargs: Any) -> WeatherReading:
    """Daily reading for June ``day`` 2026."""
    return WeatherReading(
        recorded_at=datetime(2026, 6, day, tzinfo=timezone.utc),
        air_temp_f=temp,
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════

class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ═══════════════════════════════════════════════════════════════════════════
# Weather provider
# ═══════════════════════════════════════════════════════════════════════════

class FakeProvider(WeatherProvider):
    """
    Returns queued outcomes in order; an Exception outcome is raised.
    When the queue is empty the last outcome repeats.

    Set ``gate`` to an asyncio.Event to hold calls until it is set.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes: List[Any] = list(outcomes)
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def fetch_daily_weather(
        self,
        location_key: str,
        coordinates: Coordinates,
        time_range: Optional[TimeRange] = None,
    ) -> List[WeatherReading]:
        self.calls.append({
            "location_key": location_key,
            "coordinates": coordinates,
            "time_range": time_range,
        })
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)

    async def close(self) -> None:
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════════
# Locations
# ═══════════════════════════════════════════════════════════════════════════

class StaticLocationDirectory(LocationDirectory):
    def __init__(self, *locations: Location):
        self._locations = {loc.location_id: loc for loc in locations}

    async def get(self, location_id: str) -> Optional[Location]:
        return self._locations.get(location_id)


def make_location(**overrides: Any) -> Location:
    fields: Dict[str, Any] = {
        "location_id": LOCATION_ID,
        "user_id": OWNER_ID,
        "name": "Backyard pool",
        "latitude": 33.749,
        "longitude": -84.388,
        "is_active": True,
    }
    fields.update(overrides)
    return Location(**fields)


# ═══════════════════════════════════════════════════════════════════════════
# Dead-letter store
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryFailureStore(FailureStore):
    def __init__(self) -> None:
        self.entries: Dict[int, IngestionFailure] = {}
        self._next_id = 1

    async def add(self, provider, headers, payload, error, next_attempt_at, now):
        failure = IngestionFailure(
            failure_id=self._next_id,
            provider=provider,
            headers=dict(headers),
            payload=payload,
            status=FailureStatus.PENDING,
            attempts=0,
            last_error=error,
            next_attempt_at=next_attempt_at,
            created_at=now,
        )
        self.entries[failure.failure_id] = failure
        self._next_id += 1
        return failure

    async def due(self, now, limit):
        pending = [
            f for f in self.entries.values()
            if f.status is FailureStatus.PENDING
            and (f.next_attempt_at is None or f.next_attempt_at <= now)
        ]
        pending.sort(key=lambda f: (f.next_attempt_at or f.created_at, f.failure_id))
        return [IngestionFailure(**vars(f)) for f in pending[:limit]]

    async def mark_resolved(self, failure_id, attempts, now):
        f = self.entries[failure_id]
        f.status, f.attempts, f.resolved_at = FailureStatus.RESOLVED, attempts, now
        f.last_error = None
        f.next_attempt_at = None

    async def mark_pending(self, failure_id, attempts, error, next_attempt_at, now):
        f = self.entries[failure_id]
        f.attempts, f.last_error, f.next_attempt_at = attempts, error, next_attempt_at

    async def mark_dead(self, failure_id, attempts, error, now):
        f = self.entries[failure_id]
        f.status, f.attempts, f.last_error = FailureStatus.DEAD, attempts, error
        f.next_attempt_at = None

    async def list(self, status, limit):
        items = [f for f in self.entries.values() if status is None or f.status is status]
        return items[:limit]


class FlakyProcessor:
    """Webhook processor that fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0, result: int = 1):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self, provider, headers, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"ingest failed (call {self.calls})")
        return self.result


# ═══════════════════════════════════════════════════════════════════════════
# Sensor readings
# ═══════════════════════════════════════════════════════════════════════════

class InMemorySensorReadingStore(SensorReadingStore):
    """Rows are dicts with ``recorded_at`` and ``raw_payload``."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows or []

    async def strip_payloads(self, older_than, not_older_than):
        count = 0
        for row in self.rows:
            if (
                row["raw_payload"] is not None
                and not_older_than <= row["recorded_at"] < older_than
            ):
                row["raw_payload"] = None
                count += 1
        return count

    async def purge(self, older_than):
        before = len(self.rows)
        self.rows = [r for r in self.rows if r["recorded_at"] >= older_than]
        return before - len(self.rows)


# ═══════════════════════════════════════════════════════════════════════════
# SQL sessions
# ═══════════════════════════════════════════════════════════════════════════

def compile_pg(stmt):
    """Compile a statement for PostgreSQL; returns (sql, params)."""
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


class RecordingSession:
    """
    Stands in for AsyncSession. Every statement lands in
    ``factory.calls`` as (method, statement, transaction number or None).
    """

    def __init__(self, factory: "RecordingSessionFactory"):
        self.factory = factory
        self.transaction: Optional[int] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def begin(self):
        self.factory.transactions += 1
        self.transaction = self.factory.transactions
        try:
            yield self
        finally:
            self.transaction = None

    def _record(self, method: str, stmt: Any) -> None:
        self.factory.calls.append((method, stmt, self.transaction))

    async def execute(self, stmt):
        self._record("execute", stmt)
        return SimpleNamespace(rowcount=self.factory.rowcount)

    async def scalars(self, stmt):
        self._record("scalars", stmt)
        return SimpleNamespace(all=lambda: list(self.factory.rows))

    async def scalar(self, stmt):
        self._record("scalar", stmt)
        return self.factory.scalar_value

    def add(self, obj):
        self.factory.added.append(obj)

    async def refresh(self, obj):
        obj.failure_id = len(self.factory.added)


class RecordingSessionFactory:
    """Callable like async_sessionmaker; canned results for reads."""

    def __init__(self, rows=(), scalar_value=None, rowcount=0):
        self.rows = list(rows)
        self.scalar_value = scalar_value
        self.rowcount = rowcount
        self.calls: List[tuple] = []
        self.added: List[Any] = []
        self.transactions = 0

    def __call__(self) -> RecordingSession:
        return RecordingSession(self)

    def executed(self) -> List[tuple]:
        return [(stmt, tx) for method, stmt, tx in self.calls if method == "execute"]


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def failure_store() -> InMemoryFailureStore:
    return InMemoryFailureStore()
