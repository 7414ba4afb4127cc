"""
Sensor reading retention — hot / warm / cold tiers.

    hot   recorded within the last ``hot_days``          kept as-is
    warm  between ``hot_days`` and ``warm_days`` old      raw_payload dropped
    cold  older than ``warm_days``                       deleted

Cutoffs are computed from ``now``:
    warm_cutoff = now - hot_days
    cold_cutoff = now - warm_days
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import delete, null, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.errors import ValidationError

from .tables import SensorReadingRow


@dataclass(frozen=True)
class RetentionPolicy:
    hot_days: int
    warm_days: int


@dataclass
class RetentionSummary:
    policy: RetentionPolicy
    warmed_count: int
    purged_count: int
    warm_cutoff: datetime
    cold_cutoff: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": {"hot_days": self.policy.hot_days, "warm_days": self.policy.warm_days},
            "warmed_count": self.warmed_count,
            "purged_count": self.purged_count,
            "warm_cutoff": self.warm_cutoff.isoformat(),
            "cold_cutoff": self.cold_cutoff.isoformat(),
        }


def normalize_policy(policy: RetentionPolicy) -> RetentionPolicy:
    """Reject non-positive or inverted tier lengths."""
    for name in ("hot_days", "warm_days"):
        value = getattr(policy, name)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(
                f"SENSOR_RETENTION_{name.upper()} must be a positive integer", field=name,
            )
    if policy.warm_days <= policy.hot_days:
        raise ValidationError(
            "SENSOR_RETENTION_WARM_DAYS must be greater than SENSOR_RETENTION_HOT_DAYS",
            field="warm_days",
        )
    return policy


def build_cutoffs(now: datetime, policy: RetentionPolicy) -> Tuple[datetime, datetime]:
    """Returns (warm_cutoff, cold_cutoff)."""
    policy = normalize_policy(policy)
    return now - timedelta(days=policy.hot_days), now - timedelta(days=policy.warm_days)


class SensorReadingStore(ABC):

    @abstractmethod
    async def strip_payloads(self, older_than: datetime, not_older_than: datetime) -> int:
        """Null raw_payload where not_older_than ≤ recorded_at < older_than."""

    @abstractmethod
    async def purge(self, older_than: datetime) -> int:
        """Delete rows with recorded_at < older_than."""


class SqlSensorReadingStore(SensorReadingStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def strip_payloads(self, older_than, not_older_than):
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(SensorReadingRow)
                    .where(
                        SensorReadingRow.raw_payload.is_not(None),
                        SensorReadingRow.recorded_at < older_than,
                        SensorReadingRow.recorded_at >= not_older_than,
                    )
                    .values(raw_payload=null())
                )
        return result.rowcount or 0

    async def purge(self, older_than):
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(SensorReadingRow).where(SensorReadingRow.recorded_at < older_than)
                )
        return result.rowcount or 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SensorRetentionService:

    def __init__(
        self,
        store: SensorReadingStore,
        policy: RetentionPolicy,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.policy = normalize_policy(policy)
        self._clock = clock

    async def apply_retention(
        self,
        now: Optional[datetime] = None,
        policy: Optional[RetentionPolicy] = None,
    ) -> RetentionSummary:
        policy = normalize_policy(policy or self.policy)
        now = now or self._clock()
        warm_cutoff, cold_cutoff = build_cutoffs(now, policy)

        warmed = await self.store.strip_payloads(warm_cutoff, cold_cutoff)
        purged = await self.store.purge(cold_cutoff)

        return RetentionSummary(
            policy=policy,
            warmed_count=warmed,
            purged_count=purged,
            warm_cutoff=warm_cutoff,
            cold_cutoff=cold_cutoff,
        )
