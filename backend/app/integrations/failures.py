"""
Integration ingestion dead-letter queue.

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    webhook processing fails → entry recorded as PENDING (attempts = 0,
                               due immediately)

    each retry tick, for up to ``batch_size`` PENDING entries that are due
    (oldest next_attempt_at first):

        retry succeeds → RESOLVED (resolved_at set, last_error cleared)
        retry fails    → attempts += 1
                           attempts ≥ max_attempts → DEAD
                           otherwise               → PENDING,
                               next_attempt_at = now + backoff(attempts)

RESOLVED and DEAD are terminal; neither is selected again. One failing
entry never stops the rest of the batch.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.workers.backoff import BackoffStrategy, ExponentialBackoff

from .tables import IngestionFailureRow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000

WebhookProcessor = Callable[[str, Dict[str, Any], Optional[Dict[str, Any]]], Awaitable[Any]]


class FailureStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DEAD = "dead"


@dataclass
class IngestionFailure:
    failure_id: int
    provider: str
    headers: Dict[str, Any] = field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None
    status: FailureStatus = FailureStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        for key in ("next_attempt_at", "resolved_at", "created_at"):
            d[key] = d[key].isoformat() if d[key] else None
        return d


@dataclass
class RetrySummary:
    processed: int = 0
    resolved: int = 0
    dead: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def describe_error(error: BaseException) -> str:
    message = str(error) or type(error).__name__
    return message[:MAX_ERROR_LENGTH]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class FailureStore(ABC):

    @abstractmethod
    async def add(
        self,
        provider: str,
        headers: Dict[str, Any],
        payload: Optional[Dict[str, Any]],
        error: str,
        next_attempt_at: datetime,
        now: datetime,
    ) -> IngestionFailure:
        ...

    @abstractmethod
    async def due(self, now: datetime, limit: int) -> List[IngestionFailure]:
        """PENDING entries with next_attempt_at ≤ now, oldest first."""

    @abstractmethod
    async def mark_resolved(self, failure_id: int, attempts: int, now: datetime) -> None:
        ...

    @abstractmethod
    async def mark_pending(
        self,
        failure_id: int,
        attempts: int,
        error: str,
        next_attempt_at: datetime,
        now: datetime,
    ) -> None:
        ...

    @abstractmethod
    async def mark_dead(self, failure_id: int, attempts: int, error: str, now: datetime) -> None:
        ...

    @abstractmethod
    async def list(self, status: Optional[FailureStatus], limit: int) -> List[IngestionFailure]:
        """Newest first."""


def _row_to_failure(row: IngestionFailureRow) -> IngestionFailure:
    return IngestionFailure(
        failure_id=row.failure_id,
        provider=row.provider,
        headers=row.headers or {},
        payload=row.payload,
        status=FailureStatus(row.status),
        attempts=row.attempts or 0,
        last_error=row.last_error,
        next_attempt_at=row.next_attempt_at,
        resolved_at=row.resolved_at,
        created_at=row.created_at,
    )


class SqlFailureStore(FailureStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, provider, headers, payload, error, next_attempt_at, now):
        row = IngestionFailureRow(
            provider=provider,
            headers=headers,
            payload=payload,
            status=FailureStatus.PENDING.value,
            attempts=0,
            last_error=error,
            next_attempt_at=next_attempt_at,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
            await session.refresh(row)
        return _row_to_failure(row)

    async def due(self, now, limit):
        async with self._session_factory() as session:
            rows = (await session.scalars(
                select(IngestionFailureRow)
                .where(
                    IngestionFailureRow.status == FailureStatus.PENDING.value,
                    IngestionFailureRow.next_attempt_at <= now,
                )
                .order_by(IngestionFailureRow.next_attempt_at, IngestionFailureRow.failure_id)
                .limit(limit)
            )).all()
        return [_row_to_failure(r) for r in rows]

    async def _update(self, failure_id: int, **values: Any) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(IngestionFailureRow)
                    .where(IngestionFailureRow.failure_id == failure_id)
                    .values(**values)
                )

    async def mark_resolved(self, failure_id, attempts, now):
        await self._update(
            failure_id,
            status=FailureStatus.RESOLVED.value,
            attempts=attempts,
            last_error=None,
            resolved_at=now,
            updated_at=now,
        )

    async def mark_pending(self, failure_id, attempts, error, next_attempt_at, now):
        await self._update(
            failure_id,
            status=FailureStatus.PENDING.value,
            attempts=attempts,
            last_error=error,
            next_attempt_at=next_attempt_at,
            updated_at=now,
        )

    async def mark_dead(self, failure_id, attempts, error, now):
        await self._update(
            failure_id,
            status=FailureStatus.DEAD.value,
            attempts=attempts,
            last_error=error,
            updated_at=now,
        )

    async def list(self, status, limit):
        stmt = select(IngestionFailureRow)
        if status is not None:
            stmt = stmt.where(IngestionFailureRow.status == status.value)
        stmt = stmt.order_by(IngestionFailureRow.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_row_to_failure(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class IngestionFailureService:
    """
    Usage:
        service = IngestionFailureService(store, processor)
        result = await service.ingest_webhook("pool-sensor", headers, payload)
        summary = await service.retry_pending(batch_size=50, max_attempts=5)
    """

    def __init__(
        self,
        store: FailureStore,
        processor: WebhookProcessor,
        *,
        backoff: Optional[BackoffStrategy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.processor = processor
        self.backoff = backoff or ExponentialBackoff()
        self._clock = clock

    async def ingest_webhook(
        self,
        provider: str,
        headers: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = headers or {}
        try:
            result = await self.processor(provider, headers, payload)
        except Exception as e:
            now = self._clock()
            failure = await self.store.add(
                provider, headers, payload, describe_error(e), now, now,
            )
            logger.warning(
                "Webhook ingestion failed for %s, queued for retry: %s", provider, e,
                extra={
                    "event": "integration.ingestion_failed",
                    "provider": provider,
                    "failure_id": failure.failure_id,
                },
            )
            return {
                "accepted": False,
                "ingested": 0,
                "queued_for_retry": True,
                "failure_id": failure.failure_id,
            }
        return {"accepted": True, "ingested": result or 0}

    async def retry_pending(
        self,
        batch_size: int = 50,
        max_attempts: int = 5,
        now: Optional[datetime] = None,
    ) -> RetrySummary:
        now = now or self._clock()
        summary = RetrySummary()

        for failure in await self.store.due(now, batch_size):
            summary.processed += 1
            try:
                outcome = await self._retry_one(failure, max_attempts, now)
            except Exception:
                # Bookkeeping failed; the entry stays as it was and is picked up again
                logger.exception(
                    "Could not record retry outcome for ingestion failure %s",
                    failure.failure_id,
                    extra={"failure_id": failure.failure_id, "provider": failure.provider},
                )
                continue
            setattr(summary, outcome.value, getattr(summary, outcome.value) + 1)

        return summary

    async def _retry_one(
        self,
        failure: IngestionFailure,
        max_attempts: int,
        now: datetime,
    ) -> FailureStatus:
        attempts = failure.attempts + 1
        try:
            await self.processor(failure.provider, failure.headers, failure.payload)
        except Exception as e:
            error = describe_error(e)
            if attempts >= max_attempts:
                await self.store.mark_dead(failure.failure_id, attempts, error, now)
                logger.error(
                    "Ingestion failure %s is dead after %d attempts: %s",
                    failure.failure_id, attempts, error,
                    extra={
                        "event": "integration.failure_dead",
                        "failure_id": failure.failure_id,
                        "provider": failure.provider,
                    },
                )
                return FailureStatus.DEAD

            next_at = now + self.backoff.next_delay(attempts)
            await self.store.mark_pending(failure.failure_id, attempts, error, next_at, now)
            logger.info(
                "Ingestion failure %s retry %d failed, next at %s",
                failure.failure_id, attempts, next_at.isoformat(),
                extra={"failure_id": failure.failure_id, "provider": failure.provider},
            )
            return FailureStatus.PENDING

        await self.store.mark_resolved(failure.failure_id, attempts, now)
        return FailureStatus.RESOLVED

    async def list_failures(
        self,
        status: Optional[FailureStatus] = None,
        limit: int = 100,
    ) -> List[IngestionFailure]:
        return await self.store.list(status, limit)
