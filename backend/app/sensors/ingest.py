"""
Webhook processor for normalised sensor payloads.

Expected payload:
    {
        "pool_id": "<uuid>",
        "readings": [
            {"metric": "ph", "value": 7.4, "unit": null,
             "recorded_at": "2026-10-01T12:00:00Z", "quality": 90}
        ]
    }

Raises on malformed payloads or database errors so the caller can
dead-letter the delivery and retry it later.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .tables import SensorReadingRow

logger = logging.getLogger(__name__)


class SensorReadingIn(BaseModel):
    metric: str = Field(..., min_length=1, max_length=40)
    value: float
    unit: Optional[str] = Field(default=None, max_length=16)
    recorded_at: Optional[datetime] = None
    quality: Optional[int] = None
    device_id: Optional[str] = None


class SensorWebhookPayload(BaseModel):
    pool_id: str
    integration_id: Optional[str] = None
    readings: List[SensorReadingIn] = Field(default_factory=list)


class SensorReadingIngestor:
    """Callable with the WebhookProcessor signature; returns rows inserted."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def __call__(
        self,
        provider: str,
        headers: Dict[str, Any],
        payload: Optional[Dict[str, Any]],
    ) -> int:
        body = SensorWebhookPayload.model_validate(payload or {})
        if not body.readings:
            return 0

        rows = [
            {
                "pool_id": body.pool_id,
                "integration_id": body.integration_id,
                "device_id": r.device_id,
                "metric": r.metric,
                "value": r.value,
                "unit": r.unit,
                "quality": r.quality,
                "source": provider,
                "raw_payload": r.model_dump(mode="json"),
                **({"recorded_at": r.recorded_at} if r.recorded_at else {}),
            }
            for r in body.readings
        ]

        async with self._session_factory() as session:
            async with session.begin():
                for row in rows:
                    await session.execute(insert(SensorReadingRow).values(**row))

        logger.info("Ingested %d sensor readings from %s", len(rows), provider)
        return len(rows)
