"""Periodic sensor reading retention sweep."""

from __future__ import annotations

import logging
from typing import Optional

from backend.app.sensors.retention import RetentionSummary, SensorRetentionService

from .base import PeriodicWorker

# First sweep shortly after startup rather than a full interval later
INITIAL_DELAY_SECONDS = 5.0


class SensorRetentionWorker(PeriodicWorker):
    name = "sensor retention worker"
    event_prefix = "sensor_retention.worker"

    def __init__(
        self,
        service: SensorRetentionService,
        *,
        enabled: bool,
        tick_seconds: float,
        initial_delay: float = INITIAL_DELAY_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(
            enabled=enabled,
            tick_seconds=tick_seconds,
            initial_delay=initial_delay,
            logger=logger or logging.getLogger(__name__),
        )
        self.service = service

    async def tick(self) -> RetentionSummary:
        return await self.service.apply_retention()

    def log_tick(self, result: RetentionSummary) -> None:
        self.logger.info(
            "completed sensor retention tick",
            extra={
                "event": self._event("tick"),
                "warmed_count": result.warmed_count,
                "purged_count": result.purged_count,
            },
        )
