"""Periodic re-processing of dead-lettered integration webhooks."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from backend.app.integrations.failures import IngestionFailureService, RetrySummary

from .base import PeriodicWorker


class IntegrationRetryWorker(PeriodicWorker):
    name = "integration retry worker"
    event_prefix = "integration.retry_worker"

    def __init__(
        self,
        service: IngestionFailureService,
        *,
        enabled: bool,
        tick_seconds: float,
        batch_size: int,
        max_attempts: int,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(
            enabled=enabled,
            tick_seconds=tick_seconds,
            logger=logger or logging.getLogger(__name__),
        )
        self.service = service
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    async def tick(self) -> RetrySummary:
        return await self.service.retry_pending(self.batch_size, self.max_attempts)

    def log_tick(self, result: RetrySummary) -> None:
        if result.processed > 0:
            self.logger.info(
                "processed integration dead-letter retries",
                extra={"event": self._event("tick"), **result.to_dict()},
            )

    def start_log_fields(self) -> Dict[str, Any]:
        return {
            "tick_seconds": self.tick_seconds,
            "batch_size": self.batch_size,
            "max_attempts": self.max_attempts,
        }
