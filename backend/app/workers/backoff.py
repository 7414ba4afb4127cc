"""
Retry backoff strategies for dead-letter entries.

``next_delay(attempt)`` gets the attempt count *after* the failure that is
being rescheduled (1 for the first failed retry).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta

from backend.app.core.config import Settings


class BackoffStrategy(ABC):

    @abstractmethod
    def next_delay(self, attempt: int) -> timedelta:
        ...


class FixedBackoff(BackoffStrategy):
    """Same delay every time."""

    def __init__(self, seconds: float):
        self.seconds = max(0.0, seconds)

    def next_delay(self, attempt: int) -> timedelta:
        return timedelta(seconds=self.seconds)


class ExponentialBackoff(BackoffStrategy):
    """
    base × 2^(attempt-1), capped.

    With the defaults (30 s base, 15 min cap): 30 s, 60 s, 120 s, 240 s,
    480 s, 900 s, 900 s, …
    """

    def __init__(self, base_seconds: float = 30, max_seconds: float = 900):
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds

    def next_delay(self, attempt: int) -> timedelta:
        exponent = min(max(0, attempt - 1), 32)
        seconds = self.base_seconds * (2 ** exponent)
        return timedelta(seconds=min(self.max_seconds, seconds))


def backoff_from_settings(cfg: Settings) -> BackoffStrategy:
    if cfg.INTEGRATION_RETRY_BACKOFF == "fixed":
        return FixedBackoff(cfg.INTEGRATION_RETRY_BACKOFF_BASE_SECONDS)
    return ExponentialBackoff(
        cfg.INTEGRATION_RETRY_BACKOFF_BASE_SECONDS,
        cfg.INTEGRATION_RETRY_BACKOFF_MAX_SECONDS,
    )
