"""
Freshness policy — decides whether cached weather can be served as-is.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .models import FreshnessDecision


def evaluate_freshness(
    last_fetch_at: Optional[datetime],
    ttl: timedelta,
    now: datetime,
) -> FreshnessDecision:
    """
    FRESH iff a fetch has happened and it is younger than ``ttl``.

    An age exactly equal to ``ttl`` is STALE.
    """
    if last_fetch_at is None:
        return FreshnessDecision.STALE
    if now - last_fetch_at < ttl:
        return FreshnessDecision.FRESH
    return FreshnessDecision.STALE


def is_fresh(last_fetch_at: Optional[datetime], ttl: timedelta, now: datetime) -> bool:
    return evaluate_freshness(last_fetch_at, ttl, now) is FreshnessDecision.FRESH
