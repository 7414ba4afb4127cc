"""
Single-flight — coalesce concurrent calls for the same key into one task.

Usage:
    flights = SingleFlight()
    readings = await flights.do("loc-1", lambda: provider.fetch(...))

Callers arriving while a call for the key is in flight await the same
task. The key is released when the task finishes, so the next caller
starts a fresh call.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable


class SingleFlight:

    def __init__(self) -> None:
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        # One waiter being cancelled must not cancel the shared call
        return await asyncio.shield(task)
