"""
Periodic background worker with an explicit state machine.

═══════════════════════════════════════════════════════════════════════════
STATES
═══════════════════════════════════════════════════════════════════════════

    STOPPED ──start()──▶ SCHEDULED ──timer / run_once()──▶ TICKING
       ▲                    │  ▲                              │
       └──────stop()────────┘  └────────tick finished─────────┘

    start()     disabled → log, stay STOPPED; already started → no-op
    run_once()  disabled → None; TICKING → log skip, None (never queued)
    stop()      no further ticks; an in-flight tick runs to completion

run_once() may also be called while STOPPED (manual trigger); the worker
returns to STOPPED when that tick finishes.

Each tick runs in its own task so stop() can cancel the sleeping timer
loop without cancelling a tick that is halfway through a write.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional


class WorkerState(str, Enum):
    STOPPED = "stopped"
    SCHEDULED = "scheduled"
    TICKING = "ticking"


class PeriodicWorker(ABC):
    """Subclasses implement ``tick()`` and name their log events."""

    name: str = "worker"
    event_prefix: str = "worker"

    def __init__(
        self,
        *,
        enabled: bool,
        tick_seconds: float,
        initial_delay: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.enabled = enabled
        self.tick_seconds = max(1.0, float(tick_seconds))
        self.initial_delay = self.tick_seconds if initial_delay is None else max(0.0, initial_delay)
        self.logger = logger or logging.getLogger(f"{__name__}.{self.name}")

        self._state = WorkerState.STOPPED
        self._started = False
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self.ticks_completed = 0
        self.ticks_skipped = 0

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def started(self) -> bool:
        return self._started

    def _event(self, suffix: str) -> str:
        return f"{self.event_prefix}.{suffix}"

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "state": self._state.value,
            "tick_seconds": self.tick_seconds,
            "ticks_completed": self.ticks_completed,
            "ticks_skipped": self.ticks_skipped,
        }

    # ── Lifecycle ──

    def start(self) -> None:
        if not self.enabled:
            self.logger.info("%s disabled", self.name, extra={"event": self._event("disabled")})
            return
        if self._started:
            return

        self._started = True
        if self._state is WorkerState.STOPPED:
            self._state = WorkerState.SCHEDULED
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"{self.name}-loop")
        self.logger.info(
            "%s started", self.name,
            extra={"event": self._event("started"), **self.start_log_fields()},
        )

    async def stop(self) -> None:
        self._started = False

        loop_task, self._loop_task = self._loop_task, None
        if loop_task is not None:
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass

        tick_task = self._tick_task
        if tick_task is not None and not tick_task.done():
            await asyncio.wait([tick_task])

        self._state = WorkerState.STOPPED
        self.logger.info("%s stopped", self.name, extra={"event": self._event("stopped")})

    async def _run_loop(self) -> None:
        delay = self.initial_delay
        while self._started:
            await asyncio.sleep(delay)
            if not self._started:
                break
            await self.run_once()
            delay = self.tick_seconds

    # ── Ticks ──

    async def run_once(self) -> Optional[Any]:
        """Run one tick now. Returns the tick result, or None if skipped/failed."""
        if not self.enabled:
            return None
        if self._state is WorkerState.TICKING:
            self.ticks_skipped += 1
            self.logger.warning(
                "skipping overlapping %s tick", self.name,
                extra={"event": self._event("overlap_skipped")},
            )
            return None

        # Claimed before the first await, so no other caller can interleave
        self._state = WorkerState.TICKING
        self._tick_task = asyncio.create_task(self._guarded_tick(), name=f"{self.name}-tick")
        return await asyncio.shield(self._tick_task)

    async def _guarded_tick(self) -> Optional[Any]:
        try:
            result = await self.tick()
            self.ticks_completed += 1
            self.log_tick(result)
            return result
        except Exception:
            self.logger.exception(
                "%s tick failed", self.name,
                extra={"event": self._event("tick_failed")},
            )
            return None
        finally:
            self._state = WorkerState.SCHEDULED if self._started else WorkerState.STOPPED

    @abstractmethod
    async def tick(self) -> Any:
        ...

    def log_tick(self, result: Any) -> None:
        self.logger.info("%s tick completed", self.name, extra={"event": self._event("tick")})

    def start_log_fields(self) -> Dict[str, Any]:
        return {"tick_seconds": self.tick_seconds}
