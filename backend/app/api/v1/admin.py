"""
FastAPI route: operator endpoints for the integration dead-letter queue and
background workers. Admin role required.

    GET  /api/v1/admin/ingestion-failures        — list dead-letter entries
    POST /api/v1/admin/ingestion-failures/retry  — run one retry tick now
    GET  /api/v1/admin/workers                   — worker states
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.schemas import IngestionFailureOut, RetrySummaryOut, WorkerOut
from backend.app.dependencies import (
    get_ingestion_failure_service,
    get_integration_retry_worker,
    get_workers,
    require_admin,
)
from backend.app.integrations.failures import FailureStatus, IngestionFailureService
from backend.app.workers.base import PeriodicWorker
from backend.app.workers.integration_retry import IntegrationRetryWorker

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/ingestion-failures", response_model=List[IngestionFailureOut])
async def list_ingestion_failures(
    status: Optional[FailureStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    service: IngestionFailureService = Depends(get_ingestion_failure_service),
):
    failures = await service.list_failures(status, limit)
    return [f.to_dict() for f in failures]


@router.post("/ingestion-failures/retry", response_model=RetrySummaryOut)
async def retry_ingestion_failures(
    worker: IntegrationRetryWorker = Depends(get_integration_retry_worker),
):
    """
    Run one retry tick immediately.

    Goes through the worker's overlap guard, so a tick that is already
    running is not duplicated; the response then reports ``skipped``.
    With the worker disabled the batch runs directly against the service.
    """
    if not worker.enabled:
        summary = await worker.service.retry_pending(worker.batch_size, worker.max_attempts)
        return summary.to_dict()

    summary = await worker.run_once()
    if summary is None:
        return RetrySummaryOut(skipped=True)
    return summary.to_dict()


@router.get("/workers", response_model=List[WorkerOut])
async def list_workers(workers: List[PeriodicWorker] = Depends(get_workers)):
    return [w.describe() for w in workers]
