"""
FastAPI route: inbound integration webhooks.

    POST /api/v1/integrations/{provider}/webhook

Deliveries that fail to ingest are stored in the dead-letter queue and
re-processed by the integration retry worker; the sender still gets a 202.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Path, Request

from backend.app.api.schemas import WebhookAck
from backend.app.dependencies import get_ingestion_failure_service
from backend.app.integrations.failures import IngestionFailureService

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])

# Not stored with dead-letter entries
DROPPED_HEADERS = {"authorization", "cookie", "content-length", "connection", "host"}


@router.post("/{provider}/webhook", status_code=202, response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    provider: str = Path(..., min_length=1, max_length=60),
    payload: Dict[str, Any] = Body(...),
    service: IngestionFailureService = Depends(get_ingestion_failure_service),
):
    headers = {k: v for k, v in request.headers.items() if k.lower() not in DROPPED_HEADERS}
    return await service.ingest_webhook(provider, headers, payload)
