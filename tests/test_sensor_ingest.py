"""
test_sensor_ingest.py — Tests for the sensor webhook processor.

Covers:
    • Payload validation
    • One INSERT per reading, all in one transaction
    • Malformed deliveries are dead-lettered by the ingestion service

Run with:
    pytest tests/test_sensor_ingest.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from backend.app.integrations.failures import IngestionFailureService
from backend.app.sensors.ingest import SensorReadingIngestor

from conftest import FakeClock, InMemoryFailureStore, RecordingSessionFactory, compile_pg

POOL_ID = "0b9c2f4e-8d21-4c7a-9f3e-2a1b0c9d8e7f"


def _payload(*readings):
    return {"pool_id": POOL_ID, "readings": list(readings)}


class TestSensorReadingIngestor:

    @pytest.mark.asyncio
    async def test_inserts_every_reading_in_one_transaction(self):
        factory = RecordingSessionFactory()
        ingest = SensorReadingIngestor(factory)

        count = await ingest("pool-sensor", {}, _payload(
            {"metric": "ph", "value": 7.4, "recorded_at": "2026-10-01T12:00:00Z"},
            {"metric": "chlorine", "value": 2.1, "unit": "ppm"},
        ))

        assert count == 2
        executed = factory.executed()
        assert len(executed) == 2
        assert {tx for _, tx in executed} == {1}

        sql, params = compile_pg(executed[0][0])
        assert sql.startswith("INSERT INTO sensor_readings")
        assert params["metric"] == "ph"
        assert params["source"] == "pool-sensor"
        assert params["pool_id"] == POOL_ID
        assert params["recorded_at"] == datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
        assert params["raw_payload"]["metric"] == "ph"

    @pytest.mark.asyncio
    async def test_missing_timestamp_uses_column_default(self):
        factory = RecordingSessionFactory()

        await SensorReadingIngestor(factory)("pool-sensor", {}, _payload(
            {"metric": "ph", "value": 7.4},
        ))

        _, params = compile_pg(factory.executed()[0][0])
        assert "recorded_at" not in params

    @pytest.mark.asyncio
    async def test_no_readings_touches_nothing(self):
        factory = RecordingSessionFactory()

        assert await SensorReadingIngestor(factory)("pool-sensor", {}, _payload()) == 0
        assert factory.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        None,
        {"readings": [{"metric": "ph", "value": 7.4}]},
        _payload({"metric": "", "value": 7.4}),
        _payload({"metric": "ph", "value": "acidic"}),
    ])
    async def test_malformed_payload_raises(self, payload):
        factory = RecordingSessionFactory()

        with pytest.raises(ValidationError):
            await SensorReadingIngestor(factory)("pool-sensor", {}, payload)
        assert factory.calls == []


class TestIngestWebhookWithSensorProcessor:

    @pytest.mark.asyncio
    async def test_malformed_delivery_is_dead_lettered(self):
        store = InMemoryFailureStore()
        service = IngestionFailureService(
            store, SensorReadingIngestor(RecordingSessionFactory()), clock=FakeClock(),
        )

        result = await service.ingest_webhook("pool-sensor", {}, {"readings": []})

        assert result["queued_for_retry"] is True
        assert store.entries[result["failure_id"]].provider == "pool-sensor"
