"""
test_weather_store.py — Tests for the weather cache stores.

Covers:
    • merge_readings upsert semantics
    • InMemoryWeatherStore load / save
    • RedisWeatherStore key layout and transactional load / save (fake client)
    • SqlWeatherStore upsert statements and transaction boundaries

Run with:
    pytest tests/test_weather_store.py -v
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backend.app.weather.models import merge_readings
from backend.app.weather.store import (
    InMemoryWeatherStore,
    RedisWeatherStore,
    SqlWeatherStore,
    fetch_state_upsert,
    readings_upsert,
)

from conftest import T0, RecordingSessionFactory, compile_pg, reading


class FakePipeline:
    def __init__(self, client: "FakeRedis", transaction: bool):
        self.client = client
        self.transaction = transaction
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def hset(self, key, mapping):
        self.ops.append(("hset", key, mapping))

    def set(self, key, value):
        self.ops.append(("set", key, value))

    def hgetall(self, key):
        self.ops.append(("hgetall", key, None))

    def get(self, key):
        self.ops.append(("get", key, None))

    async def execute(self):
        self.client.executed.append((self.transaction, list(self.ops)))
        results = []
        for op, key, value in self.ops:
            if op == "hset":
                self.client.hashes.setdefault(key, {}).update(value)
                results.append(len(value))
            elif op == "set":
                self.client.strings[key] = value
                results.append(True)
            elif op == "hgetall":
                results.append(dict(self.client.hashes.get(key, {})))
            else:
                results.append(self.client.strings.get(key))
        return results


class FakeRedis:
    """
    Just enough of redis.asyncio.Redis (decode_responses=True).

    Commands only run through pipelines, so a pipeline's commands are
    never interleaved with another caller's.
    """

    def __init__(self):
        self.hashes = {}
        self.strings = {}
        self.executed = []

    async def hgetall(self, key):
        raise AssertionError("hgetall outside a transaction")

    async def get(self, key):
        raise AssertionError("get outside a transaction")

    def pipeline(self, transaction=True):
        return FakePipeline(self, transaction)


class TestMergeReadings:

    def test_incoming_overwrites_same_timestamp(self):
        merged = merge_readings([reading(1, temp=70.0)], [reading(1, temp=72.0)])
        assert len(merged) == 1
        assert merged[0].air_temp_f == 72.0

    def test_union_sorted_ascending(self):
        merged = merge_readings([reading(3), reading(1)], [reading(2)])
        assert [r.recorded_at.day for r in merged] == [1, 2, 3]

    def test_duplicates_within_incoming_last_wins(self):
        merged = merge_readings([], [reading(1, temp=60.0), reading(1, temp=61.0)])
        assert [r.air_temp_f for r in merged] == [61.0]


class TestInMemoryWeatherStore:

    @pytest.mark.asyncio
    async def test_unknown_key_is_empty(self):
        entry = await InMemoryWeatherStore().load("nope")
        assert entry.readings == []
        assert entry.last_fetch_at is None

    @pytest.mark.asyncio
    async def test_save_merges_and_sets_fetch_time(self):
        store = InMemoryWeatherStore()
        await store.save("loc", [reading(1, temp=70.0), reading(2)], T0)
        entry = await store.save("loc", [reading(1, temp=71.0)], T0 + timedelta(hours=1))

        assert entry.last_fetch_at == T0 + timedelta(hours=1)
        assert [r.air_temp_f for r in entry.readings] == [71.0, 80.0]

    @pytest.mark.asyncio
    async def test_loaded_entry_is_a_copy(self):
        store = InMemoryWeatherStore()
        await store.save("loc", [reading(1)], T0)
        entry = await store.load("loc")
        entry.readings.clear()

        assert len((await store.load("loc")).readings) == 1


class TestRedisWeatherStore:

    @pytest.mark.asyncio
    async def test_round_trip(self):
        client = FakeRedis()
        store = RedisWeatherStore(client)
        await store.save("loc", [reading(2), reading(1, uv_index=6.0)], T0)

        entry = await store.load("loc")
        assert [r.recorded_at.day for r in entry.readings] == [1, 2]
        assert entry.readings[0].uv_index == 6.0
        assert entry.last_fetch_at == T0

    @pytest.mark.asyncio
    async def test_key_layout(self):
        client = FakeRedis()
        await RedisWeatherStore(client, prefix="wx").save("loc", [reading(1)], T0)

        assert "wx:loc:readings" in client.hashes
        assert client.strings["wx:loc:last_fetch_at"] == T0.isoformat()
        stored = json.loads(next(iter(client.hashes["wx:loc:readings"].values())))
        assert stored["air_temp_f"] == 80.0

    @pytest.mark.asyncio
    async def test_readings_and_fetch_time_written_in_one_transaction(self):
        client = FakeRedis()
        await RedisWeatherStore(client).save("loc", [reading(1)], T0)

        transaction, ops = client.executed[0]
        assert transaction is True
        assert [op[0] for op in ops] == ["hset", "set"]

    @pytest.mark.asyncio
    async def test_empty_save_only_advances_fetch_time(self):
        client = FakeRedis()
        store = RedisWeatherStore(client)
        await store.save("loc", [reading(1)], T0)
        entry = await store.save("loc", [], T0 + timedelta(hours=2))

        assert len(entry.readings) == 1
        assert entry.last_fetch_at == T0 + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_unreadable_reading_is_dropped(self):
        client = FakeRedis()
        client.hashes["weather:loc:readings"] = {"x": "not json"}

        entry = await RedisWeatherStore(client).load("loc")

        assert entry.readings == []

    @pytest.mark.asyncio
    async def test_load_reads_both_keys_in_one_transaction(self):
        client = FakeRedis()
        store = RedisWeatherStore(client)
        await store.save("loc", [reading(1)], T0)
        client.executed.clear()

        await store.load("loc")

        assert len(client.executed) == 1
        transaction, ops = client.executed[0]
        assert transaction is True
        assert [(op[0], op[1]) for op in ops] == [
            ("hgetall", "weather:loc:readings"),
            ("get", "weather:loc:last_fetch_at"),
        ]

    @pytest.mark.asyncio
    async def test_save_racing_a_load_is_seen_whole(self):
        client = InterleavingRedis()
        store = RedisWeatherStore(client)
        await store.save("loc", [reading(1)], T0)
        client.before_read = lambda: store.save("loc", [reading(2)], T0 + timedelta(hours=1))

        entry = await store.load("loc")

        assert entry.last_fetch_at == T0 + timedelta(hours=1)
        assert [r.recorded_at.day for r in entry.readings] == [1, 2]


class InterleavingPipeline(FakePipeline):
    """Runs ``client.before_read`` once, right before a read pipeline executes."""

    async def execute(self):
        hook = self.client.before_read
        if hook is not None and any(op[0] == "hgetall" for op in self.ops):
            self.client.before_read = None
            await hook()
        return await super().execute()


class InterleavingRedis(FakeRedis):

    def __init__(self):
        super().__init__()
        self.before_read = None

    def pipeline(self, transaction=True):
        return InterleavingPipeline(self, transaction)


# ═══════════════════════════════════════════════════════════════════════════
# SQL store
# ═══════════════════════════════════════════════════════════════════════════

class TestReadingsUpsert:

    def test_conflict_target_and_updated_columns(self):
        sql, _ = compile_pg(readings_upsert("loc", [reading(1)]))

        assert sql.startswith("INSERT INTO weather_data")
        assert "ON CONFLICT (location_id, recorded_at) DO UPDATE SET" in sql
        for col in ("air_temp_f", "uv_index", "rainfall_in",
                    "wind_speed_mph", "humidity_percent", "pressure_inhg"):
            assert f"{col} = excluded.{col}" in sql
        assert "updated_at = now()" in sql

    def test_key_columns_are_not_overwritten(self):
        sql, _ = compile_pg(readings_upsert("loc", [reading(1)]))
        set_clause = sql.split("DO UPDATE SET", 1)[1]

        assert "location_id =" not in set_clause
        assert "recorded_at =" not in set_clause
        assert "created_at =" not in set_clause

    def test_one_row_per_reading(self):
        _, params = compile_pg(readings_upsert("loc", [reading(1, temp=70.0), reading(2, temp=75.0)]))
        values = list(params.values())

        assert reading(1).recorded_at in values
        assert reading(2).recorded_at in values
        assert 70.0 in values and 75.0 in values

    def test_fetch_state_upsert(self):
        sql, params = compile_pg(fetch_state_upsert("loc", T0))

        assert sql.startswith("INSERT INTO weather_fetch_state")
        assert "ON CONFLICT (location_id) DO UPDATE SET last_fetch_at = excluded.last_fetch_at" in sql
        assert T0 in list(params.values())


class TestSqlWeatherStore:

    @pytest.mark.asyncio
    async def test_readings_and_fetch_state_share_one_transaction(self):
        factory = RecordingSessionFactory()
        await SqlWeatherStore(factory).save("loc", [reading(1)], T0)

        executed = factory.executed()
        assert len(executed) == 2
        (readings_stmt, tx1), (state_stmt, tx2) = executed
        assert tx1 is not None and tx1 == tx2
        assert compile_pg(readings_stmt)[0].startswith("INSERT INTO weather_data")
        assert compile_pg(state_stmt)[0].startswith("INSERT INTO weather_fetch_state")

    @pytest.mark.asyncio
    async def test_empty_save_only_advances_fetch_state(self):
        factory = RecordingSessionFactory()
        await SqlWeatherStore(factory).save("loc", [], T0)

        executed = factory.executed()
        assert len(executed) == 1
        assert compile_pg(executed[0][0])[0].startswith("INSERT INTO weather_fetch_state")

    @pytest.mark.asyncio
    async def test_duplicate_timestamps_collapse_to_last(self):
        factory = RecordingSessionFactory()
        await SqlWeatherStore(factory).save(
            "loc", [reading(1, temp=60.0), reading(1, temp=61.0)], T0,
        )

        _, params = compile_pg(factory.executed()[0][0])
        values = list(params.values())
        assert values.count(reading(1).recorded_at) == 1
        assert 61.0 in values
        assert 60.0 not in values

    @pytest.mark.asyncio
    async def test_load_reads_fetch_time_before_readings(self):
        rows = [
            SimpleNamespace(
                recorded_at=datetime(2026, 6, 1),
                air_temp_f=81.0, uv_index=7.0, rainfall_in=0.0,
                wind_speed_mph=4.0, humidity_percent=55.0, pressure_inhg=30.0,
            ),
        ]
        factory = RecordingSessionFactory(rows=rows, scalar_value=datetime(2026, 6, 1, 11, 0))

        entry = await SqlWeatherStore(factory).load("loc")

        assert [method for method, _, _ in factory.calls] == ["scalar", "scalars"]
        assert "FROM weather_fetch_state" in compile_pg(factory.calls[0][1])[0]
        assert entry.last_fetch_at == T0 - timedelta(hours=1)
        assert entry.readings[0].recorded_at == reading(1).recorded_at
        assert entry.readings[0].air_temp_f == 81.0

    @pytest.mark.asyncio
    async def test_unknown_location_is_empty(self):
        entry = await SqlWeatherStore(RecordingSessionFactory()).load("loc")

        assert entry.readings == []
        assert entry.last_fetch_at is None
