"""Tests for the Postgres store's query building and row mapping.

These run without a database: the pool helpers are patched out.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from src.ingestion.base import CanonicalSample, CanonicalType
from src.ingestion.errors import PersistenceError
from src.ingestion.postgres import (
    UPSERT_SAMPLE_SQL,
    PostgresDeviceRegistry,
    PostgresSampleStore,
    build_upsert_query,
)
from src.ingestion.tests.conftest import DEVICE_ID, TEST_NOW, TEST_USER_ID

START = datetime(2026, 2, 23, 8, 0, tzinfo=timezone.utc)


class TestBuildUpsertQuery:
    def test_basic_upsert(self) -> None:
        sql = build_upsert_query("t", ["a", "b", "c"], ["a"])
        assert sql == (
            "INSERT INTO t (a, b, c) VALUES ($1, $2, $3) "
            "ON CONFLICT (a) DO UPDATE SET b = EXCLUDED.b, c = EXCLUDED.c, updated_at = NOW()"
        )

    def test_override_expression(self) -> None:
        sql = build_upsert_query("t", ["a", "b"], ["a"], overrides={"b": "t.b + EXCLUDED.b"})
        assert "b = t.b + EXCLUDED.b" in sql

    def test_no_update_columns(self) -> None:
        sql = build_upsert_query("t", ["a"], ["a"])
        assert sql.endswith("DO NOTHING")

    def test_sample_upsert_targets_identity_key(self) -> None:
        assert "ON CONFLICT (device_config_id, data_type, start_time)" in UPSERT_SAMPLE_SQL
        assert "canonical_samples.value || EXCLUDED.value" in UPSERT_SAMPLE_SQL
        assert "COALESCE(EXCLUDED.end_time, canonical_samples.end_time)" in UPSERT_SAMPLE_SQL


class TestPostgresSampleStore:
    @pytest.mark.asyncio
    async def test_insert_serializes_json(self) -> None:
        sample = CanonicalSample(
            device_config_id=DEVICE_ID,
            data_type=CanonicalType.BLOOD_PRESSURE,
            value={"systolic": 120.0},
            unit="mmHg",
            start_time=START,
            metadata={"originalType": "HKQuantityTypeIdentifierBloodPressureSystolic"},
            synced_at=TEST_NOW,
        )
        with patch("src.ingestion.postgres.database.execute", new=AsyncMock()) as execute:
            await PostgresSampleStore().insert_sample(sample)

        args = execute.await_args.args
        assert args[0] == UPSERT_SAMPLE_SQL
        assert args[2] == "blood_pressure"
        assert json.loads(args[3]) == {"systolic": 120.0}
        assert json.loads(args[8])["originalType"].endswith("Systolic")

    @pytest.mark.asyncio
    async def test_find_decodes_row(self) -> None:
        row = {
            "device_config_id": DEVICE_ID,
            "data_type": "heart_rate",
            "value": "72.0",
            "unit": "bpm",
            "start_time": START,
            "end_time": None,
            "source_app": "Apple Watch",
            "metadata": '{"originalType": "HKQuantityTypeIdentifierHeartRate"}',
            "synced_at": TEST_NOW,
        }
        with patch("src.ingestion.postgres.database.fetchrow", new=AsyncMock(return_value=row)):
            sample = await PostgresSampleStore().find_sample(
                DEVICE_ID, CanonicalType.HEART_RATE, START
            )
        assert sample.data_type is CanonicalType.HEART_RATE
        assert sample.value == 72.0
        assert sample.metadata["originalType"] == "HKQuantityTypeIdentifierHeartRate"

    @pytest.mark.asyncio
    async def test_driver_errors_become_persistence_errors(self) -> None:
        failing = AsyncMock(side_effect=asyncpg.PostgresError("boom"))
        with patch("src.ingestion.postgres.database.fetch", new=failing):
            with pytest.raises(PersistenceError):
                await PostgresSampleStore().list_pending(DEVICE_ID, 1000)

    @pytest.mark.asyncio
    async def test_network_errors_become_persistence_errors(self) -> None:
        failing = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        with patch("src.ingestion.postgres.database.fetchval", new=failing):
            with pytest.raises(PersistenceError):
                await PostgresSampleStore().count_pending(DEVICE_ID)


class TestPostgresDeviceRegistry:
    @pytest.mark.asyncio
    async def test_get_device_parses_sync_settings(self) -> None:
        row = {
            "id": DEVICE_ID,
            "user_id": TEST_USER_ID,
            "platform": "apple_health",
            "is_active": True,
            "sync_settings": json.dumps(
                {"auto_sync": True, "sync_interval_minutes": 30, "data_types": ["steps", "bogus"]}
            ),
            "last_sync_at": None,
        }
        with patch("src.ingestion.postgres.database.fetchrow", new=AsyncMock(return_value=row)):
            device = await PostgresDeviceRegistry().get_device(DEVICE_ID)
        assert device.sync_settings.auto_sync is True
        assert device.sync_settings.sync_interval_minutes == 30
        assert device.sync_settings.data_types == [CanonicalType.STEPS]

    @pytest.mark.asyncio
    async def test_missing_device(self) -> None:
        with patch("src.ingestion.postgres.database.fetchrow", new=AsyncMock(return_value=None)):
            assert await PostgresDeviceRegistry().get_device("dc_missing") is None
