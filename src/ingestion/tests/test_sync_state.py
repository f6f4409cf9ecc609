"""Tests for sync status and inferred permissions."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.ingestion.base import CanonicalType
from src.ingestion.config_loader import IngestionConfig
from src.ingestion.store import InMemoryDeviceRegistry, InMemorySampleStore
from src.ingestion.sync_state import InferredPermissionState, SyncStateTracker
from src.ingestion.upsert import UpsertEngine
from src.ingestion.tests.conftest import DEVICE_ID, TEST_NOW, fixed_clock


@pytest.fixture
def tracker(
    store: InMemorySampleStore,
    registry: InMemoryDeviceRegistry,
    ingestion_config: IngestionConfig,
) -> SyncStateTracker:
    return SyncStateTracker(store, registry, config=ingestion_config, clock=fixed_clock)


async def _write(store: InMemorySampleStore, data_type: CanonicalType, synced_days_ago: float) -> None:
    synced = TEST_NOW - timedelta(days=synced_days_ago)
    engine = UpsertEngine(store, clock=lambda: synced)
    await engine.apply(DEVICE_ID, data_type, synced - timedelta(hours=1), 1.0, "x")


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_reflects_settings(
        self, tracker: SyncStateTracker, registry: InMemoryDeviceRegistry
    ) -> None:
        device = await registry.get_device(DEVICE_ID)
        state = await tracker.status(device)
        assert state.is_real_time_enabled is True
        assert state.sync_frequency_minutes == 15
        assert state.last_sync_at is None
        assert state.pending_count == 0

    @pytest.mark.asyncio
    async def test_record_sync_stamps_registry(
        self, tracker: SyncStateTracker, registry: InMemoryDeviceRegistry
    ) -> None:
        stamped = await tracker.record_sync(DEVICE_ID)
        assert stamped == TEST_NOW
        device = await registry.get_device(DEVICE_ID)
        assert device.last_sync_at == TEST_NOW


class TestPermissions:
    @pytest.mark.asyncio
    async def test_recent_types_are_granted(
        self,
        tracker: SyncStateTracker,
        store: InMemorySampleStore,
        registry: InMemoryDeviceRegistry,
    ) -> None:
        await _write(store, CanonicalType.HEART_RATE, 1)
        await _write(store, CanonicalType.WEIGHT, 6.9)
        await _write(store, CanonicalType.STEPS, 8)  # outside the window

        state = await tracker.permissions(await registry.get_device(DEVICE_ID))
        assert isinstance(state, InferredPermissionState)
        assert state.granted == [CanonicalType.HEART_RATE, CanonicalType.WEIGHT]
        # subscribed: heart_rate, steps, sleep
        assert state.denied == [CanonicalType.STEPS, CanonicalType.SLEEP]
        assert state.has_permissions
        assert state.window_days == 7

    @pytest.mark.asyncio
    async def test_window_edge_is_inclusive(
        self,
        tracker: SyncStateTracker,
        store: InMemorySampleStore,
        registry: InMemoryDeviceRegistry,
    ) -> None:
        await _write(store, CanonicalType.SLEEP, 7)
        state = await tracker.permissions(await registry.get_device(DEVICE_ID))
        assert CanonicalType.SLEEP in state.granted

    @pytest.mark.asyncio
    async def test_no_recent_data(
        self, tracker: SyncStateTracker, registry: InMemoryDeviceRegistry
    ) -> None:
        state = await tracker.permissions(await registry.get_device(DEVICE_ID))
        assert state.granted == []
        assert state.denied == [CanonicalType.HEART_RATE, CanonicalType.STEPS, CanonicalType.SLEEP]
        assert not state.has_permissions
