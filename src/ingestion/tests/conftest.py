"""Shared fixtures for ingestion engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.ingestion.base import CanonicalType, DeviceConfig, RawSample, SyncSettings
from src.ingestion.config_loader import IngestionConfig, load_ingestion_config
from src.ingestion.service import IngestionService
from src.ingestion.store import InMemoryDeviceRegistry, InMemorySampleStore

# Canonical test identities
TEST_USER_ID = "user_2abc123"
OTHER_USER_ID = "user_9xyz789"
DEVICE_ID = "dc_apple_watch"
INACTIVE_DEVICE_ID = "dc_apple_inactive"
GOOGLE_DEVICE_ID = "dc_google_fit"
FOREIGN_DEVICE_ID = "dc_someone_else"

# Fixed "now" for every clock-dependent test
TEST_NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return TEST_NOW


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def make_raw(
    type: str = "HKQuantityTypeIdentifierHeartRate",
    value: Any = 72,
    unit: str | None = "count/min",
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    **extra: Any,
) -> RawSample:
    """Build a RawSample an hour before TEST_NOW unless told otherwise."""
    start = start if start is not None else TEST_NOW - timedelta(hours=1)
    end = end if end is not None else start
    return RawSample(
        type=type,
        value=value,
        unit=unit,
        start_date=iso(start) if isinstance(start, datetime) else start,
        end_date=iso(end) if isinstance(end, datetime) else end,
        source_name=extra.pop("source_name", "Apple Watch"),
        **extra,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ingestion_config() -> IngestionConfig:
    """Load the real ingestion config for tests."""
    return load_ingestion_config()


# ---------------------------------------------------------------------------
# Store / registry / service
# ---------------------------------------------------------------------------


@pytest.fixture
def devices() -> list[DeviceConfig]:
    return [
        DeviceConfig(
            id=DEVICE_ID,
            user_id=TEST_USER_ID,
            platform="apple_health",
            sync_settings=SyncSettings(
                auto_sync=True,
                sync_interval_minutes=15,
                data_types=[CanonicalType.HEART_RATE, CanonicalType.STEPS, CanonicalType.SLEEP],
            ),
        ),
        DeviceConfig(
            id=INACTIVE_DEVICE_ID,
            user_id=TEST_USER_ID,
            platform="apple_health",
            is_active=False,
        ),
        DeviceConfig(id=GOOGLE_DEVICE_ID, user_id=TEST_USER_ID, platform="google_fit"),
        DeviceConfig(id=FOREIGN_DEVICE_ID, user_id=OTHER_USER_ID, platform="apple_health"),
    ]


@pytest.fixture
def store() -> InMemorySampleStore:
    return InMemorySampleStore()


@pytest.fixture
def registry(devices: list[DeviceConfig]) -> InMemoryDeviceRegistry:
    return InMemoryDeviceRegistry(devices)


@pytest.fixture
def service(
    store: InMemorySampleStore,
    registry: InMemoryDeviceRegistry,
    ingestion_config: IngestionConfig,
) -> IngestionService:
    return IngestionService(store, registry, config=ingestion_config, clock=fixed_clock)
