"""Per-device sync status and inferred data-type permissions.

No platform exposes its permission grants to us, so grants are *inferred*:
a canonical type counts as granted if at least one sample of that type was
written for the device within a trailing window (7 days by default).  A type
the user subscribed to but that produced nothing recently is reported as
denied, which may simply mean the user took no measurements.  Callers must
present this as an estimate, never as the platform's real permission state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from src.ingestion.base import CanonicalType, DeviceConfig, utc_now
from src.ingestion.config_loader import IngestionConfig, get_ingestion_config
from src.ingestion.store import DeviceRegistry, SampleStore

logger = logging.getLogger("vitalsync.ingestion.sync_state")


@dataclass
class SyncState:
    """Derived sync view for one device registration."""

    is_real_time_enabled: bool
    last_sync_at: datetime | None
    sync_frequency_minutes: int
    pending_count: int


@dataclass
class InferredPermissionState:
    """Heuristic grant/deny view derived from recent write activity.

    Attributes:
        granted:     Types written within the window.
        denied:      Subscribed types with no write within the window.
        window_days: Length of the trailing window used.
    """

    granted: list[CanonicalType] = field(default_factory=list)
    denied: list[CanonicalType] = field(default_factory=list)
    window_days: int = 7

    @property
    def has_permissions(self) -> bool:
        return bool(self.granted)


def _in_enum_order(types: set[CanonicalType]) -> list[CanonicalType]:
    return [t for t in CanonicalType if t in types]


class SyncStateTracker:
    """Read and update sync metadata for device registrations."""

    def __init__(
        self,
        store: SampleStore,
        registry: DeviceRegistry,
        config: IngestionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._config = config or get_ingestion_config()
        self._clock = clock

    async def status(self, device: DeviceConfig) -> SyncState:
        settings = device.sync_settings
        return SyncState(
            is_real_time_enabled=settings.auto_sync,
            last_sync_at=device.last_sync_at,
            sync_frequency_minutes=settings.sync_interval_minutes,
            pending_count=await self._store.count_pending(device.id),
        )

    async def permissions(self, device: DeviceConfig) -> InferredPermissionState:
        window_days = self._config.permissions.window_days
        since = self._clock() - timedelta(days=window_days)
        recent = await self._store.types_synced_since(device.id, since)
        subscribed = set(device.sync_settings.data_types)
        return InferredPermissionState(
            granted=_in_enum_order(recent),
            denied=_in_enum_order(subscribed - recent),
            window_days=window_days,
        )

    async def record_sync(self, device_config_id: str) -> datetime:
        """Stamp ``last_sync_at`` with the current time and return it."""
        now = self._clock()
        await self._registry.touch_last_sync(device_config_id, now)
        logger.debug("last_sync_at for %s set to %s", device_config_id, now)
        return now
