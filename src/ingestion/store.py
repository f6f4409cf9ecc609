"""Persistence interfaces consumed by the ingestion engine.

The engine never holds a global client.  It receives a ``SampleStore`` and a
``DeviceRegistry`` at construction time, which lets tests and local runs use
the in-memory implementations below and production use
``src.ingestion.postgres``.

Implementations raise ``PersistenceError`` for any backend failure so callers
can classify it per item.
"""

from __future__ import annotations

import copy
import itertools
from abc import ABC, abstractmethod
from datetime import datetime

from src.ingestion.base import CanonicalSample, CanonicalType, DeviceConfig, PendingSample, merge_value


class SampleStore(ABC):
    """Canonical and pending sample storage, scoped by device and type."""

    # ------------------------------------------------------------------
    # Canonical samples
    # ------------------------------------------------------------------

    @abstractmethod
    async def find_sample(
        self, device_config_id: str, data_type: CanonicalType, start_time: datetime
    ) -> CanonicalSample | None:
        """Return the sample with this identity key, if any."""

    @abstractmethod
    async def insert_sample(self, sample: CanonicalSample) -> None:
        """Persist a new sample.

        If a concurrent writer inserted the same key first, implementations
        update that row instead of failing: the value is merged with
        ``merge_value`` and a missing end time keeps the stored one.
        """

    @abstractmethod
    async def update_sample(self, sample: CanonicalSample) -> None:
        """Overwrite the mutable fields of the sample with ``sample.key``."""

    @abstractmethod
    async def latest_sample(
        self, device_config_id: str, data_type: CanonicalType
    ) -> CanonicalSample | None:
        """Return the sample with the greatest start time for this type."""

    @abstractmethod
    async def types_synced_since(
        self, device_config_id: str, since: datetime
    ) -> set[CanonicalType]:
        """Return canonical types with at least one sample synced at or after ``since``."""

    # ------------------------------------------------------------------
    # Pending samples
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_pending(self, pending: PendingSample) -> PendingSample:
        """Stage a sample.  Returns it with ``id`` and ``arrival_seq`` assigned."""

    @abstractmethod
    async def list_pending(self, device_config_id: str, limit: int) -> list[PendingSample]:
        """Return up to ``limit`` unprocessed samples, oldest arrival first."""

    @abstractmethod
    async def mark_processed(self, pending_id: int) -> None:
        """Flip ``processed`` to True."""

    @abstractmethod
    async def count_pending(self, device_config_id: str) -> int:
        """Return the number of unprocessed samples for a device."""


class DeviceRegistry(ABC):
    """Read access to device registrations plus last-sync bookkeeping."""

    @abstractmethod
    async def get_device(self, device_config_id: str) -> DeviceConfig | None:
        """Return the registration, or None if it does not exist."""

    @abstractmethod
    async def touch_last_sync(self, device_config_id: str, synced_at: datetime) -> None:
        """Record a completed sync."""


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemorySampleStore(SampleStore):
    """Dict-backed store for tests and ``storage_backend=memory`` runs.

    Values are deep-copied on the way in and out so callers cannot mutate
    stored rows by accident, mirroring a real database round-trip.
    """

    def __init__(self) -> None:
        self._samples: dict[tuple[str, CanonicalType, datetime], CanonicalSample] = {}
        self._pending: dict[int, PendingSample] = {}
        self._ids = itertools.count(1)

    async def find_sample(
        self, device_config_id: str, data_type: CanonicalType, start_time: datetime
    ) -> CanonicalSample | None:
        found = self._samples.get((device_config_id, data_type, start_time))
        return copy.deepcopy(found) if found else None

    async def insert_sample(self, sample: CanonicalSample) -> None:
        stored = copy.deepcopy(sample)
        existing = self._samples.get(sample.key)
        if existing is not None:
            # same conflict rule as the Postgres upsert
            stored.value = merge_value(sample.data_type, existing.value, stored.value)
            if stored.end_time is None:
                stored.end_time = existing.end_time
        self._samples[sample.key] = stored

    async def update_sample(self, sample: CanonicalSample) -> None:
        self._samples[sample.key] = copy.deepcopy(sample)

    async def latest_sample(
        self, device_config_id: str, data_type: CanonicalType
    ) -> CanonicalSample | None:
        candidates = [
            s for s in self._samples.values()
            if s.device_config_id == device_config_id and s.data_type is data_type
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda s: s.start_time))

    async def types_synced_since(
        self, device_config_id: str, since: datetime
    ) -> set[CanonicalType]:
        return {
            s.data_type for s in self._samples.values()
            if s.device_config_id == device_config_id and s.synced_at >= since
        }

    async def add_pending(self, pending: PendingSample) -> PendingSample:
        seq = next(self._ids)
        stored = copy.deepcopy(pending)
        stored.id = seq
        stored.arrival_seq = seq
        self._pending[seq] = stored
        return copy.deepcopy(stored)

    async def list_pending(self, device_config_id: str, limit: int) -> list[PendingSample]:
        rows = sorted(
            (
                p for p in self._pending.values()
                if p.device_config_id == device_config_id and not p.processed
            ),
            key=lambda p: p.arrival_seq,
        )
        return [copy.deepcopy(p) for p in rows[:limit]]

    async def mark_processed(self, pending_id: int) -> None:
        self._pending[pending_id].processed = True

    async def count_pending(self, device_config_id: str) -> int:
        return sum(
            1 for p in self._pending.values()
            if p.device_config_id == device_config_id and not p.processed
        )

    # Introspection helpers for tests and the local dev server

    def all_samples(self) -> list[CanonicalSample]:
        return [copy.deepcopy(s) for s in self._samples.values()]

    def all_pending(self) -> list[PendingSample]:
        return [copy.deepcopy(p) for p in self._pending.values()]


class InMemoryDeviceRegistry(DeviceRegistry):
    """Dict-backed device registry."""

    def __init__(self, devices: list[DeviceConfig] | None = None) -> None:
        self._devices: dict[str, DeviceConfig] = {d.id: d for d in devices or []}

    async def get_device(self, device_config_id: str) -> DeviceConfig | None:
        found = self._devices.get(device_config_id)
        return copy.deepcopy(found) if found else None

    async def touch_last_sync(self, device_config_id: str, synced_at: datetime) -> None:
        device = self._devices.get(device_config_id)
        if device is not None:
            device.last_sync_at = synced_at
