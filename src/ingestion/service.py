"""Ingestion service — the entry points the HTTP layer calls.

Per-item pipeline (synchronous path)::

    map vendor type → validate → normalize → upsert

Every entry point first resolves the device registration for the calling
user.  A registration problem raises ``DeviceConfigError`` before any item
runs.  Item-level problems never raise: each becomes an ``ItemError`` in the
result, and the remaining items still run (partial success).

The service keeps no state between calls.  Batches for different devices can
run concurrently; within a batch, items are applied one at a time with no
batch-wide lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Union

from src.ingestion.base import CanonicalType, DeviceConfig, RawSample, SampleValue, utc_now
from src.ingestion.config_loader import IngestionConfig, get_ingestion_config
from src.ingestion.errors import DeviceConfigError, ErrorKind, ItemError, PersistenceError
from src.ingestion.normalizer import normalize
from src.ingestion.pending import BatchReconciler, DrainResult, PendingBuffer
from src.ingestion.store import DeviceRegistry, SampleStore
from src.ingestion.sync_state import InferredPermissionState, SyncState, SyncStateTracker
from src.ingestion.type_mapper import (
    APPLE_HEALTH,
    VendorType,
    lookup_vendor_type,
    unsupported_type_message,
)
from src.ingestion.upsert import ApplyOutcome, UpsertEngine
from src.ingestion.validator import Invalid, Valid, validate_sample

logger = logging.getLogger("vitalsync.ingestion.service")

#: Types returned by latest_values() when the caller does not ask for any.
DEFAULT_LATEST_TYPES: tuple[CanonicalType, ...] = (
    CanonicalType.HEART_RATE,
    CanonicalType.STEPS,
    CanonicalType.WEIGHT,
    CanonicalType.BLOOD_PRESSURE,
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class BatchResult:
    """Outcome of a synchronous ingest.

    Attributes:
        success:         False only when the batch was rejected as a whole.
        processed_count: Items applied (inserted + updated).
        inserted_count:  Items that created a new record.
        updated_count:   Items that amended an existing record.
        errors:          One entry per skipped item.
    """

    success: bool = True
    processed_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


@dataclass
class StageResult:
    """Outcome of staging a batch on the buffered path."""

    staged_count: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


@dataclass
class LatestValue:
    value: SampleValue
    unit: str
    timestamp: datetime
    source_app: str | None


@dataclass
class ItemReport:
    """Dry-run verdict for one item."""

    index: int
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    canonical_type: CanonicalType | None = None


_Checked = Union[tuple[VendorType, Valid], ItemError]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class IngestionService:
    """Orchestrates mapping, validation, normalization and storage.

    Args:
        store:    Canonical + pending sample store.
        registry: Device registration source.
        config:   Ingestion config (defaults to the global singleton).
        clock:    Time source for validation, ``synced_at`` and ``last_sync_at``.
        platform: Platform slug this gateway serves.
    """

    def __init__(
        self,
        store: SampleStore,
        registry: DeviceRegistry,
        config: IngestionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        platform: str = APPLE_HEALTH,
    ) -> None:
        self._store = store
        self._registry = registry
        self._config = config or get_ingestion_config()
        self._clock = clock
        self._platform = platform
        self._engine = UpsertEngine(store, clock=clock)
        self._buffer = PendingBuffer(store)
        self._reconciler = BatchReconciler(store, self._engine, config=self._config, clock=clock)
        self._tracker = SyncStateTracker(store, registry, config=self._config, clock=clock)

    # ------------------------------------------------------------------
    # Device resolution
    # ------------------------------------------------------------------

    async def resolve_device(
        self, user_id: str, device_config_id: str, require_active: bool = True
    ) -> DeviceConfig:
        """Load a registration and check it may be used by ``user_id``.

        A registration owned by someone else is reported as not found.

        Raises:
            DeviceConfigError: Missing, foreign, wrong platform, or inactive.
            PersistenceError:  If the registry lookup fails.
        """
        device = await self._registry.get_device(device_config_id)
        if device is None or device.user_id != user_id:
            raise DeviceConfigError(
                device_config_id,
                DeviceConfigError.NOT_FOUND,
                f"device config {device_config_id} not found",
            )
        if device.platform != self._platform:
            raise DeviceConfigError(
                device_config_id,
                DeviceConfigError.WRONG_PLATFORM,
                f"device config {device_config_id} is registered for "
                f"'{device.platform}', not '{self._platform}'",
            )
        if device.platform not in self._config.platforms:
            raise DeviceConfigError(
                device_config_id,
                DeviceConfigError.WRONG_PLATFORM,
                f"platform '{device.platform}' is not enabled",
            )
        if require_active and not device.is_active:
            raise DeviceConfigError(
                device_config_id,
                DeviceConfigError.INACTIVE,
                f"device config {device_config_id} is inactive",
            )
        return device

    # ------------------------------------------------------------------
    # Per-item checks
    # ------------------------------------------------------------------

    def _check(self, index: int, raw: RawSample) -> _Checked:
        """Map and validate one item, returning the entry + parsed instants or an error."""
        vendor = lookup_vendor_type(raw.type)
        if raw.type and vendor is None:
            return ItemError(index, ErrorKind.UNSUPPORTED_TYPE, unsupported_type_message(raw.type), "type")

        verdict = validate_sample(raw, vendor=vendor, now=self._clock(), config=self._config)
        if isinstance(verdict, Invalid):
            return ItemError(index, ErrorKind.VALIDATION, verdict.reason, verdict.field)
        return vendor, verdict

    # ------------------------------------------------------------------
    # Synchronous path
    # ------------------------------------------------------------------

    async def ingest(
        self, user_id: str, device_config_id: str, samples: Iterable[RawSample]
    ) -> BatchResult:
        """Validate, normalize and upsert a batch immediately.

        Raises:
            DeviceConfigError: If the registration rejects the batch.
        """
        await self.resolve_device(user_id, device_config_id)
        result = BatchResult()

        for index, raw in enumerate(samples):
            checked = self._check(index, raw)
            if isinstance(checked, ItemError):
                logger.warning("Skipping %s for %s: %s", checked.label, device_config_id, checked)
                result.errors.append(checked)
                continue

            vendor, valid = checked
            value, unit = normalize(vendor.canonical_type, raw.value, raw.unit, vendor.component)
            try:
                outcome = await self._engine.apply(
                    device_config_id,
                    vendor.canonical_type,
                    valid.start,
                    value,
                    unit,
                    end_time=valid.end,
                    source_app=raw.source_name,
                    metadata=raw.enriched_metadata(),
                )
            except PersistenceError as exc:
                error = ItemError(index, ErrorKind.PERSISTENCE, f"store error: {exc}")
                logger.warning("Store write failed for %s: %s", device_config_id, error)
                result.errors.append(error)
                continue

            result.processed_count += 1
            if outcome is ApplyOutcome.INSERTED:
                result.inserted_count += 1
            else:
                result.updated_count += 1

        await self._record_sync(device_config_id)
        logger.info(
            "Ingested %d samples for %s (%d new, %d amended, %d errors)",
            result.processed_count, device_config_id,
            result.inserted_count, result.updated_count, len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Buffered path
    # ------------------------------------------------------------------

    async def stage(
        self, user_id: str, device_config_id: str, samples: Iterable[RawSample]
    ) -> StageResult:
        """Stage a batch for a later drain.

        Items are mapped and validated up front so a permanently invalid item
        never sits in the buffer blocking the drain window.

        Raises:
            DeviceConfigError: If the registration rejects the batch.
        """
        await self.resolve_device(user_id, device_config_id)
        result = StageResult()

        for index, raw in enumerate(samples):
            checked = self._check(index, raw)
            if isinstance(checked, ItemError):
                result.errors.append(checked)
                continue
            vendor, valid = checked
            try:
                await self._buffer.stage(device_config_id, raw, vendor, valid)
            except PersistenceError as exc:
                result.errors.append(ItemError(index, ErrorKind.PERSISTENCE, f"store error: {exc}"))
                continue
            result.staged_count += 1

        logger.info(
            "Staged %d samples for %s (%d rejected)",
            result.staged_count, device_config_id, len(result.errors),
        )
        return result

    async def drain(self, user_id: str, device_config_id: str) -> DrainResult:
        """Run one bounded drain of the device's pending samples.

        Raises:
            DeviceConfigError: If the registration is missing or foreign.
            PersistenceError:  If the pending rows cannot be listed.
        """
        await self.resolve_device(user_id, device_config_id, require_active=False)
        result = await self._reconciler.drain(device_config_id)
        if result.processed_count:
            await self._record_sync(device_config_id)
        return result

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def status(self, user_id: str, device_config_id: str) -> SyncState:
        device = await self.resolve_device(user_id, device_config_id)
        return await self._tracker.status(device)

    async def permissions(self, user_id: str, device_config_id: str) -> InferredPermissionState:
        device = await self.resolve_device(user_id, device_config_id, require_active=False)
        return await self._tracker.permissions(device)

    async def latest_values(
        self,
        user_id: str,
        device_config_id: str,
        types: Iterable[CanonicalType] | None = None,
    ) -> dict[CanonicalType, LatestValue]:
        """Most recent sample per requested type, by start time.

        Types with no stored sample are left out of the result.
        """
        await self.resolve_device(user_id, device_config_id, require_active=False)
        result: dict[CanonicalType, LatestValue] = {}
        for data_type in dict.fromkeys(types or DEFAULT_LATEST_TYPES):
            sample = await self._store.latest_sample(device_config_id, data_type)
            if sample is None:
                continue
            result[data_type] = LatestValue(
                value=sample.value,
                unit=sample.unit,
                timestamp=sample.start_time,
                source_app=sample.source_app,
            )
        return result

    def validate_batch(self, samples: Iterable[RawSample]) -> list[ItemReport]:
        """Dry run: report each item's verdict without touching storage."""
        reports: list[ItemReport] = []
        for index, raw in enumerate(samples):
            checked = self._check(index, raw)
            if isinstance(checked, ItemError):
                reports.append(ItemReport(index=index, is_valid=False, errors=[checked.message]))
            else:
                vendor, _ = checked
                reports.append(
                    ItemReport(index=index, is_valid=True, canonical_type=vendor.canonical_type)
                )
        return reports

    # ------------------------------------------------------------------

    async def _record_sync(self, device_config_id: str) -> None:
        # items are already committed at this point
        try:
            await self._tracker.record_sync(device_config_id)
        except PersistenceError as exc:
            logger.warning("Could not update last_sync_at for %s: %s", device_config_id, exc)
