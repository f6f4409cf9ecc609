"""Pending buffer and batch reconciler.

The buffered path stages samples that arrive outside the interactive
request/response cycle (bulk historical backfill, platform push events) and
applies them later in bounded drains.

Usage::

    buffer = PendingBuffer(store)
    await buffer.stage(device_id, raw, vendor, valid)

    reconciler = BatchReconciler(store, UpsertEngine(store))
    result = await reconciler.drain(device_id)
    logger.info("Drained %d, %d errors", result.processed_count, len(result.errors))

A drain picks at most ``batch_size`` unprocessed rows, oldest arrival first,
and pushes each through the same validate → normalize → upsert sequence as
the synchronous path.  ``processed`` flips only after a successful apply, so
a failed row is simply picked up again by a later drain.  If the apply
succeeds but marking fails, the next drain re-applies the row, which the
upsert absorbs as an amendment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from src.ingestion.base import PendingSample, RawSample, utc_now
from src.ingestion.config_loader import IngestionConfig, get_ingestion_config
from src.ingestion.errors import ErrorKind, ItemError, PersistenceError
from src.ingestion.normalizer import normalize
from src.ingestion.store import SampleStore
from src.ingestion.type_mapper import VendorType, lookup_vendor_type
from src.ingestion.upsert import UpsertEngine
from src.ingestion.validator import Invalid, Valid, validate_sample

logger = logging.getLogger("vitalsync.ingestion.pending")

_LABEL = "pending sample"


@dataclass
class DrainResult:
    """Outcome of one drain.

    Attributes:
        processed_count: Rows applied and marked processed.
        selected_count:  Rows picked up by this drain.
        errors:          One entry per row left unprocessed.
    """

    processed_count: int = 0
    selected_count: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class PendingBuffer:
    """Write side of the buffered path."""

    def __init__(self, store: SampleStore) -> None:
        self._store = store

    async def stage(
        self,
        device_config_id: str,
        raw: RawSample,
        vendor: VendorType,
        valid: Valid,
    ) -> PendingSample:
        """Persist a mapped, validated raw sample with ``processed = False``.

        Value and unit are kept in vendor form; normalization happens at
        drain time.

        Raises:
            PersistenceError: If the store write fails.
        """
        pending = PendingSample(
            device_config_id=device_config_id,
            data_type=vendor.canonical_type,
            value=float(raw.value),
            unit=raw.unit,
            start_time=valid.start,
            end_time=valid.end if valid.end != valid.start else None,
            source_app=raw.source_name,
            metadata=raw.enriched_metadata(),
        )
        return await self._store.add_pending(pending)


class BatchReconciler:
    """Pull-based drain of a device's pending samples.

    Args:
        store:  Store holding the pending rows.
        engine: Upsert engine applying them (normally over the same store).
        config: Supplies ``reconciler.batch_size`` and validation bounds.
        clock:  Reference time for re-validation.
    """

    def __init__(
        self,
        store: SampleStore,
        engine: UpsertEngine,
        config: IngestionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._engine = engine
        self._config = config or get_ingestion_config()
        self._clock = clock

    @property
    def batch_size(self) -> int:
        return self._config.reconciler.batch_size

    async def drain(self, device_config_id: str) -> DrainResult:
        """Apply up to ``batch_size`` unprocessed rows for one device.

        Raises:
            PersistenceError: If the pending rows cannot be listed at all.
        """
        rows = await self._store.list_pending(device_config_id, self.batch_size)
        result = DrainResult(selected_count=len(rows))

        for row in rows:
            error = await self._apply_one(row)
            if error is None:
                result.processed_count += 1
            else:
                logger.warning(
                    "Drain left pending sample %s unprocessed for %s: %s",
                    row.id, device_config_id, error.message,
                )
                result.errors.append(error)

        logger.info(
            "Drained %d/%d pending samples for %s (%d errors)",
            result.processed_count, result.selected_count, device_config_id, len(result.errors),
        )
        return result

    async def _apply_one(self, row: PendingSample) -> ItemError | None:
        vendor = lookup_vendor_type(row.vendor_type)
        if vendor is None or vendor.canonical_type is not row.data_type:
            return ItemError(
                row.id, ErrorKind.UNSUPPORTED_TYPE,
                f"staged type {row.vendor_type!r} does not map to {row.data_type.value}",
                "type", _LABEL,
            )

        end = row.end_time or row.start_time
        check = validate_sample(
            RawSample(
                type=row.vendor_type,
                value=row.value,
                unit=row.unit,
                start_date=row.start_time.isoformat(),
                end_date=end.isoformat(),
            ),
            vendor=vendor,
            now=self._clock(),
            config=self._config,
        )
        if isinstance(check, Invalid):
            return ItemError(row.id, ErrorKind.VALIDATION, check.reason, check.field, _LABEL)

        value, unit = normalize(row.data_type, row.value, row.unit, vendor.component)
        try:
            await self._engine.apply(
                row.device_config_id,
                row.data_type,
                row.start_time,
                value,
                unit,
                end_time=row.end_time,
                source_app=row.source_app,
                metadata=row.metadata,
            )
            await self._store.mark_processed(row.id)
        except PersistenceError as exc:
            return ItemError(row.id, ErrorKind.PERSISTENCE, f"store error: {exc}", None, _LABEL)
        return None
