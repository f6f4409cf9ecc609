"""Insert-or-amend of canonical samples.

Identity key: ``(device_config_id, data_type, start_time)``.  A second
delivery of the same key is treated as a vendor-side correction and
overwrites the stored row, so retried or duplicated deliveries converge on a
single record.

Concurrent writers (the sync path and a pending drain) are not serialized:
whichever write commits last wins, regardless of which one the vendor
considers fresher.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from src.ingestion.base import CanonicalSample, CanonicalType, SampleValue, merge_value, utc_now
from src.ingestion.store import SampleStore

logger = logging.getLogger("vitalsync.ingestion.upsert")


class ApplyOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


class UpsertEngine:
    """Apply normalized samples to a ``SampleStore``.

    Args:
        store: Target store.
        clock: Returns the ``synced_at`` instant; injectable for tests.
    """

    def __init__(self, store: SampleStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def apply(
        self,
        device_config_id: str,
        data_type: CanonicalType,
        start_time: datetime,
        value: SampleValue,
        unit: str,
        end_time: datetime | None = None,
        source_app: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ApplyOutcome:
        """Insert a new sample or amend the existing one for this key.

        ``end_time`` is only recorded when it differs from ``start_time``; an
        instantaneous amendment leaves a previously stored end time untouched.

        Raises:
            PersistenceError: If the store read or write fails.
        """
        end = end_time if end_time is not None and end_time != start_time else None
        now = self._clock()

        existing = await self._store.find_sample(device_config_id, data_type, start_time)
        if existing is None:
            await self._store.insert_sample(
                CanonicalSample(
                    device_config_id=device_config_id,
                    data_type=data_type,
                    value=value,
                    unit=unit,
                    start_time=start_time,
                    end_time=end,
                    source_app=source_app,
                    metadata=metadata or {},
                    synced_at=now,
                )
            )
            logger.debug(
                "Inserted %s sample for %s at %s", data_type.value, device_config_id, start_time
            )
            return ApplyOutcome.INSERTED

        existing.value = merge_value(data_type, existing.value, value)
        existing.unit = unit
        if end is not None:
            existing.end_time = end
        existing.source_app = source_app
        existing.metadata = metadata or {}
        existing.synced_at = now
        await self._store.update_sample(existing)
        logger.debug(
            "Amended %s sample for %s at %s", data_type.value, device_config_id, start_time
        )
        return ApplyOutcome.UPDATED
