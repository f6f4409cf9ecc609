"""Pydantic models for the health-data ingestion API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Union

from pydantic import Field

from src.ingestion.base import CanonicalType, RawSample
from src.models.base import VitalsyncBase


# ---------- Requests ----------

class RawSampleIn(VitalsyncBase):
    """One vendor sample as the client sends it.

    Deliberately loose: a wrong value type or a malformed date must become a
    per-item error in the batch result, not a 422 for the whole request.
    """

    type: str | None = None
    value: Any = None
    unit: str | None = None
    start_date: Any = None
    end_date: Any = None
    source_name: str | None = None
    source_version: str | None = None
    device: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    def to_raw(self) -> RawSample:
        return RawSample(
            type=self.type,
            value=self.value,
            unit=self.unit,
            start_date=self.start_date,
            end_date=self.end_date,
            source_name=self.source_name,
            source_version=self.source_version,
            device=self.device,
            metadata=self.metadata,
        )


class SampleBatchIn(VitalsyncBase):
    device_config_id: str = Field(min_length=1)
    samples: list[RawSampleIn]


class ValidateRequest(VitalsyncBase):
    samples: list[RawSampleIn]


# ---------- Responses ----------

class IngestResponse(VitalsyncBase):
    success: bool = True
    processed_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    errors: list[str] = Field(default_factory=list)


class StageResponse(VitalsyncBase):
    success: bool = True
    staged_count: int = 0
    errors: list[str] = Field(default_factory=list)


class DrainResponse(VitalsyncBase):
    success: bool = True
    processed_count: int = 0
    selected_count: int = 0
    errors: list[str] = Field(default_factory=list)


class BatchRejected(VitalsyncBase):
    """Body returned when the device registration rejects a whole batch."""

    success: bool = False
    processed_count: int = 0
    errors: list[str]


class SyncStatusRead(VitalsyncBase):
    is_real_time_enabled: bool
    last_sync_at: datetime | None = None
    sync_frequency_minutes: int
    pending_count: int


class PermissionsRead(VitalsyncBase):
    """Inferred from recent writes; not the platform's actual grant state."""

    granted: list[CanonicalType]
    denied: list[CanonicalType]
    has_permissions: bool
    window_days: int
    inferred: bool = True


class LatestValueRead(VitalsyncBase):
    value: Union[float, dict[str, float]]
    unit: str
    timestamp: datetime
    source_app: str | None = None


class ItemReportRead(VitalsyncBase):
    index: int
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    canonical_type: CanonicalType | None = None


class ValidateResponse(VitalsyncBase):
    valid_count: int
    invalid_count: int
    results: list[ItemReportRead]


class SupportedTypeRead(VitalsyncBase):
    vendor_type: str
    canonical_type: CanonicalType
    display_name: str
    unit: str
    category: str
    component: str | None = None
