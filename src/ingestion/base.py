"""Canonical data models for the Vitalsync ingestion engine.

Every vendor payload is reduced to these types before it touches storage.
``CanonicalType`` is the closed set of data types the rest of the system
understands; vendor strings never travel past ``type_mapper``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Canonical types
# ---------------------------------------------------------------------------


class CanonicalType(str, Enum):
    """Internal data types every vendor type is mapped onto."""

    HEART_RATE = "heart_rate"
    STEPS = "steps"
    CALORIES = "calories"
    SLEEP = "sleep"
    WEIGHT = "weight"
    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_OXYGEN = "blood_oxygen"
    BODY_TEMPERATURE = "body_temperature"
    EXERCISE_SESSIONS = "exercise_sessions"
    DISTANCE = "distance"
    FLOORS_CLIMBED = "floors_climbed"


#: A stored value is a plain number, except blood pressure which is a
#: ``{"systolic": x, "diastolic": y}`` mapping (either key may be missing
#: until both components have arrived).
SampleValue = Union[float, dict[str, float]]


def merge_value(data_type: CanonicalType, current: SampleValue, incoming: SampleValue) -> SampleValue:
    """Combine a stored value with an incoming one.

    Blood-pressure components arrive separately and are merged key by key;
    every other type is replaced outright.
    """
    if (
        data_type is CanonicalType.BLOOD_PRESSURE
        and isinstance(current, dict)
        and isinstance(incoming, dict)
    ):
        return {**current, **incoming}
    return incoming


# ---------------------------------------------------------------------------
# Device registration
# ---------------------------------------------------------------------------


@dataclass
class SyncSettings:
    """Per-device sync preferences.

    Attributes:
        auto_sync:             True when the client pushes data in real time.
        sync_interval_minutes: Expected interval between client pushes.
        data_types:            Canonical types the user subscribed to.
    """

    auto_sync: bool = False
    sync_interval_minutes: int = 60
    data_types: list[CanonicalType] = field(default_factory=list)


@dataclass
class DeviceConfig:
    """One user's registration of one vendor platform.

    Owned by the device registry.  The ingestion engine reads it to scope a
    batch and only ever writes ``last_sync_at``.
    """

    id: str
    user_id: str
    platform: str
    is_active: bool = True
    sync_settings: SyncSettings = field(default_factory=SyncSettings)
    last_sync_at: datetime | None = None


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


@dataclass
class RawSample:
    """A vendor sample exactly as the client submitted it.

    Dates stay as strings here; parsing them is the validator's job so that a
    malformed date becomes a per-item error rather than a request failure.
    """

    type: str | None
    value: float | None
    unit: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    source_name: str | None = None
    source_version: str | None = None
    device: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawSample":
        """Build from the camelCase wire shape."""
        return cls(
            type=data.get("type"),
            value=data.get("value"),
            unit=data.get("unit"),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            source_name=data.get("sourceName"),
            source_version=data.get("sourceVersion"),
            device=data.get("device"),
            metadata=data.get("metadata"),
        )

    def enriched_metadata(self) -> dict[str, Any]:
        """Vendor metadata plus the fields we keep for provenance."""
        return {
            **(self.metadata or {}),
            "sourceVersion": self.source_version,
            "device": self.device,
            "originalType": self.type,
        }


@dataclass
class CanonicalSample:
    """Durable, normalized record.

    At most one exists per ``(device_config_id, data_type, start_time)``.

    Attributes:
        device_config_id: Owning device registration.
        data_type:        Canonical type.
        value:            Canonical value (see ``SampleValue``).
        unit:             Canonical unit string.
        start_time:       UTC start instant; part of the identity key.
        end_time:         UTC end instant, only set when it differs from start.
        source_app:       Name of the app that recorded the sample.
        metadata:         originalType, sourceVersion, device and vendor extras.
        synced_at:        When this row was last written.
    """

    device_config_id: str
    data_type: CanonicalType
    value: SampleValue
    unit: str
    start_time: datetime
    end_time: datetime | None = None
    source_app: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    synced_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, CanonicalType, datetime]:
        return (self.device_config_id, self.data_type, self.start_time)


@dataclass
class PendingSample:
    """A raw sample staged for deferred processing.

    ``value`` and ``unit`` are still in vendor form; the reconciler normalizes
    them at drain time.  ``processed`` is the only field ever mutated.
    """

    device_config_id: str
    data_type: CanonicalType
    value: float
    unit: str | None
    start_time: datetime
    end_time: datetime | None = None
    source_app: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    processed: bool = False
    arrival_seq: int | None = None
    id: int | None = None

    @property
    def vendor_type(self) -> str | None:
        return self.metadata.get("originalType")
