"""Vitalsync health-data ingestion engine.

Vendor samples are mapped onto a closed set of canonical types, validated
against physiological bounds, normalized to canonical units and upserted by
``(device_config_id, data_type, start_time)``.  Two intake paths share that
pipeline: a synchronous ingest and a pending buffer drained in bounded
batches.

Core modules:
    base          — Canonical data models and the CanonicalType enum
    type_mapper   — Vendor type table (HealthKit identifiers)
    validator     — Ordered validation rules with physiological bounds
    normalizer    — Unit conversion and rounding
    upsert        — Insert-or-amend by identity key
    pending       — Pending buffer and batch reconciler
    sync_state    — Sync status and inferred permissions
    service       — IngestionService, the entry point for the API layer
    store         — Store ABCs and in-memory implementations
    postgres      — asyncpg-backed stores
    config_loader — Load/validate/reload ingestion_config.yaml
"""

from src.ingestion.base import (
    CanonicalSample,
    CanonicalType,
    DeviceConfig,
    PendingSample,
    RawSample,
    SyncSettings,
)
from src.ingestion.config_loader import IngestionConfig, get_ingestion_config
from src.ingestion.errors import DeviceConfigError, ErrorKind, ItemError, PersistenceError
from src.ingestion.service import IngestionService

__all__ = [
    "CanonicalType",
    "CanonicalSample",
    "PendingSample",
    "RawSample",
    "DeviceConfig",
    "SyncSettings",
    "IngestionConfig",
    "get_ingestion_config",
    "DeviceConfigError",
    "ErrorKind",
    "ItemError",
    "PersistenceError",
    "IngestionService",
]
