"""PostgreSQL implementations of the ingestion store interfaces.

Tables are defined in ``schema.sql`` next to this module.  Every call runs in
its own short transaction on the shared asyncpg pool
(``src.services.database``); no connection is held across a batch.

Canonical writes go through a single ``INSERT ... ON CONFLICT DO UPDATE`` so
that two writers racing on the same identity key both succeed and the later
commit wins.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

import asyncpg

from src.ingestion.base import (
    CanonicalSample,
    CanonicalType,
    DeviceConfig,
    PendingSample,
    SyncSettings,
)
from src.ingestion.errors import PersistenceError
from src.ingestion.store import DeviceRegistry, SampleStore
from src.services import database

logger = logging.getLogger("vitalsync.ingestion.postgres")

SAMPLES_TABLE = "canonical_samples"
PENDING_TABLE = "pending_samples"
DEVICES_TABLE = "device_configs"

_SAMPLE_COLUMNS = [
    "device_config_id",
    "data_type",
    "value",
    "unit",
    "start_time",
    "end_time",
    "source_app",
    "metadata",
    "synced_at",
]
_SAMPLE_KEY = ["device_config_id", "data_type", "start_time"]


# ---------------------------------------------------------------------------
# Query building
# ---------------------------------------------------------------------------


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    overrides: dict[str, str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    On conflict, non-key columns take the incoming (``EXCLUDED``) value
    unless ``overrides`` supplies a different SQL expression for them.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        overrides:        Column → SQL expression used instead of ``EXCLUDED.<col>``.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]
    overrides = overrides or {}

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = {overrides.get(col, f'EXCLUDED.{col}')}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


# Blood-pressure components merge into the stored object; an instantaneous
# amendment keeps the stored end time.
UPSERT_SAMPLE_SQL = build_upsert_query(
    SAMPLES_TABLE,
    _SAMPLE_COLUMNS,
    _SAMPLE_KEY,
    overrides={
        "value": (
            f"CASE WHEN {SAMPLES_TABLE}.data_type = 'blood_pressure' "
            f"THEN {SAMPLES_TABLE}.value || EXCLUDED.value ELSE EXCLUDED.value END"
        ),
        "end_time": f"COALESCE(EXCLUDED.end_time, {SAMPLES_TABLE}.end_time)",
    },
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _translate_errors(action: str) -> AsyncGenerator[None, None]:
    """Re-raise driver and network failures as ``PersistenceError``."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        logger.error("Database %s failed: %s", action, exc)
        raise PersistenceError(f"{action} failed: {exc}") from exc


def _load_json(raw: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    return json.loads(raw) if isinstance(raw, str) else raw


def _row_to_sample(row: asyncpg.Record) -> CanonicalSample:
    value = _load_json(row["value"])
    return CanonicalSample(
        device_config_id=row["device_config_id"],
        data_type=CanonicalType(row["data_type"]),
        value=value if isinstance(value, dict) else float(value),
        unit=row["unit"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        source_app=row["source_app"],
        metadata=_load_json(row["metadata"]) or {},
        synced_at=row["synced_at"],
    )


def _row_to_pending(row: asyncpg.Record) -> PendingSample:
    return PendingSample(
        id=row["pending_id"],
        arrival_seq=row["pending_id"],
        device_config_id=row["device_config_id"],
        data_type=CanonicalType(row["data_type"]),
        value=row["value"],
        unit=row["unit"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        source_app=row["source_app"],
        metadata=_load_json(row["metadata"]) or {},
        processed=row["processed"],
    )


def _parse_sync_settings(raw: Any) -> SyncSettings:
    data = _load_json(raw) or {}
    data_types: list[CanonicalType] = []
    for name in data.get("data_types", []):
        try:
            data_types.append(CanonicalType(name))
        except ValueError:
            logger.warning("Ignoring unknown subscribed data type %r", name)
    return SyncSettings(
        auto_sync=bool(data.get("auto_sync", False)),
        sync_interval_minutes=int(data.get("sync_interval_minutes", 60)),
        data_types=data_types,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class PostgresSampleStore(SampleStore):
    """``canonical_samples`` + ``pending_samples`` on the shared pool."""

    async def find_sample(
        self, device_config_id: str, data_type: CanonicalType, start_time: datetime
    ) -> CanonicalSample | None:
        async with _translate_errors("sample lookup"):
            row = await database.fetchrow(
                f"SELECT * FROM {SAMPLES_TABLE} "
                "WHERE device_config_id = $1 AND data_type = $2 AND start_time = $3",
                device_config_id, data_type.value, start_time,
            )
        return _row_to_sample(row) if row else None

    async def insert_sample(self, sample: CanonicalSample) -> None:
        async with _translate_errors("sample insert"):
            await database.execute(
                UPSERT_SAMPLE_SQL,
                sample.device_config_id,
                sample.data_type.value,
                json.dumps(sample.value),
                sample.unit,
                sample.start_time,
                sample.end_time,
                sample.source_app,
                json.dumps(sample.metadata),
                sample.synced_at,
            )

    async def update_sample(self, sample: CanonicalSample) -> None:
        async with _translate_errors("sample update"):
            await database.execute(
                f"UPDATE {SAMPLES_TABLE} SET value = $4, unit = $5, end_time = $6, "
                "source_app = $7, metadata = $8, synced_at = $9, updated_at = NOW() "
                "WHERE device_config_id = $1 AND data_type = $2 AND start_time = $3",
                sample.device_config_id,
                sample.data_type.value,
                sample.start_time,
                json.dumps(sample.value),
                sample.unit,
                sample.end_time,
                sample.source_app,
                json.dumps(sample.metadata),
                sample.synced_at,
            )

    async def latest_sample(
        self, device_config_id: str, data_type: CanonicalType
    ) -> CanonicalSample | None:
        async with _translate_errors("latest sample lookup"):
            row = await database.fetchrow(
                f"SELECT * FROM {SAMPLES_TABLE} "
                "WHERE device_config_id = $1 AND data_type = $2 "
                "ORDER BY start_time DESC LIMIT 1",
                device_config_id, data_type.value,
            )
        return _row_to_sample(row) if row else None

    async def types_synced_since(
        self, device_config_id: str, since: datetime
    ) -> set[CanonicalType]:
        async with _translate_errors("recent type lookup"):
            rows = await database.fetch(
                f"SELECT DISTINCT data_type FROM {SAMPLES_TABLE} "
                "WHERE device_config_id = $1 AND synced_at >= $2",
                device_config_id, since,
            )
        return {CanonicalType(r["data_type"]) for r in rows}

    async def add_pending(self, pending: PendingSample) -> PendingSample:
        async with _translate_errors("pending insert"):
            row = await database.fetchrow(
                f"INSERT INTO {PENDING_TABLE} (device_config_id, data_type, value, unit, "
                "start_time, end_time, source_app, metadata) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8) RETURNING *",
                pending.device_config_id,
                pending.data_type.value,
                pending.value,
                pending.unit,
                pending.start_time,
                pending.end_time,
                pending.source_app,
                json.dumps(pending.metadata),
            )
        return _row_to_pending(row)

    async def list_pending(self, device_config_id: str, limit: int) -> list[PendingSample]:
        async with _translate_errors("pending listing"):
            rows = await database.fetch(
                f"SELECT * FROM {PENDING_TABLE} "
                "WHERE device_config_id = $1 AND NOT processed "
                "ORDER BY pending_id LIMIT $2",
                device_config_id, limit,
            )
        return [_row_to_pending(r) for r in rows]

    async def mark_processed(self, pending_id: int) -> None:
        async with _translate_errors("pending update"):
            await database.execute(
                f"UPDATE {PENDING_TABLE} SET processed = TRUE WHERE pending_id = $1",
                pending_id,
            )

    async def count_pending(self, device_config_id: str) -> int:
        async with _translate_errors("pending count"):
            count = await database.fetchval(
                f"SELECT COUNT(*) FROM {PENDING_TABLE} "
                "WHERE device_config_id = $1 AND NOT processed",
                device_config_id,
            )
        return int(count or 0)


class PostgresDeviceRegistry(DeviceRegistry):
    """Reads ``device_configs`` and stamps ``last_sync_at``."""

    async def get_device(self, device_config_id: str) -> DeviceConfig | None:
        async with _translate_errors("device lookup"):
            row = await database.fetchrow(
                f"SELECT id, user_id, platform, is_active, sync_settings, last_sync_at "
                f"FROM {DEVICES_TABLE} WHERE id = $1",
                device_config_id,
            )
        if row is None:
            return None
        return DeviceConfig(
            id=row["id"],
            user_id=row["user_id"],
            platform=row["platform"],
            is_active=row["is_active"],
            sync_settings=_parse_sync_settings(row["sync_settings"]),
            last_sync_at=row["last_sync_at"],
        )

    async def touch_last_sync(self, device_config_id: str, synced_at: datetime) -> None:
        async with _translate_errors("last sync update"):
            await database.execute(
                f"UPDATE {DEVICES_TABLE} SET last_sync_at = $2, updated_at = NOW() WHERE id = $1",
                device_config_id, synced_at,
            )
