"""Health-data ingestion endpoints: sync ingest, pending buffer, read side."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from src.dependencies import CurrentUser, Ingestion
from src.ingestion.base import CanonicalType
from src.ingestion.errors import DeviceConfigError, PersistenceError
from src.ingestion.type_mapper import supported_types
from src.models.ingestion import (
    BatchRejected,
    DrainResponse,
    IngestResponse,
    ItemReportRead,
    LatestValueRead,
    PermissionsRead,
    SampleBatchIn,
    StageResponse,
    SupportedTypeRead,
    SyncStatusRead,
    ValidateRequest,
    ValidateResponse,
)

router = APIRouter(prefix="/health-data", tags=["health-data"])
logger = logging.getLogger("vitalsync.routers.ingestion")

_STATUS_BY_REASON = {
    DeviceConfigError.NOT_FOUND: 404,
    DeviceConfigError.WRONG_PLATFORM: 409,
    DeviceConfigError.INACTIVE: 409,
}


# ---------- Exception handlers (registered in main.create_app) ----------

async def device_config_error_handler(request: Request, exc: DeviceConfigError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    body = BatchRejected(errors=[str(exc)])
    return JSONResponse(
        status_code=_STATUS_BY_REASON.get(exc.reason, 409),
        content=body.model_dump(by_alias=True),
    )


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Storage unavailable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


def _parse_types(types: str | None) -> list[CanonicalType] | None:
    if not types:
        return None
    parsed: list[CanonicalType] = []
    for name in (t.strip() for t in types.split(",")):
        if not name:
            continue
        try:
            parsed.append(CanonicalType(name))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown data type: {name!r}") from None
    return parsed or None


# ---------- Synchronous path ----------

@router.post("/samples", response_model=IngestResponse)
async def ingest_samples(user: CurrentUser, service: Ingestion, body: SampleBatchIn) -> Any:
    result = await service.ingest(
        user.user_id, body.device_config_id, [s.to_raw() for s in body.samples]
    )
    return IngestResponse(
        success=result.success,
        processed_count=result.processed_count,
        inserted_count=result.inserted_count,
        updated_count=result.updated_count,
        errors=result.error_messages,
    )


# ---------- Buffered path ----------

@router.post("/pending", response_model=StageResponse, status_code=202)
async def stage_samples(user: CurrentUser, service: Ingestion, body: SampleBatchIn) -> Any:
    result = await service.stage(
        user.user_id, body.device_config_id, [s.to_raw() for s in body.samples]
    )
    return StageResponse(staged_count=result.staged_count, errors=result.error_messages)


@router.post("/pending/{device_config_id}/drain", response_model=DrainResponse)
async def drain_pending(device_config_id: str, user: CurrentUser, service: Ingestion) -> Any:
    result = await service.drain(user.user_id, device_config_id)
    return DrainResponse(
        processed_count=result.processed_count,
        selected_count=result.selected_count,
        errors=result.error_messages,
    )


# ---------- Read side ----------

@router.get("/sync-status/{device_config_id}", response_model=SyncStatusRead)
async def get_sync_status(device_config_id: str, user: CurrentUser, service: Ingestion) -> Any:
    state = await service.status(user.user_id, device_config_id)
    return SyncStatusRead(
        is_real_time_enabled=state.is_real_time_enabled,
        last_sync_at=state.last_sync_at,
        sync_frequency_minutes=state.sync_frequency_minutes,
        pending_count=state.pending_count,
    )


@router.get("/permissions/{device_config_id}", response_model=PermissionsRead)
async def get_permissions(device_config_id: str, user: CurrentUser, service: Ingestion) -> Any:
    state = await service.permissions(user.user_id, device_config_id)
    return PermissionsRead(
        granted=state.granted,
        denied=state.denied,
        has_permissions=state.has_permissions,
        window_days=state.window_days,
    )


@router.get("/latest/{device_config_id}", response_model=dict[str, LatestValueRead])
async def get_latest_values(
    device_config_id: str,
    user: CurrentUser,
    service: Ingestion,
    types: str | None = Query(default=None, description="Comma-separated canonical types"),
) -> Any:
    latest = await service.latest_values(user.user_id, device_config_id, _parse_types(types))
    return {
        data_type.value: LatestValueRead(
            value=v.value, unit=v.unit, timestamp=v.timestamp, source_app=v.source_app
        )
        for data_type, v in latest.items()
    }


@router.post("/validate", response_model=ValidateResponse)
async def validate_samples(user: CurrentUser, service: Ingestion, body: ValidateRequest) -> Any:
    reports = service.validate_batch([s.to_raw() for s in body.samples])
    valid = sum(1 for r in reports if r.is_valid)
    return ValidateResponse(
        valid_count=valid,
        invalid_count=len(reports) - valid,
        results=[
            ItemReportRead(
                index=r.index, is_valid=r.is_valid, errors=r.errors, canonical_type=r.canonical_type
            )
            for r in reports
        ],
    )


@router.get("/supported-types", response_model=list[SupportedTypeRead])
async def list_supported_types(user: CurrentUser) -> Any:
    return [
        SupportedTypeRead(
            vendor_type=vt.vendor_type,
            canonical_type=vt.canonical_type,
            display_name=vt.display_name,
            unit=vt.unit,
            category=vt.category,
            component=vt.component,
        )
        for vt in supported_types()
    ]
