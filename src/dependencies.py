"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import get_settings
from src.ingestion.config_loader import get_ingestion_config, load_ingestion_config
from src.ingestion.postgres import PostgresDeviceRegistry, PostgresSampleStore
from src.ingestion.service import IngestionService
from src.ingestion.store import InMemoryDeviceRegistry, InMemorySampleStore

logger = logging.getLogger("vitalsync.dependencies")


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller, as vouched for by the upstream gateway."""

    user_id: str


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The trusted-gateway middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


@lru_cache
def get_ingestion_service() -> IngestionService:
    """Build the process-wide ingestion service for the configured backend.

    The service holds no per-request state, so one instance is shared.  With
    ``storage_backend=memory`` this also keeps the in-memory data alive for
    the lifetime of the process.
    """
    settings = get_settings()
    if settings.ingestion_config_path:
        config = load_ingestion_config(Path(settings.ingestion_config_path))
    else:
        config = get_ingestion_config()

    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage — data is lost on restart")
        return IngestionService(InMemorySampleStore(), InMemoryDeviceRegistry(), config=config)
    return IngestionService(PostgresSampleStore(), PostgresDeviceRegistry(), config=config)


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
