"""Vitalsync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000

Set ``STORAGE_BACKEND=memory`` to run without a database.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.ingestion.errors import DeviceConfigError, PersistenceError
from src.middleware.auth import TrustedGatewayAuthMiddleware
from src.routers import health, ingestion
from src.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("vitalsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Vitalsync API v%s [%s, storage=%s]",
        settings.app_version,
        settings.environment,
        settings.storage_backend,
    )
    if settings.storage_backend == "postgres":
        await init_pool(settings)
    yield
    await close_pool()
    logger.info("Vitalsync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Vitalsync API",
        description=(
            "Wearable health-data ingestion — vendor samples mapped, validated, "
            "normalized and deduplicated into one canonical store."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware ----------

    # Gateway-forwarded user identity
    app.add_middleware(TrustedGatewayAuthMiddleware, settings=settings)

    # CORS handles preflight before auth sees it
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Error mapping ----------
    app.add_exception_handler(DeviceConfigError, ingestion.device_config_error_handler)
    app.add_exception_handler(PersistenceError, ingestion.persistence_error_handler)

    # ---------- Health check (always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(ingestion.router, prefix=v1_prefix)

    return app


app = create_app()
