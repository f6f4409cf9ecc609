"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Vitalsync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: str = "postgres"  # postgres | memory
    database_url: str = "postgresql://localhost:5432/vitalsync"
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10
    db_command_timeout_seconds: float = 30

    # --- Ingestion ---
    ingestion_config_path: str | None = None  # defaults to the bundled ingestion_config.yaml

    # --- Auth ---
    # Authentication happens upstream; the gateway forwards the verified user id here.
    trusted_user_header: str = "X-User-Id"

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
