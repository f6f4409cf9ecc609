"""Load, validate, and hot-reload the ingestion configuration.

The config lives in ``ingestion_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_ingestion_config()`` to
re-read from disk after an admin update — no restart required.

Usage::

    from src.ingestion.config_loader import get_ingestion_config

    config = get_ingestion_config()
    bound = config.bound("heart_rate")          # Bound(min=30.0, max=250.0)
    config.reconciler.batch_size                # 1000
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("vitalsync.ingestion.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "ingestion_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bound:
    """Inclusive value range for one bound key."""

    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass
class ReconcilerConfig:
    """Pending-buffer drain settings."""

    batch_size: int = 1000


@dataclass
class PermissionConfig:
    """Inferred-permission heuristic settings."""

    window_days: int = 7


@dataclass
class IngestionConfig:
    """Complete, validated ingestion configuration.

    Attributes:
        version:              Config schema version string.
        platforms:            Platform slugs the gateway accepts.
        physiological_bounds: Bound key → inclusive range.
        reconciler:           Drain batch settings.
        permissions:          Permission inference settings.
    """

    version: str
    platforms: list[str]
    physiological_bounds: dict[str, Bound]
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    _raw: dict = field(default_factory=dict, repr=False)

    def bound(self, key: str) -> Bound | None:
        """Return the range for a bound key, or None if it is unbounded."""
        return self.physiological_bounds.get(key)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when ingestion_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Ingestion config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> IngestionConfig:
    """Validate the raw YAML dict and construct an IngestionConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Platforms ──
    platforms = raw.get("platforms") or []
    if not isinstance(platforms, list) or not platforms:
        errors.append("'platforms' must be a non-empty list")
        platforms = []

    # ── Physiological bounds ──
    bounds_raw = raw.get("physiological_bounds", {})
    if not bounds_raw:
        errors.append("'physiological_bounds' section is missing or empty")

    bounds: dict[str, Bound] = {}
    for key, cfg in (bounds_raw or {}).items():
        if not isinstance(cfg, dict) or "min" not in cfg or "max" not in cfg:
            errors.append(f"physiological_bounds.{key} must be a mapping with 'min' and 'max'")
            continue
        try:
            lo, hi = float(cfg["min"]), float(cfg["max"])
        except (TypeError, ValueError):
            errors.append(
                f"physiological_bounds.{key} min/max must be numbers, got {cfg!r}"
            )
            continue
        if lo > hi:
            errors.append(f"physiological_bounds.{key} has min {lo} > max {hi}")
            continue
        bounds[key] = Bound(min=lo, max=hi)

    # ── Reconciler ──
    rc_raw = raw.get("reconciler", {}) or {}
    batch_size = int(rc_raw.get("batch_size", 1000))
    if batch_size < 1:
        errors.append(f"reconciler.batch_size must be >= 1, got {batch_size}")

    # ── Permissions ──
    pm_raw = raw.get("permissions", {}) or {}
    window_days = int(pm_raw.get("window_days", 7))
    if window_days < 1:
        errors.append(f"permissions.window_days must be >= 1, got {window_days}")

    if errors:
        raise ConfigValidationError(
            f"ingestion_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return IngestionConfig(
        version=version,
        platforms=[str(p) for p in platforms],
        physiological_bounds=bounds,
        reconciler=ReconcilerConfig(batch_size=batch_size),
        permissions=PermissionConfig(window_days=window_days),
        _raw=raw,
    )


def load_ingestion_config(path: Path | None = None) -> IngestionConfig:
    """Load and validate the ingestion config from disk.

    Args:
        path: Override path to YAML. Uses the bundled ingestion_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded ingestion config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: IngestionConfig | None = None
_config_lock = threading.Lock()


def get_ingestion_config() -> IngestionConfig:
    """Return the global IngestionConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_ingestion_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_ingestion_config()
    return _config


def reload_ingestion_config(path: Path | None = None) -> IngestionConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_ingestion_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded ingestion config: %s → %s", old_version, new_config.version)
    return new_config
