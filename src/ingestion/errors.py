"""Error taxonomy for ingestion.

Only ``DeviceConfigError`` aborts a whole batch.  Everything else is captured
per item as an ``ItemError`` and returned in the batch result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DeviceConfigError(Exception):
    """The device registration cannot accept this batch.

    Attributes:
        reason: One of ``not_found``, ``wrong_platform``, ``inactive``.
    """

    NOT_FOUND = "not_found"
    WRONG_PLATFORM = "wrong_platform"
    INACTIVE = "inactive"

    def __init__(self, device_config_id: str, reason: str, message: str) -> None:
        super().__init__(message)
        self.device_config_id = device_config_id
        self.reason = reason


class PersistenceError(Exception):
    """A store read or write failed for a single operation."""


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNSUPPORTED_TYPE = "unsupported_type"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class ItemError:
    """Why one item of a batch was skipped.

    Attributes:
        index:   Position of the item in the submitted batch, or the pending
                 row id during a drain.
        kind:    Error classification.
        message: Human-readable reason, surfaced verbatim to the caller.
        field:   Offending field, when the failure is tied to one.
        label:   Noun used when rendering ("item", "pending sample").
    """

    index: int
    kind: ErrorKind
    message: str
    field: str | None = None
    label: str = "item"

    def __str__(self) -> str:
        return f"{self.label} {self.index}: {self.message}"
