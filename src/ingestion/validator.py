"""Structural and physiological validation of a single raw sample.

Rules run in a fixed order and stop at the first failure:

1. ``required``    — type, value, startDate and endDate are present
2. ``value_type``  — value is a finite number
3. ``date_format`` — startDate / endDate parse as ISO-8601 instants
4. ``date_order``  — endDate is not before startDate
5. ``future_date`` — startDate is not after the validation time
6. ``range``       — value lies inside the configured physiological bound

A failure is returned as an ``Invalid`` naming the rule and the field, and the
reason text is surfaced to the client verbatim.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from src.ingestion.base import RawSample, utc_now
from src.ingestion.config_loader import IngestionConfig, get_ingestion_config
from src.ingestion.type_mapper import VendorType, lookup_vendor_type

logger = logging.getLogger("vitalsync.ingestion.validator")


@dataclass(frozen=True)
class Valid:
    """Sample passed every rule.  Carries the parsed UTC instants."""

    start: datetime
    end: datetime

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    """Sample failed one rule.

    Attributes:
        rule:   Rule name (see module docstring).
        field:  Wire name of the offending field.
        reason: Human-readable description.
    """

    rule: str
    field: str
    reason: str

    @property
    def ok(self) -> bool:
        return False


ValidationResult = Union[Valid, Invalid]


def parse_instant(value: object) -> datetime | None:
    """Parse an ISO-8601 string to an aware UTC datetime.

    Naive strings are assumed to be UTC.  Returns None if unparseable.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _fmt(value: float) -> str:
    return f"{value:g}"


def validate_sample(
    raw: RawSample,
    vendor: VendorType | None = None,
    now: datetime | None = None,
    config: IngestionConfig | None = None,
) -> ValidationResult:
    """Check one raw sample.

    Args:
        raw:    The sample as received.
        vendor: Taxonomy entry for ``raw.type``; looked up when omitted.
        now:    Reference instant for the future-date rule (defaults to now).
        config: Bounds source (defaults to the global ingestion config).

    Returns:
        ``Valid`` with parsed instants, or ``Invalid`` for the first failing rule.
    """
    # 1. required fields
    for wire_name, value in (
        ("type", raw.type),
        ("value", raw.value),
        ("startDate", raw.start_date),
        ("endDate", raw.end_date),
    ):
        if value is None or value == "":
            return Invalid("required", wire_name, f"missing required field '{wire_name}'")

    # 2. numeric value
    if isinstance(raw.value, bool) or not isinstance(raw.value, (int, float)):
        return Invalid("value_type", "value", f"value must be a finite number, got {raw.value!r}")
    try:
        amount = float(raw.value)
    except OverflowError:
        return Invalid(
            "value_type", "value", "value must be a finite number, got an integer too large for a float"
        )
    if not math.isfinite(amount):
        return Invalid("value_type", "value", f"value must be a finite number, got {raw.value!r}")

    # 3. parseable dates
    start = parse_instant(raw.start_date)
    if start is None:
        return Invalid("date_format", "startDate", f"invalid startDate: {raw.start_date!r}")
    end = parse_instant(raw.end_date)
    if end is None:
        return Invalid("date_format", "endDate", f"invalid endDate: {raw.end_date!r}")

    # 4. ordering
    if end < start:
        return Invalid(
            "date_order",
            "endDate",
            f"endDate {raw.end_date} is before startDate {raw.start_date}",
        )

    # 5. not in the future
    reference = now or utc_now()
    if start > reference:
        return Invalid(
            "future_date",
            "startDate",
            f"startDate {raw.start_date} is in the future",
        )

    # 6. physiological range
    entry = vendor or lookup_vendor_type(raw.type)
    if entry is not None:
        cfg = config or get_ingestion_config()
        bound = cfg.bound(entry.bound_key)
        if bound is not None and not bound.contains(amount):
            return Invalid(
                "range",
                "value",
                f"{entry.bound_key} value {_fmt(amount)} is outside the valid range "
                f"{_fmt(bound.min)}-{_fmt(bound.max)}",
            )

    return Valid(start=start, end=end)
