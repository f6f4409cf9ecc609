"""Value and unit canonicalisation.

``normalize`` is a pure function of its arguments.  Re-delivered samples are
re-normalized and overwrite the stored value, so any dependence on clock or
state would corrupt previously-correct rows.  Rounding goes through
``Decimal`` with ROUND_HALF_UP so results do not depend on binary float
artefacts (``2.675`` rounds to ``2.68``, not ``2.67``).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from src.ingestion.base import CanonicalType, SampleValue
from src.ingestion.type_mapper import CANONICAL_UNITS

_TWO_PLACES = Decimal("0.01")
_WHOLE = Decimal("1")


def _round(value: Decimal, quantum: Decimal) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def normalize(
    canonical_type: CanonicalType,
    raw_value: float,
    raw_unit: str | None = None,
    component: str | None = None,
) -> tuple[SampleValue, str]:
    """Convert a validated raw value into canonical value + unit.

    Args:
        canonical_type: Mapped canonical type.
        raw_value:      Value in the vendor's unit.
        raw_unit:       Vendor unit string.  Ignored; the canonical unit table wins.
        component:      Blood-pressure component (``systolic``/``diastolic``).

    Returns:
        ``(canonical_value, canonical_unit)``.  Blood pressure returns a
        one-key ``{component: value}`` mapping that the upsert merges.
    """
    unit = CANONICAL_UNITS[canonical_type]

    if canonical_type is CanonicalType.BLOOD_PRESSURE:
        return {component or "value": float(raw_value)}, unit

    amount = Decimal(str(raw_value))

    if canonical_type is CanonicalType.SLEEP:
        # seconds → whole minutes
        return int(_round(amount / 60, _WHOLE)), unit

    if canonical_type is CanonicalType.DISTANCE:
        # metres → kilometres
        return float(_round(amount / 1000, _TWO_PLACES)), unit

    return float(_round(amount, _TWO_PLACES)), unit
