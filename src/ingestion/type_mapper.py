"""Vendor sample-type taxonomy.

This table is the only place that knows vendor identifiers.  Adding a vendor
type is a one-line edit here; nothing downstream switches on vendor strings.

``map_vendor_type`` never raises: an identifier missing from the table returns
``None`` so one unknown item can be skipped without failing its batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rapidfuzz import fuzz, process as rfprocess

from src.ingestion.base import CanonicalType

logger = logging.getLogger("vitalsync.ingestion.type_mapper")

APPLE_HEALTH = "apple_health"

#: CanonicalType → canonical unit.  Overrides whatever the vendor sent.
CANONICAL_UNITS: dict[CanonicalType, str] = {
    CanonicalType.HEART_RATE: "bpm",
    CanonicalType.STEPS: "count",
    CanonicalType.CALORIES: "kcal",
    CanonicalType.SLEEP: "minutes",
    CanonicalType.WEIGHT: "kg",
    CanonicalType.BLOOD_PRESSURE: "mmHg",
    CanonicalType.BLOOD_OXYGEN: "%",
    CanonicalType.BODY_TEMPERATURE: "°C",
    CanonicalType.EXERCISE_SESSIONS: "minutes",
    CanonicalType.DISTANCE: "km",
    CanonicalType.FLOORS_CLIMBED: "count",
}

SYSTOLIC = "systolic"
DIASTOLIC = "diastolic"


@dataclass(frozen=True)
class VendorType:
    """One row of the vendor taxonomy.

    Attributes:
        vendor_type:    Vendor identifier, e.g. ``HKQuantityTypeIdentifierHeartRate``.
        canonical_type: Internal type it maps onto.
        display_name:   Label shown in client type pickers.
        category:       Grouping for clients (vital, activity, wellness, body).
        component:      Blood-pressure component this vendor type carries.
    """

    vendor_type: str
    canonical_type: CanonicalType
    display_name: str
    category: str
    component: str | None = None

    @property
    def unit(self) -> str:
        return CANONICAL_UNITS[self.canonical_type]

    @property
    def bound_key(self) -> str:
        """Key into the physiological bounds table."""
        if self.component:
            return f"{self.canonical_type.value}_{self.component}"
        return self.canonical_type.value


_HEALTHKIT_TYPES: tuple[VendorType, ...] = (
    VendorType("HKQuantityTypeIdentifierHeartRate", CanonicalType.HEART_RATE, "Heart rate", "vital"),
    VendorType("HKQuantityTypeIdentifierStepCount", CanonicalType.STEPS, "Steps", "activity"),
    VendorType("HKQuantityTypeIdentifierActiveEnergyBurned", CanonicalType.CALORIES, "Active calories", "activity"),
    VendorType("HKCategoryTypeIdentifierSleepAnalysis", CanonicalType.SLEEP, "Sleep", "wellness"),
    VendorType("HKQuantityTypeIdentifierBodyMass", CanonicalType.WEIGHT, "Weight", "body"),
    VendorType(
        "HKQuantityTypeIdentifierBloodPressureSystolic",
        CanonicalType.BLOOD_PRESSURE, "Systolic blood pressure", "vital", SYSTOLIC,
    ),
    VendorType(
        "HKQuantityTypeIdentifierBloodPressureDiastolic",
        CanonicalType.BLOOD_PRESSURE, "Diastolic blood pressure", "vital", DIASTOLIC,
    ),
    VendorType("HKQuantityTypeIdentifierOxygenSaturation", CanonicalType.BLOOD_OXYGEN, "Blood oxygen saturation", "vital"),
    VendorType("HKQuantityTypeIdentifierBodyTemperature", CanonicalType.BODY_TEMPERATURE, "Body temperature", "vital"),
    VendorType("HKWorkoutTypeIdentifier", CanonicalType.EXERCISE_SESSIONS, "Workouts", "activity"),
    VendorType("HKQuantityTypeIdentifierDistanceWalkingRunning", CanonicalType.DISTANCE, "Walking + running distance", "activity"),
    VendorType("HKQuantityTypeIdentifierFlightsClimbed", CanonicalType.FLOORS_CLIMBED, "Flights climbed", "activity"),
)

# vendor id → entry
VENDOR_TYPES: dict[str, VendorType] = {vt.vendor_type: vt for vt in _HEALTHKIT_TYPES}


def lookup_vendor_type(vendor_type: str | None) -> VendorType | None:
    """Return the full taxonomy entry for a vendor identifier, or None."""
    if not vendor_type:
        return None
    return VENDOR_TYPES.get(vendor_type)


def map_vendor_type(vendor_type: str | None) -> CanonicalType | None:
    """Translate a vendor identifier into a canonical type.

    Args:
        vendor_type: Vendor identifier as received.

    Returns:
        The canonical type, or None when the identifier is unsupported.
    """
    entry = lookup_vendor_type(vendor_type)
    return entry.canonical_type if entry else None


def suggest_vendor_type(vendor_type: str, threshold: float = 85.0) -> str | None:
    """Return the closest known identifier for an unsupported one.

    Used only to enrich the error message for a typo such as
    ``HKQuantityTypeIdentifierHeartrate``.  Never changes the mapping result.
    """
    if not vendor_type:
        return None
    result = rfprocess.extractOne(
        vendor_type,
        list(VENDOR_TYPES),
        scorer=fuzz.ratio,
        score_cutoff=threshold,
    )
    if result is None:
        return None
    match, score, _ = result
    logger.debug("Closest vendor type for %r: %r (score=%.1f)", vendor_type, match, score)
    return match


def unsupported_type_message(vendor_type: str | None) -> str:
    message = f"unsupported data type: {vendor_type!r}"
    suggestion = suggest_vendor_type(vendor_type or "")
    if suggestion:
        message += f" (did you mean {suggestion!r}?)"
    return message


def supported_types() -> list[VendorType]:
    """Catalog of every supported vendor type, in table order."""
    return list(_HEALTHKIT_TYPES)
