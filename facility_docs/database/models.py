import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class FacilityRow:
    """Represents a row from the facilities table (subset of columns)."""

    id: str
    name: str
    active: bool


@dataclass(frozen=True)
class ResidentRow:
    """Represents a row from the residents table (subset of columns)."""

    id: str
    facility_id: str


def is_uuid(value: str) -> bool:
    """True if ``value`` parses as a UUID. Non-UUID ids cannot match any row."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True
