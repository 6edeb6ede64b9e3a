from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path

from facility_docs.ingestion.exceptions import IngestError


class Category(str, Enum):
    """Fixed allow-list of document categories."""

    LICENSE = "license"
    INSURANCE = "insurance"
    COMPLIANCE = "compliance"
    MEDICAL = "medical"
    ADMINISTRATIVE = "administrative"
    LEGAL = "legal"
    FINANCIAL = "financial"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class PipelineState(str, Enum):
    RECEIVED = "received"
    STAGED = "staged"
    SNIFFED = "sniffed"
    TYPE_VALIDATED = "type_validated"
    TENANCY_VALIDATED = "tenancy_validated"
    HASHED = "hashed"
    DEDUP_CHECKED = "dedup_checked"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class KnownType:
    """Media type proven by a byte signature."""

    mime: str
    extension: str


@dataclass(frozen=True)
class UnknownType:
    """No signature matched. Expected for plain text and CSV."""


UNKNOWN = UnknownType()

SniffResult = KnownType | UnknownType


@dataclass(frozen=True)
class StagedUpload:
    """Uploaded bytes held in a uniquely-named temp file, not yet validated."""

    handle: str
    path: Path
    declared_filename: str
    declared_mime: str | None
    size_bytes: int


@dataclass(frozen=True)
class RequesterScope:
    """Facility scope of the requesting user.

    ``facility_id=None`` means the requester is unrestricted (admin).
    """

    user_id: str
    facility_id: str | None = None

    def __post_init__(self) -> None:
        # Ids are compared as lower-case UUID text, matching stored and declared ids.
        if self.facility_id is not None:
            object.__setattr__(self, "facility_id", self.facility_id.strip().lower())

    @property
    def unrestricted(self) -> bool:
        return self.facility_id is None

    @classmethod
    def unrestricted_user(cls, user_id: str) -> "RequesterScope":
        return cls(user_id=user_id, facility_id=None)

    @classmethod
    def for_facility(cls, user_id: str, facility_id: str) -> "RequesterScope":
        return cls(user_id=user_id, facility_id=facility_id)

    def can_access(self, facility_id: str) -> bool:
        return self.unrestricted or self.facility_id == facility_id.lower()


@dataclass(frozen=True)
class DeclaredMetadata:
    """Client-supplied metadata. Nothing here is trusted."""

    title: str
    category: str
    filename: str
    mime_type: str | None = None
    description: str | None = None
    facility_id: str | None = None
    resident_id: str | None = None
    expiry_date: str | date | None = None
    confidential: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ValidatedMetadata:
    title: str
    category: Category
    filename: str
    declared_extension: str
    declared_mime: str | None
    description: str | None
    facility_id: str | None
    resident_id: str | None
    expiry_date: date | None
    confidential: bool
    tags: tuple[str, ...]


@dataclass(frozen=True)
class MetadataUpdate:
    """Editable document fields. ``None`` leaves a field unchanged."""

    title: str | None = None
    description: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    expiry_date: str | date | None = None
    confidential: bool | None = None
    clear_expiry_date: bool = False


@dataclass(frozen=True)
class DedupScope:
    """Boundary for duplicate detection: the resident, else the facility."""

    facility_id: str
    resident_id: str | None = None

    @property
    def by_resident(self) -> bool:
        return self.resident_id is not None

    def describe(self) -> str:
        if self.resident_id is not None:
            return f"resident {self.resident_id}"
        return f"facility {self.facility_id}"


@dataclass(frozen=True)
class NewDocument:
    """A fully validated document ready to be reserved and committed."""

    id: str
    title: str
    description: str | None
    category: Category
    file_path: str
    file_name: str
    file_size: int
    mime_type: str
    file_hash: str
    facility_id: str
    resident_id: str | None
    uploaded_by: str
    expiry_date: date | None
    confidential: bool
    tags: tuple[str, ...]

    @property
    def scope(self) -> DedupScope:
        return DedupScope(facility_id=self.facility_id, resident_id=self.resident_id)


@dataclass(frozen=True)
class DocumentRecord:
    """Represents a row from the documents table."""

    id: str
    title: str
    description: str | None
    category: Category
    file_path: str
    file_name: str
    file_size: int
    mime_type: str
    file_hash: str
    facility_id: str
    resident_id: str | None
    uploaded_by: str
    expiry_date: date | None
    confidential: bool
    tags: tuple[str, ...]
    version: str = "1.0"
    active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ``ingest`` call: exactly one of document or error is set."""

    document: DocumentRecord | None = None
    error: IngestError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, document: DocumentRecord) -> "IngestResult":
        return cls(document=document)

    @classmethod
    def failure(cls, error: IngestError) -> "IngestResult":
        return cls(error=error)


@dataclass(frozen=True)
class RemoveResult:
    found: bool
    warnings: tuple[str, ...] = ()
