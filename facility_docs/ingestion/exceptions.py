"""Error taxonomy for document ingestion.

Every ``IngestError`` carries a stable ``code`` and a user-facing message that
never includes filesystem paths. Only ``StorageFailureError`` is retryable.
"""

from typing import ClassVar


class DocumentsError(Exception):
    """Base exception for the documents subsystem."""

    code: ClassVar[str] = "DocumentsError"
    retryable: ClassVar[bool] = False
    default_message: ClassVar[str] = "The document request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class DocumentNotFoundError(DocumentsError):
    """Raised when a document id does not resolve to a stored record."""

    code = "NotFound"
    default_message = "Document not found"


class IngestError(DocumentsError):
    """Base exception for every rejection of an ``ingest`` call."""

    code = "IngestError"


class InputTooLargeError(IngestError):
    code = "InputTooLarge"

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        limit_mib = max_bytes / (1024 * 1024)
        super().__init__(f"File size exceeds the {limit_mib:g} MB limit")


class MissingRequiredFieldError(IngestError):
    code = "MissingRequiredField"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"'{field}' is required")


class InvalidFieldError(IngestError):
    """Raised when an optional field is present but malformed."""

    code = "InvalidField"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        super().__init__(f"'{field}' {reason}")


class InvalidCategoryError(IngestError):
    code = "InvalidCategory"

    def __init__(self, category: str, allowed: list[str]) -> None:
        self.category = category
        super().__init__(
            f"Invalid category '{category}'. Allowed categories: {', '.join(allowed)}"
        )


class TenancyError(IngestError):
    """Base for facility/resident consistency failures."""


class ResidentNotFoundError(TenancyError):
    code = "ResidentNotFound"
    default_message = "Resident not found"


class FacilityNotFoundError(TenancyError):
    code = "FacilityNotFound"
    default_message = "Facility not found or inactive"


class FacilityMismatchError(TenancyError):
    code = "FacilityMismatch"
    default_message = "The resident does not belong to the specified facility"


class MissingFacilityError(TenancyError):
    code = "MissingFacility"
    default_message = "Facility ID is required"


class AccessDeniedError(TenancyError):
    code = "AccessDenied"
    default_message = "Access denied: you can only manage documents for your facility"


class TypePolicyError(IngestError):
    """Base for content-type policy rejections."""


class UnsupportedTypeError(TypePolicyError):
    code = "UnsupportedType"

    def __init__(self, detected_mime: str) -> None:
        self.detected_mime = detected_mime
        super().__init__(
            f"File content is of type '{detected_mime}', which is not accepted. "
            "Allowed types: Images, PDF, Word, Excel, PowerPoint, Text, CSV"
        )


class ExtensionNotAllowedError(TypePolicyError):
    code = "ExtensionNotAllowed"

    def __init__(self, extension: str) -> None:
        self.extension = extension
        shown = f".{extension}" if extension else "(none)"
        super().__init__(f"File extension {shown} is not allowed")


class TypeExtensionMismatchError(TypePolicyError):
    code = "TypeExtensionMismatch"

    def __init__(self, declared_extension: str, detected_mime: str) -> None:
        self.declared_extension = declared_extension
        self.detected_mime = detected_mime
        super().__init__(
            f"File content ({detected_mime}) does not match its extension "
            f".{declared_extension}; rename the file or upload the correct document"
        )


class UnverifiableTypeError(TypePolicyError):
    code = "UnverifiableType"

    def __init__(self, declared_extension: str) -> None:
        self.declared_extension = declared_extension
        super().__init__(
            f"File content could not be verified as .{declared_extension}; "
            "the file may be corrupt or mislabeled"
        )


class DuplicateContentError(IngestError):
    """Raised when identical content already exists in the same scope."""

    code = "DuplicateContent"

    def __init__(self, existing_document_id: str) -> None:
        self.existing_document_id = existing_document_id
        super().__init__(
            "An identical document has already been uploaded "
            f"(existing document {existing_document_id})"
        )


class StorageFailureError(IngestError):
    """Transient byte-store or database failure. Safe to retry the whole call."""

    code = "StorageFailure"
    retryable = True
    default_message = "The document could not be stored; please try again"
