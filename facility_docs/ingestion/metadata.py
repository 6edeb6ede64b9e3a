"""Validates client-declared document metadata before any bytes are staged."""

from datetime import date, datetime
from typing import Any

from facility_docs.ingestion.exceptions import (
    InvalidCategoryError,
    InvalidFieldError,
    MissingRequiredFieldError,
)
from facility_docs.ingestion.models import (
    Category,
    DeclaredMetadata,
    MetadataUpdate,
    ValidatedMetadata,
)
from facility_docs.ingestion.storage import declared_extension

_MAX_TITLE_LENGTH = 255
_MAX_TAGS = 50
_MAX_TAG_LENGTH = 64


def validate_metadata(metadata: DeclaredMetadata) -> ValidatedMetadata:
    """Validate declared metadata and normalize it.

    Raises:
        MissingRequiredFieldError: title, category or filename is absent.
        InvalidCategoryError: category is not in the allow-list.
        InvalidFieldError: an optional field is malformed.
    """
    title = _build_title(metadata.title)
    category = _build_category(metadata.category)
    filename = _build_filename(metadata.filename)
    return ValidatedMetadata(
        title=title,
        category=category,
        filename=filename,
        declared_extension=declared_extension(filename),
        declared_mime=_build_optional_text(metadata.mime_type, "mime_type"),
        description=_build_optional_text(metadata.description, "description"),
        facility_id=_build_optional_id(metadata.facility_id),
        resident_id=_build_optional_id(metadata.resident_id),
        expiry_date=_build_expiry_date(metadata.expiry_date),
        confidential=_build_confidential(metadata.confidential),
        tags=_build_tags(metadata.tags),
    )


def validate_update(update: MetadataUpdate) -> dict[str, Any]:
    """Validate a metadata edit and return the column changes it implies."""
    changes: dict[str, Any] = {}
    if update.title is not None:
        changes["title"] = _build_title(update.title)
    if update.description is not None:
        changes["description"] = _build_optional_text(update.description, "description")
    if update.category is not None:
        changes["category"] = _build_category(update.category)
    if update.tags is not None:
        changes["tags"] = _build_tags(update.tags)
    if update.clear_expiry_date:
        changes["expiry_date"] = None
    elif update.expiry_date is not None:
        changes["expiry_date"] = _build_expiry_date(update.expiry_date)
    if update.confidential is not None:
        changes["confidential"] = _build_confidential(update.confidential)
    return changes


def _build_title(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise MissingRequiredFieldError("title")
    title = raw.strip()
    if len(title) > _MAX_TITLE_LENGTH:
        raise InvalidFieldError("title", f"must be at most {_MAX_TITLE_LENGTH} characters")
    return title


def _build_category(raw: Any) -> Category:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise MissingRequiredFieldError("category")
    if isinstance(raw, Category):
        return raw
    try:
        return Category(str(raw).strip().lower())
    except ValueError:
        raise InvalidCategoryError(str(raw), Category.values()) from None


def _build_filename(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise MissingRequiredFieldError("filename")
    return raw.strip()


def _build_optional_text(raw: Any, field: str) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise InvalidFieldError(field, "must be a string")
    return raw.strip() or None


def _build_optional_id(raw: Any) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip().lower()
    return value or None


def _build_expiry_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        raise InvalidFieldError("expiry_date", "must be an ISO date (YYYY-MM-DD)")
    text = raw.strip()
    try:
        # Full timestamps are accepted, but only their date part is kept.
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidFieldError("expiry_date", "must be an ISO date (YYYY-MM-DD)") from None


def _build_confidential(raw: Any) -> bool:
    if not isinstance(raw, bool):
        raise InvalidFieldError("confidential", "must be a boolean")
    return raw


def _build_tags(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise InvalidFieldError("tags", "must be a list of strings")
    if len(raw) > _MAX_TAGS:
        raise InvalidFieldError("tags", f"must contain at most {_MAX_TAGS} entries")
    tags: list[str] = []
    for i, tag in enumerate(raw):
        if not isinstance(tag, str):
            raise InvalidFieldError("tags", f"entry at index {i} must be a string")
        tag = tag.strip()
        if len(tag) > _MAX_TAG_LENGTH:
            raise InvalidFieldError(
                "tags", f"entry at index {i} must be at most {_MAX_TAG_LENGTH} characters"
            )
        if tag:
            tags.append(tag)
    return tuple(tags)
