"""Allow-list policy over sniffed and declared file types.

The sniffed type is always consulted first, so a renamed or disguised payload
cannot pass by manipulating only the filename or the declared mime.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from facility_docs.ingestion.exceptions import (
    ExtensionNotAllowedError,
    TypeExtensionMismatchError,
    UnsupportedTypeError,
    UnverifiableTypeError,
)
from facility_docs.ingestion.models import KnownType, SniffResult
from facility_docs.logging.logger import Log

_DEFAULT_MIME_EXTENSIONS: dict[str, frozenset[str]] = {
    "image/jpeg": frozenset({"jpg", "jpeg"}),
    "image/png": frozenset({"png"}),
    "image/gif": frozenset({"gif"}),
    "image/webp": frozenset({"webp"}),
    "application/pdf": frozenset({"pdf"}),
    "application/msword": frozenset({"doc"}),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": frozenset(
        {"docx"}
    ),
    "application/vnd.ms-excel": frozenset({"xls"}),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": frozenset({"xlsx"}),
    "application/vnd.ms-powerpoint": frozenset({"ppt"}),
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": frozenset(
        {"pptx"}
    ),
    "text/plain": frozenset({"txt"}),
    "text/csv": frozenset({"csv"}),
}

# Formats with no reliable magic number.
_DEFAULT_SNIFF_EXEMPT: frozenset[str] = frozenset({"txt", "csv"})


@dataclass(frozen=True)
class TypePolicy:
    """Immutable allow-list: permitted mimes mapped to their permitted extensions."""

    mime_extensions: Mapping[str, frozenset[str]]
    sniff_exempt_extensions: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "mime_extensions", MappingProxyType(dict(self.mime_extensions))
        )

    @classmethod
    def default(cls) -> "TypePolicy":
        return cls(
            mime_extensions=_DEFAULT_MIME_EXTENSIONS,
            sniff_exempt_extensions=_DEFAULT_SNIFF_EXEMPT,
        )

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return frozenset().union(*self.mime_extensions.values())

    @property
    def sniff_required_extensions(self) -> frozenset[str]:
        return self.allowed_extensions - self.sniff_exempt_extensions

    def allows_mime(self, mime: str) -> bool:
        return mime in self.mime_extensions

    def extensions_for(self, mime: str) -> frozenset[str]:
        return self.mime_extensions.get(mime, frozenset())

    def mime_for_extension(self, extension: str) -> str | None:
        for mime, extensions in self.mime_extensions.items():
            if extension in extensions:
                return mime
        return None


class TypePolicyValidator:
    """Applies the type policy in a fixed order: sniff, extension, mismatch, verifiability."""

    def __init__(self, policy: TypePolicy) -> None:
        self._policy = policy

    def validate(
        self,
        declared_extension: str,
        declared_mime: str | None,
        sniff: SniffResult,
    ) -> KnownType:
        """Check a staged file against the policy.

        Returns:
            The resolved type: the sniffed type when one was detected, else the
            policy's mime for the declared extension.

        Raises:
            UnsupportedTypeError: sniffed mime is not permitted.
            ExtensionNotAllowedError: the effective extension is not permitted.
            TypeExtensionMismatchError: declared extension contradicts sniffed mime.
            UnverifiableTypeError: a signature-bearing format had no signature.
        """
        declared_extension = declared_extension.lower()

        if isinstance(sniff, KnownType) and not self._policy.allows_mime(sniff.mime):
            raise UnsupportedTypeError(sniff.mime)

        extension_to_check = (
            sniff.extension if isinstance(sniff, KnownType) else declared_extension
        )
        if extension_to_check not in self._policy.allowed_extensions:
            raise ExtensionNotAllowedError(extension_to_check)

        if isinstance(sniff, KnownType):
            if declared_extension not in self._policy.extensions_for(sniff.mime):
                raise TypeExtensionMismatchError(declared_extension, sniff.mime)
            self._warn_on_declared_mime(declared_mime, sniff.mime)
            return sniff

        if declared_extension in self._policy.sniff_required_extensions:
            raise UnverifiableTypeError(declared_extension)

        resolved_mime = self._policy.mime_for_extension(declared_extension)
        if resolved_mime is None:
            raise ExtensionNotAllowedError(declared_extension)
        self._warn_on_declared_mime(declared_mime, resolved_mime)
        return KnownType(mime=resolved_mime, extension=declared_extension)

    @staticmethod
    def _warn_on_declared_mime(declared_mime: str | None, resolved_mime: str) -> None:
        # The declared mime is never authoritative; a disagreement is only logged.
        if declared_mime and declared_mime.lower() != resolved_mime:
            Log.debug(
                "Declared mime differs from resolved type",
                declared_mime=declared_mime,
                resolved_mime=resolved_mime,
            )
