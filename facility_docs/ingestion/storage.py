import errno
import os
import re
import shutil
import uuid
from pathlib import Path, PurePath

from facility_docs.ingestion.models import StagedUpload

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^a-z0-9-]", re.IGNORECASE)
_MAX_STEM_LENGTH = 80
_FACILITY_LEVEL_DIR = "_facility"


def declared_extension(filename: str) -> str:
    """Lower-case extension of a client filename, without the dot ("" if none)."""
    return PurePath(_basename(filename)).suffix.lstrip(".").lower()


def _basename(filename: str) -> str:
    # Clients on Windows send backslash-separated paths.
    return filename.replace("\\", "/").rsplit("/", 1)[-1]


class DocumentStorage:
    """Canonical on-disk home for committed document bytes.

    Layout: ``{root}/{facility_id}/{resident_id or _facility}/{name}-{suffix}.{ext}``.
    Paths handed out and accepted are relative to ``root``.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    def canonical_filename(self, declared_filename: str, extension: str) -> str:
        stem = PurePath(_basename(declared_filename)).stem
        sanitized = _UNSAFE_NAME_CHARS.sub("_", stem).lower()[:_MAX_STEM_LENGTH] or "document"
        return f"{sanitized}-{uuid.uuid4().hex[:12]}.{extension}"

    def relative_path_for(
        self, facility_id: str, resident_id: str | None, file_name: str
    ) -> str:
        owner_dir = _safe_segment(resident_id) if resident_id else _FACILITY_LEVEL_DIR
        return f"{_safe_segment(facility_id)}/{owner_dir}/{file_name}"

    def resolve(self, relative_path: str) -> Path:
        candidate = (self._root / relative_path).resolve()
        root = self._root.resolve()
        if root not in candidate.parents:
            raise ValueError("Storage path escapes the storage root")
        return candidate

    def commit(self, staged: StagedUpload, relative_path: str) -> Path:
        """Move staged bytes to their canonical location.

        Raises:
            OSError: if the bytes cannot be moved.
        """
        destination = self.resolve(relative_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(staged.path, destination)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            # Staging and storage on different filesystems.
            shutil.move(str(staged.path), str(destination))
        return destination

    def delete(self, relative_path: str) -> bool:
        """Delete canonical bytes. Returns False if they were already missing."""
        path = self.resolve(relative_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True


def _safe_segment(value: str) -> str:
    return _UNSAFE_SEGMENT_CHARS.sub("_", value)
