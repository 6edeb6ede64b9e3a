import os
import tempfile
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from facility_docs.ingestion.exceptions import InputTooLargeError, MissingRequiredFieldError
from facility_docs.ingestion.models import StagedUpload
from facility_docs.logging.logger import Log

_STAGING_PREFIX = "upload-"
_STAGING_SUFFIX = ".part"

UploadStream = BinaryIO | Iterable[bytes]


class UploadStager:
    """Writes an incoming byte stream to a uniquely-named file in the staging dir."""

    DEFAULT_CHUNK_SIZE = 64 * 1024

    def __init__(self, staging_dir: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._staging_dir = staging_dir
        self._chunk_size = chunk_size

    def stage(
        self,
        stream: UploadStream,
        max_size: int,
        declared_filename: str,
        declared_mime: str | None = None,
    ) -> StagedUpload:
        """Copy ``stream`` into staging, never holding more than one chunk in memory.

        Raises:
            InputTooLargeError: as soon as more than ``max_size`` bytes are read.
            MissingRequiredFieldError: if the stream is empty.
            OSError: if the staging file cannot be written.
        """
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        handle = uuid.uuid4().hex
        fd, raw_path = tempfile.mkstemp(
            prefix=f"{_STAGING_PREFIX}{handle}-",
            suffix=_STAGING_SUFFIX,
            dir=self._staging_dir,
        )
        path = Path(raw_path)
        total = 0
        try:
            with os.fdopen(fd, "wb") as destination:
                for chunk in self._iter_chunks(stream):
                    total += len(chunk)
                    if total > max_size:
                        raise InputTooLargeError(max_size)
                    destination.write(chunk)
            if total == 0:
                raise MissingRequiredFieldError("file")
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        Log.debug("Staged upload", handle=handle, size_bytes=total)
        return StagedUpload(
            handle=handle,
            path=path,
            declared_filename=declared_filename,
            declared_mime=declared_mime,
            size_bytes=total,
        )

    def discard(self, staged: StagedUpload) -> bool:
        """Remove staged bytes. Idempotent; never raises.

        Returns:
            True if the staged file is gone afterwards (removed now or already absent).
        """
        try:
            staged.path.unlink(missing_ok=True)
        except OSError as exc:
            Log.error(
                f"Failed to remove staged upload: {exc}",
                handle=staged.handle,
                path=staged.path,
            )
            return False
        return True

    def sweep(self, older_than_seconds: int) -> int:
        """Delete staging files left behind by crashed pipelines. Returns the count removed."""
        if not self._staging_dir.exists():
            return 0
        cutoff = time.time() - older_than_seconds
        removed = 0
        for path in self._staging_dir.glob(f"{_STAGING_PREFIX}*{_STAGING_SUFFIX}"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)
                    removed += 1
            except OSError as exc:
                Log.warning(f"Could not sweep staging file: {exc}", path=path)
        if removed:
            Log.info(f"Swept {removed} stale staging files")
        return removed

    def _iter_chunks(self, stream: UploadStream) -> Iterable[bytes]:
        read = getattr(stream, "read", None)
        if callable(read):
            while True:
                chunk = read(self._chunk_size)
                if not chunk:
                    return
                yield chunk
        else:
            for chunk in stream:
                if chunk:
                    yield chunk
