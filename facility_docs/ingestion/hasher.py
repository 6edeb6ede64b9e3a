import hashlib
from pathlib import Path


class ContentHasher:
    """SHA-256 content digest used as document identity for deduplication."""

    DEFAULT_CHUNK_SIZE = 64 * 1024

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size

    def hash_file(self, path: Path) -> str:
        """Stream the file at ``path`` and return its hex digest."""
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(self._chunk_size), b""):
                digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()
