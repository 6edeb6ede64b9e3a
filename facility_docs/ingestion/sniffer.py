"""Determines a file's true media type from its bytes alone.

Only leading-byte signatures are trusted. Container formats (ZIP, OLE2) are
refined by inspecting their member names (ZIP) or the root directory entries
(OLE2) so that Office documents can be told apart from arbitrary archives.
"""

import io
import struct
import zipfile
from pathlib import Path

from facility_docs.ingestion.models import UNKNOWN, KnownType, SniffResult

ZIP_SIGNATURE = b"PK\x03\x04"
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_OLE2_HEADER_SIZE = 512
_OLE2_DIR_ENTRY_SIZE = 128
_OLE2_ROOT_STORAGE = 5
_OLE2_NO_STREAM = 0xFFFFFFFF
_OLE2_END_OF_CHAIN = 0xFFFFFFFE
_OLE2_MAX_REGULAR_SECTOR = 0xFFFFFFFA

# (signature, offset, mime, extension); first match wins.
_SIGNATURES: tuple[tuple[bytes, int, str, str], ...] = (
    (b"%PDF-", 0, "application/pdf", "pdf"),
    (b"\x89PNG\r\n\x1a\n", 0, "image/png", "png"),
    (b"\xff\xd8\xff", 0, "image/jpeg", "jpg"),
    (b"GIF87a", 0, "image/gif", "gif"),
    (b"GIF89a", 0, "image/gif", "gif"),
    (b"\x7fELF", 0, "application/x-elf", "elf"),
    (b"\x1f\x8b\x08", 0, "application/gzip", "gz"),
    (b"7z\xbc\xaf\x27\x1c", 0, "application/x-7z-compressed", "7z"),
    (b"Rar!\x1a\x07", 0, "application/vnd.rar", "rar"),
    (b"II*\x00", 0, "image/tiff", "tif"),
    (b"MM\x00*", 0, "image/tiff", "tif"),
)

_OOXML_PREFIXES: tuple[tuple[str, str, str], ...] = (
    (
        "word/",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "docx",
    ),
    (
        "xl/",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "xlsx",
    ),
    (
        "ppt/",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "pptx",
    ),
)

# Stream names looked for among the OLE2 root storage's children.
_OLE2_STREAMS: tuple[tuple[str, str, str], ...] = (
    ("WordDocument", "application/msword", "doc"),
    ("Workbook", "application/vnd.ms-excel", "xls"),
    ("Book", "application/vnd.ms-excel", "xls"),
    ("PowerPoint Document", "application/vnd.ms-powerpoint", "ppt"),
)


def sniff(data: bytes) -> SniffResult:
    """Return the media type proven by ``data``'s signature, or ``UNKNOWN``."""
    if data.startswith(ZIP_SIGNATURE):
        return _sniff_zip(data)
    if data.startswith(OLE2_SIGNATURE):
        return _sniff_ole2(data)
    if _is_webp(data):
        return KnownType(mime="image/webp", extension="webp")
    if _is_pe_executable(data):
        return KnownType(mime="application/x-msdownload", extension="exe")
    for signature, offset, mime, extension in _SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return KnownType(mime=mime, extension=extension)
    return UNKNOWN


def sniff_file(path: Path) -> SniffResult:
    return sniff(path.read_bytes())


def _is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _is_pe_executable(data: bytes) -> bool:
    # "MZ" alone is too weak; follow e_lfanew to the "PE\0\0" header.
    if data[:2] != b"MZ" or len(data) < 0x40:
        return False
    pe_offset = int.from_bytes(data[0x3C:0x40], "little")
    return data[pe_offset:pe_offset + 4] == b"PE\x00\x00"


def _sniff_zip(data: bytes) -> SniffResult:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = archive.namelist()
    except zipfile.BadZipFile:
        return KnownType(mime="application/zip", extension="zip")
    if "[Content_Types].xml" in names:
        for prefix, mime, extension in _OOXML_PREFIXES:
            if any(name.startswith(prefix) for name in names):
                return KnownType(mime=mime, extension=extension)
    return KnownType(mime="application/zip", extension="zip")


def _sniff_ole2(data: bytes) -> SniffResult:
    # Only the root storage's own children count; embedded objects live in sub-storages.
    children = _ole2_root_children(data)
    for stream_name, mime, extension in _OLE2_STREAMS:
        if stream_name in children:
            return KnownType(mime=mime, extension=extension)
    return KnownType(mime="application/x-cfb", extension="cfb")


def _ole2_root_children(data: bytes) -> set[str]:
    """Names of the root storage's direct children, or an empty set if unreadable."""
    if len(data) < _OLE2_HEADER_SIZE:
        return set()
    sector_size = 1 << _u16(data, 0x1E)
    if sector_size not in (512, 4096):
        return set()

    fat = _ole2_fat(data, sector_size)
    directory = b"".join(
        _ole2_chain(data, sector_size, fat, _u32(data, 0x30))
    )
    root = _ole2_dir_entry(directory, 0)
    if root is None or root[0x42] != _OLE2_ROOT_STORAGE:
        return set()

    names: set[str] = set()
    pending = [_u32(root, 0x4C)]
    visited: set[int] = set()
    while pending:
        index = pending.pop()
        if index == _OLE2_NO_STREAM or index in visited:
            continue
        visited.add(index)
        entry = _ole2_dir_entry(directory, index)
        if entry is None:
            continue
        name_length = min(_u16(entry, 0x40), 64)
        names.add(entry[: max(name_length - 2, 0)].decode("utf-16-le", errors="replace"))
        pending.extend((_u32(entry, 0x44), _u32(entry, 0x48)))
    return names


def _ole2_fat(data: bytes, sector_size: int) -> list[int]:
    fat_sectors = list(struct.unpack_from("<109I", data, 0x4C))
    difat_sector = _u32(data, 0x44)
    seen: set[int] = set()
    while difat_sector < _OLE2_MAX_REGULAR_SECTOR and difat_sector not in seen:
        seen.add(difat_sector)
        block = _ole2_sector(data, sector_size, difat_sector)
        if block is None:
            break
        entries = _u32_array(block)
        fat_sectors.extend(entries[:-1])
        difat_sector = entries[-1]

    fat: list[int] = []
    for sector in fat_sectors:
        if sector >= _OLE2_MAX_REGULAR_SECTOR:
            continue
        block = _ole2_sector(data, sector_size, sector)
        if block is not None:
            fat.extend(_u32_array(block))
    return fat


def _ole2_chain(data: bytes, sector_size: int, fat: list[int], start: int) -> list[bytes]:
    blocks: list[bytes] = []
    seen: set[int] = set()
    sector = start
    while sector < _OLE2_MAX_REGULAR_SECTOR and sector not in seen:
        seen.add(sector)
        block = _ole2_sector(data, sector_size, sector)
        if block is None:
            break
        blocks.append(block)
        sector = fat[sector] if sector < len(fat) else _OLE2_END_OF_CHAIN
    return blocks


def _ole2_sector(data: bytes, sector_size: int, sector: int) -> bytes | None:
    start = (sector + 1) * sector_size
    block = data[start:start + sector_size]
    return block if len(block) == sector_size else None


def _ole2_dir_entry(directory: bytes, index: int) -> bytes | None:
    start = index * _OLE2_DIR_ENTRY_SIZE
    entry = directory[start:start + _OLE2_DIR_ENTRY_SIZE]
    return entry if len(entry) == _OLE2_DIR_ENTRY_SIZE else None


def _u16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 2], "little")


def _u32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], "little")


def _u32_array(block: bytes) -> list[int]:
    return list(struct.unpack(f"<{len(block) // 4}I", block))
