from __future__ import annotations

from dataclasses import dataclass
import logging
import posixpath
from pathlib import Path
from typing import Optional, Union

from .binary import read_bytes, read_uint16, read_uint32
from .env import read_env_int
from .errors import CorruptEntry, DecompressionFailed, ExtractionFailed, InvalidEPUBStructure, InvalidZIPFile, MissingContent
from .inflate import decompress

logger = logging.getLogger("quire.archive")

EOCD_SIGNATURE = 0x06054B50
CENTRAL_DIR_SIGNATURE = 0x02014B50
LOCAL_FILE_SIGNATURE = 0x04034B50

EOCD_SIZE = 22
CENTRAL_DIR_HEADER_SIZE = 46
LOCAL_FILE_HEADER_SIZE = 30
MAX_COMMENT_SIZE = 65535

METHOD_STORED = 0
METHOD_DEFLATE = 8

MAX_ENTRIES_ENV = "QUIRE_MAX_ZIP_ENTRIES"
DEFAULT_MAX_ENTRIES = 10000


@dataclass(frozen=True)
class ZipEntry:
    path: str
    compressed_size: int
    uncompressed_size: int
    compression_method: int
    local_header_offset: int

    @property
    def is_directory(self) -> bool:
        return self.path.endswith("/")


def canonical_member(name: str) -> str:
    normalized = posixpath.normpath((name or "").replace("\\", "/")).lstrip("/")
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return "" if normalized in {"", ".", ".."} else normalized


class ZipArchive:
    """Read-only ZIP container over a fully loaded byte buffer.

    Only what EPUB needs is supported: stored and deflated entries in a single
    volume, no ZIP64 and no encryption.
    """

    def __init__(self, data: bytes) -> None:
        if len(data) < EOCD_SIZE or data[:2] != b"PK":
            raise InvalidZIPFile()
        self.data = data

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ZipArchive":
        try:
            raw = Path(path).read_bytes()
        except OSError as exc:
            raise ExtractionFailed(f"Failed to read file: {exc}") from exc
        return cls(raw)

    def find_eocd(self) -> Optional[int]:
        data = self.data
        search_end = len(data) - EOCD_SIZE
        search_start = max(0, len(data) - MAX_COMMENT_SIZE - EOCD_SIZE)
        signature = EOCD_SIGNATURE.to_bytes(4, "little")
        # rfind only matches spans that fit before the end bound.
        offset = data.rfind(signature, search_start, search_end + 4)
        if offset < 0:
            return None
        comment_length = read_uint16(data, offset + 20)
        if comment_length is None or offset + EOCD_SIZE + comment_length != len(data):
            logger.debug(
                "EOCD at %d has inconsistent comment length %r for %d bytes; accepting anyway",
                offset,
                comment_length,
                len(data),
            )
        return offset

    def entries(self) -> list[ZipEntry]:
        data = self.data
        eocd = self.find_eocd()
        if eocd is None:
            raise InvalidEPUBStructure("Could not find End of Central Directory record")

        total_entries = read_uint16(data, eocd + 10)
        central_dir_offset = read_uint32(data, eocd + 16)
        if total_entries is None or central_dir_offset is None:
            raise InvalidEPUBStructure(f"Could not read EOCD values at offset {eocd}")
        # The environment may only tighten the bound.
        if total_entries >= min(read_env_int(MAX_ENTRIES_ENV, DEFAULT_MAX_ENTRIES), DEFAULT_MAX_ENTRIES):
            raise InvalidZIPFile()
        if total_entries == 0:
            return []
        if central_dir_offset <= 0 or central_dir_offset > eocd:
            raise InvalidZIPFile()

        entries: list[ZipEntry] = []
        offset = central_dir_offset
        for _ in range(total_entries):
            entry, offset = self._read_central_entry(offset, eocd)
            if entry is None:
                logger.debug(
                    "central directory truncated after %d of %d entries",
                    len(entries),
                    total_entries,
                )
                break
            entries.append(entry)
        return entries

    def _read_central_entry(self, offset: int, limit: int) -> tuple[Optional[ZipEntry], int]:
        # The directory ends where the EOCD record begins.
        data = self.data
        if offset + CENTRAL_DIR_HEADER_SIZE > limit:
            return None, offset
        if read_uint32(data, offset) != CENTRAL_DIR_SIGNATURE:
            return None, offset

        method = read_uint16(data, offset + 10)
        compressed_size = read_uint32(data, offset + 20)
        uncompressed_size = read_uint32(data, offset + 24)
        name_length = read_uint16(data, offset + 28)
        extra_length = read_uint16(data, offset + 30)
        comment_length = read_uint16(data, offset + 32)
        local_offset = read_uint32(data, offset + 42)
        fields = (method, compressed_size, uncompressed_size, name_length, extra_length, comment_length, local_offset)
        if any(value is None for value in fields):
            return None, offset

        name_start = offset + CENTRAL_DIR_HEADER_SIZE
        raw_name = read_bytes(data, name_start, name_length)
        if raw_name is None or name_start + name_length > limit:
            return None, offset

        entry = ZipEntry(
            path=raw_name.decode("utf-8", errors="replace"),
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            compression_method=method,
            local_header_offset=local_offset,
        )
        return entry, name_start + name_length + extra_length + comment_length

    def find_entry(self, path: str, entries: Optional[list[ZipEntry]] = None) -> Optional[ZipEntry]:
        candidates = self.entries() if entries is None else entries
        for entry in candidates:
            if entry.path == path:
                return entry
        canonical = canonical_member(path)
        if not canonical:
            return None
        for entry in candidates:
            if canonical_member(entry.path) == canonical:
                return entry
        return None

    def extract_entry(self, entry: ZipEntry) -> bytes:
        data = self.data
        offset = entry.local_header_offset
        if offset + LOCAL_FILE_HEADER_SIZE > len(data):
            raise CorruptEntry(entry.path)
        if read_uint32(data, offset) != LOCAL_FILE_SIGNATURE:
            raise CorruptEntry(entry.path)
        # The local copies of these lengths can differ from the central directory.
        name_length = read_uint16(data, offset + 26)
        extra_length = read_uint16(data, offset + 28)
        if name_length is None or extra_length is None:
            raise CorruptEntry(entry.path)

        payload_start = offset + LOCAL_FILE_HEADER_SIZE + name_length + extra_length
        payload = read_bytes(data, payload_start, entry.compressed_size)
        if payload is None:
            raise CorruptEntry(entry.path)

        if entry.compression_method == METHOD_STORED:
            return payload
        if entry.compression_method == METHOD_DEFLATE:
            return decompress(payload, entry.uncompressed_size, path=entry.path)
        raise DecompressionFailed(
            f"Unsupported compression method {entry.compression_method} for {entry.path}"
        )

    def extract_file(self, path: str) -> bytes:
        entry = self.find_entry(path)
        if entry is None:
            raise MissingContent(path)
        return self.extract_entry(entry)

    def extract_all(self, destination: Union[str, Path]) -> None:
        root = Path(destination)
        for entry in self.entries():
            member = canonical_member(entry.path)
            if not member:
                logger.debug("skipping unsafe archive member %r", entry.path)
                continue
            target = root / member
            try:
                if entry.is_directory:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                payload = self.extract_entry(entry)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(payload)
            except OSError as exc:
                raise ExtractionFailed(f"Failed to write {member}: {exc}") from exc
