"""Bounds-checked little-endian reads over an in-memory buffer.

Every reader returns ``None`` instead of raising when the requested span does
not fit, so callers can stop parsing at the first short read.
"""

from __future__ import annotations

import struct
from typing import Optional

_UINT16 = struct.Struct("<H")
_UINT32 = struct.Struct("<I")


def _fits(data: bytes, offset: int, size: int) -> bool:
    return offset >= 0 and offset + size <= len(data)


def read_uint16(data: bytes, offset: int) -> Optional[int]:
    if not _fits(data, offset, 2):
        return None
    return _UINT16.unpack_from(data, offset)[0]


def read_uint32(data: bytes, offset: int) -> Optional[int]:
    if not _fits(data, offset, 4):
        return None
    return _UINT32.unpack_from(data, offset)[0]


def read_bytes(data: bytes, offset: int, length: int) -> Optional[bytes]:
    if length < 0 or not _fits(data, offset, length):
        return None
    return bytes(data[offset : offset + length])
