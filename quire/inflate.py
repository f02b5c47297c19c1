from __future__ import annotations

import zlib

from .env import read_env_int
from .errors import DecompressionFailed

HEADROOM_ENV = "QUIRE_INFLATE_HEADROOM"
DEFAULT_HEADROOM = 4


def output_limit(compressed_size: int, expected_size: int) -> int:
    headroom = max(1, read_env_int(HEADROOM_ENV, DEFAULT_HEADROOM))
    return max(expected_size, compressed_size * headroom)


def decompress(payload: bytes, expected_size: int, *, path: str = "") -> bytes:
    """Inflate a raw DEFLATE stream (ZIP method 8).

    ``expected_size`` is the uncompressed size declared by the archive. Zero
    short-circuits to an empty result; otherwise the output is capped at
    :func:`output_limit` so a lying size field cannot balloon memory.
    """
    if expected_size <= 0:
        return b""

    label = path or "entry"
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        output = inflater.decompress(payload, output_limit(len(payload), expected_size))
    except zlib.error as exc:
        raise DecompressionFailed(f"Failed to decompress {label}: {exc}") from exc
    if not output:
        raise DecompressionFailed(f"Failed to decompress {label}")
    return output
