"""
Gzip compression helpers for archived sounding files.

Blobs are stored as single-member gzip streams so that the files in the
archive data directory can also be read with ``zcat``.

Usage:
    from bufkit_data.utils.compression import compress_bytes, decompress_bytes

    blob = compress_bytes(raw_text.encode())
    assert decompress_bytes(blob) == raw_text.encode()
"""

from __future__ import annotations

import gzip

GZIP_MAGIC = b"\x1f\x8b"


def compress_bytes(data: bytes, compression_level: int = 6) -> bytes:
    """Compress a payload with gzip.

    The header timestamp is pinned to zero so equal payloads give
    byte-identical blobs.

    Args:
        data: Raw payload
        compression_level: Compression level (0-9)

    Returns:
        Gzip stream
    """
    return gzip.compress(data, compresslevel=compression_level, mtime=0)


def decompress_bytes(data: bytes) -> bytes:
    """Decompress a gzip payload.

    Raises:
        gzip.BadGzipFile, EOFError, zlib.error: If the stream is damaged
    """
    return gzip.decompress(data)


def is_gzip(data: bytes) -> bool:
    """Check for the gzip magic number."""
    return data[:2] == GZIP_MAGIC
