"""Utility modules for dates, logging, compression and locking."""

from bufkit_data.utils.dates import (
    to_naive_utc,
    parse_datetime,
    bufkit_time,
)
from bufkit_data.utils.logging import (
    get_logger,
    setup_logging,
)
from bufkit_data.utils.compression import (
    compress_bytes,
    decompress_bytes,
    is_gzip,
)
from bufkit_data.utils.locking import ReadWriteLock

__all__ = [
    "to_naive_utc",
    "parse_datetime",
    "bufkit_time",
    "get_logger",
    "setup_logging",
    "compress_bytes",
    "decompress_bytes",
    "is_gzip",
    "ReadWriteLock",
]
