"""
Compressed blob store for archived sounding files.

Each file is one gzip blob in a flat data directory, named after the run
it holds. Writes go to a hidden temporary file in the same directory and
are renamed into place, so a reader never sees a partially written blob.

Usage:
    from bufkit_data.archive.blob_store import BlobStore

    store = BlobStore(Path("/data/bufkit/data"))
    store.store("2017040118Z_gfs_727730.buf.gz", raw)
    raw = store.load("2017040118Z_gfs_727730.buf.gz")
"""

from __future__ import annotations

import os
import tempfile
import zlib
from pathlib import Path

from bufkit_data.core.exceptions import (
    BlobExistsError,
    BlobNotFoundError,
    CorruptDataError,
    StoreIOError,
)
from bufkit_data.utils.compression import compress_bytes, decompress_bytes
from bufkit_data.utils.logging import get_logger

logger = get_logger(__name__)

TEMP_PREFIX = "."


class BlobStore:
    """Filesystem store of gzip-compressed blobs keyed by file name."""

    def __init__(self, data_root: Path | str, compression_level: int = 6):
        """Initialize blob store.

        Args:
            data_root: Directory holding the blobs
            compression_level: gzip level used for new blobs
        """
        self.data_root = Path(data_root)
        self.compression_level = compression_level

    def path_for(self, name: str) -> Path:
        """Path of the blob called ``name``.

        Raises:
            ValueError: If ``name`` is not a plain file name
        """
        if (
            not name
            or name in (".", "..")
            or name.startswith(TEMP_PREFIX)
            or "/" in name
            or "\\" in name
            or os.sep in name
        ):
            raise ValueError(f"Invalid blob name: {name!r}")
        return self.data_root / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def store(self, name: str, raw: bytes, overwrite: bool = False) -> Path:
        """Compress and write a blob.

        Args:
            name: Blob name
            raw: Uncompressed payload
            overwrite: Replace an existing blob

        Returns:
            Path of the written blob

        Raises:
            BlobExistsError: If the blob exists and overwrite is False
            StoreIOError: On filesystem failure
        """
        path = self.path_for(name)
        if path.exists() and not overwrite:
            raise BlobExistsError(name)

        payload = compress_bytes(raw, self.compression_level)
        tmp_name = None
        try:
            self.data_root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{TEMP_PREFIX}{name}.", suffix=".tmp", dir=self.data_root
            )
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StoreIOError(name, f"write failed: {e}") from e

        logger.debug("Stored blob", file_name=name, size=len(payload))
        return path

    def load(self, name: str) -> bytes:
        """Read and decompress a blob.

        Raises:
            BlobNotFoundError: If the blob does not exist
            CorruptDataError: If the blob cannot be decompressed
            StoreIOError: On other filesystem failures
        """
        path = self.path_for(name)
        try:
            payload = path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(name) from e
        except OSError as e:
            raise StoreIOError(name, f"read failed: {e}") from e

        try:
            return decompress_bytes(payload)
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptDataError(name, f"cannot decompress: {e}") from e

    def remove(self, name: str) -> None:
        """Delete a blob. A missing blob is not an error.

        Raises:
            StoreIOError: If the blob exists but cannot be deleted
        """
        try:
            self.path_for(name).unlink(missing_ok=True)
        except OSError as e:
            raise StoreIOError(name, f"remove failed: {e}") from e
        logger.debug("Removed blob", file_name=name)

    def names(self) -> set[str]:
        """Names of all complete blobs."""
        if not self.data_root.is_dir():
            return set()
        return {
            p.name
            for p in self.data_root.iterdir()
            if p.is_file() and not p.name.startswith(TEMP_PREFIX)
        }

    def temp_files(self) -> list[Path]:
        """Leftover temporary files from interrupted writes."""
        if not self.data_root.is_dir():
            return []
        return sorted(
            p
            for p in self.data_root.iterdir()
            if p.is_file() and p.name.startswith(TEMP_PREFIX)
        )
