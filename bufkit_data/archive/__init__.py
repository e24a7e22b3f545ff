"""Archive: blob store and index kept consistent."""

from bufkit_data.archive.archive import Archive
from bufkit_data.archive.blob_store import BlobStore
from bufkit_data.archive.maintenance import VerifyReport, verify_archive
from bufkit_data.archive.reader import ArchiveReader

__all__ = [
    "Archive",
    "ArchiveReader",
    "BlobStore",
    "VerifyReport",
    "verify_archive",
]
