"""
Custom exceptions for bufkit-data.

Provides a hierarchy of exceptions for the blob store, the metadata index
and the archive façade that coordinates them.
"""

from __future__ import annotations

from datetime import datetime


class BufkitDataError(Exception):
    """Base exception for all bufkit-data errors."""

    pass


class ConfigurationError(BufkitDataError):
    """Configuration-related errors."""

    pass


class NotFoundError(BufkitDataError):
    """A lookup had no match."""

    pass


class UnparsableFileError(BufkitDataError):
    """The metadata extractor rejected the input."""

    pass


# =============================================================================
# Index errors
# =============================================================================

class DatabaseError(BufkitDataError):
    """Database-related errors."""

    pass


class SchemaVersionError(DatabaseError):
    """Stored schema version is not usable by this code."""

    def __init__(self, found: int, expected: int, message: str | None = None):
        self.found = found
        self.expected = expected
        super().__init__(
            message or f"Index schema version {found} is not supported (expected {expected})"
        )


class DuplicateNaturalKeyError(DatabaseError):
    """A file with the same model, station and init time is already indexed."""

    def __init__(self, model: str, station_num: int, init_time: datetime):
        self.model = model
        self.station_num = station_num
        self.init_time = init_time
        super().__init__(
            f"Run {model}/{station_num}/{init_time:%Y-%m-%d %H:%M} already in index"
        )


class DuplicateFileNameError(DatabaseError):
    """The file name is already used by another index row."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"File name {file_name} already in index")


class UnknownSiteError(DatabaseError):
    """Referenced station number has no site row."""

    def __init__(self, station_num: int):
        self.station_num = station_num
        super().__init__(f"Station {station_num} is not in the index")


class SiteInUseError(DatabaseError):
    """A site cannot be removed while files reference it."""

    def __init__(self, station_num: int, file_count: int):
        self.station_num = station_num
        self.file_count = file_count
        super().__init__(
            f"Station {station_num} still has {file_count} archived file(s)"
        )


class FileNotInIndexError(DatabaseError, NotFoundError):
    """No index row for the requested file."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"{key} is not in the index")


# =============================================================================
# Blob store errors
# =============================================================================

class StoreError(BufkitDataError):
    """Blob store errors."""

    def __init__(self, file_name: str, message: str):
        self.file_name = file_name
        super().__init__(f"{file_name}: {message}")


class BlobNotFoundError(StoreError, NotFoundError):
    """Blob is not on disk."""

    def __init__(self, file_name: str):
        super().__init__(file_name, "blob not found")


class BlobExistsError(StoreError):
    """A blob with this name already exists."""

    def __init__(self, file_name: str):
        super().__init__(file_name, "blob already exists")


class CorruptDataError(StoreError):
    """Blob could not be decompressed."""

    pass


class StoreIOError(StoreError):
    """Filesystem failure while touching a blob."""

    pass


# =============================================================================
# Archive errors
# =============================================================================

class ArchiveError(BufkitDataError):
    """Archive operation failed.

    Carries the enclosing operation, the step that failed and the file
    involved. The low-level error is chained as ``__cause__``.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        step: str | None = None,
        file_name: str | None = None,
    ):
        self.operation = operation
        self.step = step
        self.file_name = file_name
        where = operation if step is None else f"{operation}/{step}"
        target = f" [{file_name}]" if file_name else ""
        super().__init__(f"{where}{target}: {message}")


class ArchiveNotFoundError(ArchiveError, NotFoundError):
    """Archive lookup had no match."""

    pass


class ArchiveUnparsableFileError(ArchiveError, UnparsableFileError):
    """File handed to the archive could not be parsed."""

    pass


class ArchiveConflictError(ArchiveError):
    """Insert conflicts with an existing record or blob."""

    pass


class ArchiveIntegrityError(ArchiveError):
    """Operation would break referential integrity."""

    pass


class ArchiveCorruptDataError(ArchiveError):
    """Stored blob is corrupt."""

    pass


class ArchiveStorageError(ArchiveError):
    """Underlying storage engine or filesystem failed."""

    pass


_TRANSLATIONS: list[tuple[type[BufkitDataError], type[ArchiveError]]] = [
    (NotFoundError, ArchiveNotFoundError),
    (UnparsableFileError, ArchiveUnparsableFileError),
    (DuplicateNaturalKeyError, ArchiveConflictError),
    (DuplicateFileNameError, ArchiveConflictError),
    (BlobExistsError, ArchiveConflictError),
    (UnknownSiteError, ArchiveIntegrityError),
    (SiteInUseError, ArchiveIntegrityError),
    (CorruptDataError, ArchiveCorruptDataError),
]


def archive_error_for(
    err: BufkitDataError,
    operation: str,
    step: str | None = None,
    file_name: str | None = None,
) -> ArchiveError:
    """Translate a low-level error into an archive error of the same kind.

    Args:
        err: Error raised by the blob store, index or extractor
        operation: Archive operation that was running
        step: Step of the operation that failed
        file_name: File involved, if known

    Returns:
        ArchiveError subclass matching the kind of ``err``
    """
    if isinstance(err, ArchiveError):
        return err

    if file_name is None:
        file_name = getattr(err, "file_name", None)

    for low_level, translated in _TRANSLATIONS:
        if isinstance(err, low_level):
            return translated(operation, str(err), step=step, file_name=file_name)

    return ArchiveStorageError(operation, str(err), step=step, file_name=file_name)
