"""
Sounding archive.

The Archive keeps the compressed blob store and the metadata index in
step. Every write holds the archive lock for the whole blob write plus
index update, and the index side of it runs in one transaction, so a
reader sees either the complete file or nothing.

Layout on disk::

    <root>/index.duckdb
    <root>/data/<init>Z_<model>_<station_num>.buf.gz

Usage:
    from bufkit_data.archive import Archive

    with Archive.connect("/data/bufkit") as archive:
        record = archive.add(raw_bytes, model="gfs")
        text = archive.retrieve(Model.GFS, record.station_num, record.init_time)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator

from bufkit_data.archive.blob_store import BlobStore
from bufkit_data.archive.maintenance import VerifyReport, verify_archive
from bufkit_data.core.exceptions import (
    ArchiveConflictError,
    ArchiveNotFoundError,
    ArchiveStorageError,
    ArchiveUnparsableFileError,
    BlobExistsError,
    BufkitDataError,
    DuplicateFileNameError,
    StoreError,
    archive_error_for,
)
from bufkit_data.database.connection import DatabaseManager, init_db
from bufkit_data.database.index import Index, normalize_alias
from bufkit_data.database.models import (
    Coords,
    FileMetadata,
    FileRecord,
    Model,
    SiteInfo,
    SiteOutcome,
    SiteResolution,
    compressed_file_name,
)
from bufkit_data.database.queries import QueryEngine
from bufkit_data.utils.bufkit_format import MetadataExtractor, extract_metadata
from bufkit_data.utils.locking import ReadWriteLock
from bufkit_data.utils.logging import get_logger

if TYPE_CHECKING:
    from bufkit_data.core.config import Settings


logger = get_logger(__name__)


class Archive:
    """Blob store plus index, kept consistent."""

    DATA_DIR = "data"
    DB_FILE = "index.duckdb"

    def __init__(
        self,
        root: Path | str,
        db: DatabaseManager,
        compression_level: int = 6,
        extractor: MetadataExtractor | None = None,
    ):
        """Wrap an opened index. Use create() or connect() instead.

        Args:
            root: Archive root directory
            db: Database manager with the schema in place
            compression_level: gzip level for new blobs
            extractor: Metadata extractor for incoming files
        """
        self._root = Path(root)
        self._db = db
        self._lock = ReadWriteLock()
        self._index = Index(db)
        self._queries = QueryEngine(db, self._lock)
        self._blobs = BlobStore(self._root / self.DATA_DIR, compression_level)
        self._extractor = extractor or extract_metadata
        self._leaked_blobs: set[str] = set()
        self._log = get_logger(__name__, root=str(self._root))

    @classmethod
    def create(
        cls,
        root: Path | str,
        compression_level: int = 6,
        extractor: MetadataExtractor | None = None,
    ) -> "Archive":
        """Create an archive, or open it if one already exists at ``root``."""
        root = Path(root)
        try:
            (root / cls.DATA_DIR).mkdir(parents=True, exist_ok=True)
            db = init_db(root / cls.DB_FILE, create_schema=True)
        except OSError as e:
            raise ArchiveStorageError("create", str(e), file_name=str(root)) from e
        except BufkitDataError as e:
            raise archive_error_for(e, "create") from e

        logger.info("Opened archive", root=str(root), created=True)
        return cls(root, db, compression_level, extractor)

    @classmethod
    def connect(
        cls,
        root: Path | str,
        compression_level: int = 6,
        extractor: MetadataExtractor | None = None,
        read_only: bool = False,
    ) -> "Archive":
        """Open an existing archive, migrating an older index layout.

        Raises:
            ArchiveNotFoundError: If there is no archive at ``root``
        """
        root = Path(root)
        db_path = root / cls.DB_FILE
        if not db_path.is_file():
            raise ArchiveNotFoundError("connect", f"No archive index at {db_path}")

        try:
            db = init_db(db_path, create_schema=False, read_only=read_only)
        except BufkitDataError as e:
            raise archive_error_for(e, "connect") from e

        logger.info("Opened archive", root=str(root), read_only=read_only)
        return cls(root, db, compression_level, extractor)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Archive":
        """Open the archive described by the settings, creating it if allowed."""
        cfg = settings.archive
        if cfg.read_only or not cfg.create or (cfg.root / cls.DB_FILE).is_file():
            return cls.connect(
                cfg.root,
                compression_level=cfg.compression_level,
                read_only=cfg.read_only,
            )
        return cls.create(cfg.root, compression_level=cfg.compression_level)

    def close(self) -> None:
        """Close the index connection."""
        with self._lock.write():
            self._db.close()

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def root(self) -> Path:
        return self._root

    @property
    def data_root(self) -> Path:
        return self._blobs.data_root

    @property
    def index(self) -> Index:
        return self._index

    @property
    def queries(self) -> QueryEngine:
        return self._queries

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    @property
    def leaked_blobs(self) -> frozenset[str]:
        """Blobs whose rows were removed but whose files could not be deleted."""
        return frozenset(self._leaked_blobs)

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    def resolve_or_create_site(
        self,
        external_id: str | None,
        station_num: int | None = None,
    ) -> SiteResolution:
        """Find or create the site for an external id and station number.

        Raises:
            ArchiveError: On index failure
        """
        with self._lock.write():
            try:
                with self._index.transaction():
                    return self._resolve_site(external_id, station_num)
            except BufkitDataError as e:
                raise archive_error_for(e, "resolve_site") from e

    def _resolve_site(
        self,
        external_id: str | None,
        station_num: int | None,
    ) -> SiteResolution:
        if external_id is None and station_num is None:
            raise ArchiveUnparsableFileError(
                "resolve_site", "Neither an id nor a station number was given"
            )

        if external_id is not None:
            external_id = normalize_alias(external_id)
            site = self._index.site_for_alias(external_id)
            if site is not None:
                if station_num is None or station_num == site.station_num:
                    return SiteResolution(site, SiteOutcome.EXISTING)

                # The id now reports a different station number.
                if not self._index.site_exists(station_num):
                    self._index.upsert_site(SiteInfo(station_num=station_num))
                previous = self._index.add_site_alias(station_num, external_id)
                return SiteResolution(
                    self._index.site(station_num),  # type: ignore[arg-type]
                    SiteOutcome.ALIAS_MOVED,
                    previous_station_num=previous,
                )

        if station_num is not None and self._index.site_exists(station_num):
            site = self._index.site(station_num)
            if external_id is None:
                return SiteResolution(site, SiteOutcome.EXISTING)  # type: ignore[arg-type]
            self._index.add_site_alias(station_num, external_id)
            return SiteResolution(site, SiteOutcome.NEW_ALIAS)  # type: ignore[arg-type]

        if station_num is None:
            station_num = self._index.next_station_num()
        site = SiteInfo(station_num=station_num)
        self._index.upsert_site(site)
        if external_id is not None:
            self._index.add_site_alias(station_num, external_id)

        self._log.info("Created site", station_num=station_num, site_id=external_id)
        return SiteResolution(site, SiteOutcome.CREATED)

    def add_site(
        self,
        site: SiteInfo,
        aliases: Iterable[str] = (),
        coords: Iterable[Coords | tuple[float, float]] | None = None,
    ) -> SiteInfo:
        """Register a site explicitly.

        Raises:
            ArchiveConflictError: If the station number is taken
        """
        with self._lock.write():
            try:
                with self._index.transaction():
                    if self._index.site_exists(site.station_num):
                        raise ArchiveConflictError(
                            "add_site", f"Station {site.station_num} already exists"
                        )
                    self._index.upsert_site(site)
                    for alias in aliases:
                        self._index.add_site_alias(site.station_num, alias)
                    new_coords = False
                    for pair in coords or ():
                        lat, lon = pair.as_tuple() if isinstance(pair, Coords) else pair
                        new_coords |= self._index.add_coordinate(site.station_num, lat, lon)
                    if new_coords:
                        self._index.recompute_mean_coordinates(site.station_num)
                    added = self._index.site(site.station_num)
            except BufkitDataError as e:
                raise archive_error_for(e, "add_site") from e

        self._log.info("Added site", station_num=site.station_num)
        return added  # type: ignore[return-value]

    def update_site(self, site: SiteInfo) -> SiteInfo:
        """Update a site's descriptive fields.

        Raises:
            ArchiveNotFoundError: If the site does not exist
        """
        with self._lock.write():
            try:
                with self._index.transaction():
                    if not self._index.site_exists(site.station_num):
                        raise ArchiveNotFoundError(
                            "update_site", f"No site with station number {site.station_num}"
                        )
                    self._index.upsert_site(site)
                    updated = self._index.site(site.station_num)
            except BufkitDataError as e:
                raise archive_error_for(e, "update_site") from e
        return updated  # type: ignore[return-value]

    def remove_site(self, station_num: int, cascade: bool = False) -> list[str]:
        """Remove a site; with ``cascade`` also remove its files.

        Returns:
            Names of the files removed

        Raises:
            ArchiveIntegrityError: If files reference the site and cascade is False
            ArchiveIntegrityError: If the site does not exist
        """
        with self._lock.write():
            try:
                with self._index.transaction():
                    file_names = self._index.delete_site(station_num, cascade=cascade)
            except BufkitDataError as e:
                raise archive_error_for(e, "remove_site") from e

            for file_name in file_names:
                self._remove_blob(file_name)

        self._log.info("Removed site", station_num=station_num, files=len(file_names))
        return file_names

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def add(
        self,
        raw: bytes,
        model: Model | str | None = None,
        site_id: str | None = None,
    ) -> FileRecord:
        """Archive a raw sounding file.

        Adding a run that is already archived returns the existing record
        and writes nothing.

        Args:
            raw: Uncompressed file contents
            model: Model that produced the file
            site_id: External id of the site, if the file does not carry one

        Returns:
            FileRecord for the archived run

        Raises:
            ArchiveUnparsableFileError: If the file cannot be parsed
            ArchiveConflictError: If another run already uses the file name
            ArchiveError: On index or storage failure
        """
        step = "resolve_site"
        file_name: str | None = None
        stored = False
        with self._lock.write():
            meta = self._extract(raw, model, site_id)
            try:
                with self._index.transaction():
                    resolution = self._resolve_site(meta.external_id, meta.station_num)
                    station_num = resolution.site.station_num

                    step = "coordinates"
                    if self._index.add_coordinate(station_num, meta.lat, meta.lon):
                        self._index.recompute_mean_coordinates(station_num)

                    step = "lookup"
                    file_name = compressed_file_name(station_num, meta.model, meta.init_time)
                    existing = self._index.find_file(meta.model, station_num, meta.init_time)
                    if existing is not None:
                        self._log.info("File already archived", file_name=existing.file_name)
                        return existing
                    if self._index.find_file_by_name(file_name) is not None:
                        raise DuplicateFileNameError(file_name)

                    step = "store"
                    try:
                        self._blobs.store(file_name, raw)
                    except BlobExistsError:
                        self._log.warning("Replacing orphan blob", file_name=file_name)
                        self._blobs.store(file_name, raw, overwrite=True)
                    stored = True

                    step = "index"
                    record = FileRecord(
                        station_num=station_num,
                        model=meta.model,
                        init_time=meta.init_time,
                        end_time=meta.end_time,
                        file_name=file_name,
                        site_id=meta.external_id,
                    )
                    self._index.insert_file(record)
                    step = "commit"
            except BufkitDataError as e:
                if stored:
                    self._discard_blob(file_name)  # type: ignore[arg-type]
                raise archive_error_for(e, "add", step, file_name) from e
            except BaseException:
                if stored:
                    self._discard_blob(file_name)  # type: ignore[arg-type]
                raise

            # A blob that failed to delete earlier now belongs to this row.
            self._leaked_blobs.discard(file_name)  # type: ignore[arg-type]

        self._log.info(
            "Archived file",
            file_name=file_name,
            station_num=record.station_num,
            model=record.model.value,
            site_outcome=resolution.outcome.value,
        )
        return record

    def retrieve(self, model: Model | str, station_num: int, when: datetime) -> bytes:
        """Contents of the run for ``when``.

        An exact init time match wins; otherwise the most recent run whose
        forecast period covers ``when``.

        Raises:
            ArchiveNotFoundError: If no run matches
            ArchiveCorruptDataError: If the blob is damaged
        """
        model = Model.from_str(model)
        with self._lock.read():
            try:
                record = self._queries.find_run(model, station_num, when)
            except BufkitDataError as e:
                raise archive_error_for(e, "retrieve") from e
            if record is None:
                raise ArchiveNotFoundError(
                    "retrieve", f"No {model} run for station {station_num} at {when}"
                )
            return self._load(record, "retrieve")

    def retrieve_most_recent(self, site_alias: str, model: Model | str) -> bytes:
        """Contents of the latest run for a site.

        Raises:
            ArchiveNotFoundError: If the site or run is unknown
        """
        model = Model.from_str(model)
        with self._lock.read():
            try:
                record = self._queries.most_recent(site_alias, model)
            except BufkitDataError as e:
                raise archive_error_for(e, "retrieve_most_recent") from e
            if record is None:
                raise ArchiveNotFoundError(
                    "retrieve_most_recent", f"No {model} runs for {normalize_alias(site_alias)}"
                )
            return self._load(record, "retrieve_most_recent")

    def retrieve_all_valid_in(
        self,
        model: Model | str,
        station_num: int,
        start: datetime,
        end: datetime,
    ) -> Iterator[tuple[FileRecord, bytes]]:
        """Yield every run with forecast data valid within ``[start, end]``."""
        model = Model.from_str(model)
        try:
            records = iter(self._queries.valid_in(model, station_num, start, end))
        except BufkitDataError as e:
            raise archive_error_for(e, "retrieve_all_valid_in", "query") from e
        while True:
            try:
                record = next(records)
            except StopIteration:
                return
            except BufkitDataError as e:
                raise archive_error_for(e, "retrieve_all_valid_in", "query") from e
            with self._lock.read():
                raw = self._load(record, "retrieve_all_valid_in")
            yield record, raw

    def remove(self, file_name: str) -> FileRecord:
        """Remove a file from the index and the blob store.

        The row is deleted first. If the blob then cannot be deleted it is
        logged and remembered; compact_or_verify() reports it.

        Raises:
            ArchiveNotFoundError: If the file is not in the index
        """
        with self._lock.write():
            try:
                with self._index.transaction():
                    record = self._index.delete_file(file_name)
            except BufkitDataError as e:
                raise archive_error_for(e, "remove", "index", file_name) from e
            self._remove_blob(file_name)

        self._log.info("Removed file", file_name=file_name)
        return record

    def remove_run(self, model: Model | str, station_num: int, init_time: datetime) -> FileRecord:
        """Remove a run by its natural key.

        Raises:
            ArchiveNotFoundError: If the run is not archived
        """
        model = Model.from_str(model)
        with self._lock.write():
            try:
                record = self._index.find_file(model, station_num, init_time)
            except BufkitDataError as e:
                raise archive_error_for(e, "remove_run", "lookup") from e
            if record is None:
                raise ArchiveNotFoundError(
                    "remove_run", f"No {model} run for station {station_num} at {init_time}"
                )
            return self.remove(record.file_name)

    def compact_or_verify(self, compact: bool = False) -> VerifyReport:
        """Check blob/index consistency, optionally checkpointing the index.

        Never deletes anything.
        """
        with self._lock.write():
            if compact:
                try:
                    self._db.execute("CHECKPOINT")
                except BufkitDataError as e:
                    raise archive_error_for(e, "compact_or_verify", "checkpoint") from e
            try:
                report = verify_archive(self._index, self._blobs, self._leaked_blobs)
            except BufkitDataError as e:
                raise archive_error_for(e, "compact_or_verify", "verify") from e
            except OSError as e:
                raise ArchiveStorageError("compact_or_verify", str(e), step="verify") from e
            report.compacted = compact
            # Leaks cleaned up by hand are no longer tracked.
            self._leaked_blobs.intersection_update(report.leaked_blobs)
        return report

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _extract(self, raw: bytes, model: Model | str | None, site_id: str | None) -> FileMetadata:
        try:
            meta = self._extractor(raw, model)
        except BufkitDataError as e:
            raise archive_error_for(e, "add", "extract") from e

        if site_id is not None:
            hint = normalize_alias(site_id)
            if meta.external_id is None:
                meta.external_id = hint
            elif meta.external_id != hint:
                raise ArchiveUnparsableFileError(
                    "add",
                    f"File is for {meta.external_id}, not {hint}",
                    step="extract",
                )
        return meta

    def _load(self, record: FileRecord, operation: str) -> bytes:
        try:
            return self._blobs.load(record.file_name)
        except BufkitDataError as e:
            raise archive_error_for(e, operation, "load", record.file_name) from e

    def _remove_blob(self, file_name: str) -> None:
        try:
            self._blobs.remove(file_name)
        except StoreError as e:
            self._log.error("Blob leaked after index removal", file_name=file_name, error=str(e))
            self._leaked_blobs.add(file_name)

    def _discard_blob(self, file_name: str) -> None:
        try:
            self._blobs.remove(file_name)
        except StoreError as e:
            self._log.error("Could not discard blob of failed add", file_name=file_name, error=str(e))
            self._leaked_blobs.add(file_name)
