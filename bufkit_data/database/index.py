"""
Metadata index operations.

The Index owns the relational side of the archive: sites, their external
id aliases, coordinate history and one row per archived file. All writes
go through the single write transaction of the DatabaseManager; the
integrity checks below run inside that transaction so they hold for the
rows actually written.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generator

from bufkit_data.core.exceptions import (
    DatabaseError,
    DuplicateFileNameError,
    DuplicateNaturalKeyError,
    FileNotInIndexError,
    SiteInUseError,
    UnknownSiteError,
)
from bufkit_data.database.models import Coords, FileRecord, Model, SiteInfo
from bufkit_data.utils.dates import to_naive_utc
from bufkit_data.utils.logging import get_logger

if TYPE_CHECKING:
    from bufkit_data.database.connection import DatabaseManager


logger = get_logger(__name__)

SITE_COLUMNS = (
    "sites.station_num, sites.name, sites.state, sites.notes, "
    "sites.tz_offset_sec, sites.auto_download, sites.mean_lat, sites.mean_lon"
)
FILE_COLUMNS = (
    "files.station_num, files.model, files.init_time, files.end_time, "
    "files.file_name, files.id"
)


def normalize_alias(site_id: str) -> str:
    """External ids are compared case-insensitively and stored upper case."""
    return site_id.strip().upper()


def row_to_site(row: tuple[Any, ...]) -> SiteInfo:
    """Build a SiteInfo from a row selected with SITE_COLUMNS."""
    return SiteInfo(
        station_num=row[0],
        name=row[1],
        state=row[2],
        notes=row[3],
        tz_offset_sec=row[4],
        auto_download=bool(row[5]),
        mean_lat=row[6],
        mean_lon=row[7],
    )


def row_to_file(row: tuple[Any, ...]) -> FileRecord:
    """Build a FileRecord from a row selected with FILE_COLUMNS."""
    return FileRecord(
        station_num=row[0],
        model=Model.from_str(row[1]),
        init_time=row[2],
        end_time=row[3],
        file_name=row[4],
        site_id=row[5],
    )


class Index:
    """Transactional metadata store for the archive."""

    def __init__(self, db: "DatabaseManager"):
        """Initialize index.

        Args:
            db: Database manager instance
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def begin_transaction(self) -> None:
        self.db.begin_transaction()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Scope a single write transaction."""
        with self.db.transaction():
            yield

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    def site(self, station_num: int) -> SiteInfo | None:
        """Get a site by station number."""
        row = self.db.fetchone(
            f"SELECT {SITE_COLUMNS} FROM sites WHERE station_num = ?",
            (station_num,),
        )
        return row_to_site(row) if row else None

    def site_exists(self, station_num: int) -> bool:
        row = self.db.fetchone(
            "SELECT 1 FROM sites WHERE station_num = ?", (station_num,)
        )
        return row is not None

    def site_for_alias(self, site_id: str) -> SiteInfo | None:
        """Get the site currently known by an external id."""
        row = self.db.fetchone(
            f"""
            SELECT {SITE_COLUMNS}
            FROM sites JOIN site_ids ON site_ids.station_num = sites.station_num
            WHERE site_ids.id = ?
            """,
            (normalize_alias(site_id),),
        )
        return row_to_site(row) if row else None

    def aliases(self, station_num: int) -> list[str]:
        """External ids of a site, sorted."""
        rows = self.db.fetchall(
            "SELECT id FROM site_ids WHERE station_num = ? ORDER BY id",
            (station_num,),
        )
        return [row[0] for row in rows]

    def next_station_num(self) -> int:
        """Allocate a station number for a site whose file carries none."""
        row = self.db.fetchone("SELECT COALESCE(MAX(station_num), 0) + 1 FROM sites")
        return int(row[0])

    def upsert_site(self, site: SiteInfo) -> bool:
        """Insert a site or update its descriptive fields.

        Mean coordinates are derived data and are left alone on update.

        Returns:
            True if the site was created
        """
        if self.site_exists(site.station_num):
            self.db.execute(
                """
                UPDATE sites
                SET name = ?, state = ?, notes = ?, tz_offset_sec = ?, auto_download = ?
                WHERE station_num = ?
                """,
                (
                    site.name,
                    site.state,
                    site.notes,
                    site.tz_offset_sec,
                    site.auto_download,
                    site.station_num,
                ),
            )
            return False

        self.db.execute(
            """
            INSERT INTO sites (
                station_num, name, state, notes, tz_offset_sec, auto_download,
                mean_lat, mean_lon
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                site.station_num,
                site.name,
                site.state,
                site.notes,
                site.tz_offset_sec,
                site.auto_download,
                site.mean_lat,
                site.mean_lon,
            ),
        )
        return True

    def add_site_alias(self, station_num: int, site_id: str) -> int | None:
        """Associate an external id with a site.

        An id belongs to one site at a time; if another site holds it, it is
        moved to ``station_num``.

        Returns:
            Station number the id was moved from, or None

        Raises:
            UnknownSiteError: If the site does not exist
        """
        if not self.site_exists(station_num):
            raise UnknownSiteError(station_num)

        alias = normalize_alias(site_id)
        row = self.db.fetchone(
            "SELECT station_num FROM site_ids WHERE id = ?", (alias,)
        )
        if row is None:
            self.db.execute(
                "INSERT INTO site_ids (station_num, id) VALUES (?, ?)",
                (station_num, alias),
            )
            return None
        if row[0] == station_num:
            return None

        self.db.execute(
            "UPDATE site_ids SET station_num = ? WHERE id = ?",
            (station_num, alias),
        )
        logger.info(
            "Moved site id to new station",
            site_id=alias,
            old_station=row[0],
            new_station=station_num,
        )
        return row[0]

    def add_coordinate(self, station_num: int, lat: float, lon: float) -> bool:
        """Record an observed coordinate pair for a site.

        Returns:
            True if the pair was new, False if already recorded

        Raises:
            UnknownSiteError: If the site does not exist
        """
        if not self.site_exists(station_num):
            raise UnknownSiteError(station_num)

        row = self.db.fetchone(
            "SELECT 1 FROM coords WHERE station_num = ? AND lat = ? AND lon = ?",
            (station_num, lat, lon),
        )
        if row is not None:
            return False

        self.db.execute(
            "INSERT INTO coords (station_num, lat, lon) VALUES (?, ?, ?)",
            (station_num, lat, lon),
        )
        return True

    def coordinates(self, station_num: int) -> list[Coords]:
        """Distinct coordinate pairs recorded for a site."""
        rows = self.db.fetchall(
            "SELECT lat, lon FROM coords WHERE station_num = ? ORDER BY lat, lon",
            (station_num,),
        )
        return [Coords(lat, lon) for lat, lon in rows]

    def recompute_mean_coordinates(self, station_num: int) -> Coords | None:
        """Set a site's mean lat/lon from its distinct coordinate pairs.

        Returns:
            The new mean, or None if the site has no coordinates
        """
        row = self.db.fetchone(
            "SELECT COUNT(*), AVG(lat), AVG(lon) FROM coords WHERE station_num = ?",
            (station_num,),
        )
        mean = Coords(row[1], row[2]) if row and row[0] else None
        self.db.execute(
            "UPDATE sites SET mean_lat = ?, mean_lon = ? WHERE station_num = ?",
            (
                mean.lat if mean else None,
                mean.lon if mean else None,
                station_num,
            ),
        )
        return mean

    def delete_site(self, station_num: int, cascade: bool = False) -> list[str]:
        """Remove a site with its aliases and coordinates.

        Args:
            station_num: Site to remove
            cascade: Also delete the site's file rows

        Returns:
            File names whose rows were deleted; their blobs are the caller's
            responsibility

        Raises:
            UnknownSiteError: If the site does not exist
            SiteInUseError: If files reference the site and cascade is False
        """
        if not self.site_exists(station_num):
            raise UnknownSiteError(station_num)

        file_names = [
            row[0]
            for row in self.db.fetchall(
                "SELECT file_name FROM files WHERE station_num = ? ORDER BY file_name",
                (station_num,),
            )
        ]
        if file_names and not cascade:
            raise SiteInUseError(station_num, len(file_names))

        for table in ("files", "site_ids", "coords", "sites"):
            self.db.execute(f"DELETE FROM {table} WHERE station_num = ?", (station_num,))

        return file_names

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def insert_file(self, record: FileRecord) -> None:
        """Insert a file row.

        Raises:
            UnknownSiteError: If the record's station has no site row
            DuplicateNaturalKeyError: If the model/station/init time exists
            DuplicateFileNameError: If the file name is taken
        """
        if record.end_time < record.init_time:
            raise DatabaseError(
                f"{record.file_name}: end time {record.end_time} precedes init time "
                f"{record.init_time}"
            )
        if not self.site_exists(record.station_num):
            raise UnknownSiteError(record.station_num)
        if self.find_file(record.model, record.station_num, record.init_time) is not None:
            raise DuplicateNaturalKeyError(
                record.model.value, record.station_num, record.init_time
            )
        if self.find_file_by_name(record.file_name) is not None:
            raise DuplicateFileNameError(record.file_name)

        self.db.execute(
            """
            INSERT INTO files (station_num, model, init_time, end_time, file_name, id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.station_num,
                record.model.value,
                to_naive_utc(record.init_time),
                to_naive_utc(record.end_time),
                record.file_name,
                record.site_id,
            ),
        )

    def find_file(
        self,
        model: Model,
        station_num: int,
        init_time: datetime,
    ) -> FileRecord | None:
        """Find a file by its natural key."""
        row = self.db.fetchone(
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE model = ? AND station_num = ? AND init_time = ?
            """,
            (Model.from_str(model).value, station_num, to_naive_utc(init_time)),
        )
        return row_to_file(row) if row else None

    def find_file_by_name(self, file_name: str) -> FileRecord | None:
        """Find a file by its blob name."""
        row = self.db.fetchone(
            f"SELECT {FILE_COLUMNS} FROM files WHERE file_name = ?",
            (file_name,),
        )
        return row_to_file(row) if row else None

    def delete_file(self, file_name: str) -> FileRecord:
        """Delete a file row.

        Returns:
            The deleted record

        Raises:
            FileNotInIndexError: If no row has this file name
        """
        record = self.find_file_by_name(file_name)
        if record is None:
            raise FileNotInIndexError(file_name)

        self.db.execute("DELETE FROM files WHERE file_name = ?", (file_name,))
        return record

    def files_for_site(self, station_num: int) -> list[FileRecord]:
        """All file rows of a site ordered by model and init time."""
        rows = self.db.fetchall(
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE station_num = ?
            ORDER BY model, init_time
            """,
            (station_num,),
        )
        return [row_to_file(row) for row in rows]

    def file_names(self) -> set[str]:
        """Every file name in the index."""
        return {row[0] for row in self.db.fetchall("SELECT file_name FROM files")}

    def sites_without_aliases(self) -> list[int]:
        """Station numbers of sites that have no external id."""
        rows = self.db.fetchall(
            """
            SELECT station_num FROM sites
            WHERE station_num NOT IN (SELECT station_num FROM site_ids)
            ORDER BY station_num
            """
        )
        return [row[0] for row in rows]
