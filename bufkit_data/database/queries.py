"""
Read-only composite queries over the archive index.

Queries run on a per-thread cursor while holding the shared side of the
archive lock, so they never observe a half-finished add or remove.

Usage:
    from bufkit_data.database.queries import QueryEngine

    queries = QueryEngine(db)
    latest = queries.most_recent("KMSO", Model.GFS)
    for record in queries.in_time_range(Model.GFS, 727730, start, end):
        print(record.file_name)
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterator

import duckdb

from bufkit_data.core.exceptions import DatabaseError
from bufkit_data.database.index import (
    FILE_COLUMNS,
    SITE_COLUMNS,
    normalize_alias,
    row_to_file,
    row_to_site,
)
from bufkit_data.database.models import (
    DownloadInfo,
    FileRecord,
    Inventory,
    Model,
    SiteInfo,
    StationSummary,
)
from bufkit_data.utils.dates import to_naive_utc
from bufkit_data.utils.locking import ReadWriteLock

if TYPE_CHECKING:
    from bufkit_data.database.connection import DatabaseManager


class FileRecordRange:
    """Lazy, restartable sequence of file records.

    The query runs when iteration starts; iterating again re-runs it.
    """

    BATCH_SIZE = 256

    def __init__(
        self,
        db: "DatabaseManager",
        lock: ReadWriteLock,
        query: str,
        params: tuple[Any, ...],
    ):
        self._db = db
        self._lock = lock
        self._query = query
        self._params = params

    def __iter__(self) -> Iterator[FileRecord]:
        cur = self._db.conn.cursor()
        try:
            with self._lock.read():
                try:
                    result = cur.execute(self._query, self._params)
                except duckdb.Error as e:
                    raise DatabaseError(f"Query failed: {e}") from e
            while True:
                rows = result.fetchmany(self.BATCH_SIZE)
                if not rows:
                    break
                for row in rows:
                    yield row_to_file(row)
        finally:
            cur.close()

    def to_list(self) -> list[FileRecord]:
        return list(self)

    def __repr__(self) -> str:
        return f"FileRecordRange(params={self._params!r})"


class QueryEngine:
    """Read-only queries layered on the index."""

    def __init__(self, db: "DatabaseManager", lock: ReadWriteLock | None = None):
        """Initialize query engine.

        Args:
            db: Database manager instance
            lock: Archive lock shared with the writer
        """
        self.db = db
        self.lock = lock or ReadWriteLock()

    def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[Any]:
        with self.lock.read():
            try:
                return self.db.cursor().execute(query, params or None).fetchall()
            except duckdb.Error as e:
                raise DatabaseError(f"Query failed: {e}") from e

    def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Any:
        rows = self._fetchall(query, params)
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    def sites(self) -> list[SiteInfo]:
        """All sites ordered by station number."""
        rows = self._fetchall(f"SELECT {SITE_COLUMNS} FROM sites ORDER BY station_num")
        return [row_to_site(row) for row in rows]

    def site(self, station_num: int) -> SiteInfo | None:
        """Site for a station number."""
        row = self._fetchone(
            f"SELECT {SITE_COLUMNS} FROM sites WHERE station_num = ?", (station_num,)
        )
        return row_to_site(row) if row else None

    def site_for_alias(self, site_id: str) -> SiteInfo | None:
        """Site currently known by an external id."""
        row = self._fetchone(
            f"""
            SELECT {SITE_COLUMNS}
            FROM sites JOIN site_ids ON site_ids.station_num = sites.station_num
            WHERE site_ids.id = ?
            """,
            (normalize_alias(site_id),),
        )
        return row_to_site(row) if row else None

    def station_num_for_alias(self, site_id: str) -> int | None:
        """Resolve an external id to a station number."""
        row = self._fetchone(
            "SELECT station_num FROM site_ids WHERE id = ?", (normalize_alias(site_id),)
        )
        return row[0] if row else None

    def aliases(self) -> dict[int, list[str]]:
        """External ids grouped by station number."""
        grouped: dict[int, list[str]] = {}
        for station_num, site_id in self._fetchall(
            "SELECT station_num, id FROM site_ids ORDER BY station_num, id"
        ):
            grouped.setdefault(station_num, []).append(site_id)
        return grouped

    def coordinates(self) -> dict[int, list[tuple[float, float]]]:
        """Coordinate history grouped by station number."""
        grouped: dict[int, list[tuple[float, float]]] = {}
        for station_num, lat, lon in self._fetchall(
            "SELECT station_num, lat, lon FROM coords ORDER BY station_num, lat, lon"
        ):
            grouped.setdefault(station_num, []).append((lat, lon))
        return grouped

    def models(self, station_num: int) -> list[Model]:
        """Models with files archived for a station."""
        rows = self._fetchall(
            "SELECT DISTINCT model FROM files WHERE station_num = ? ORDER BY model",
            (station_num,),
        )
        return [Model.from_str(row[0]) for row in rows]

    def ids(self, station_num: int, model: Model) -> list[str]:
        """External ids that files of this station/model were archived under."""
        rows = self._fetchall(
            """
            SELECT DISTINCT id FROM files
            WHERE station_num = ? AND model = ? AND id IS NOT NULL
            ORDER BY id
            """,
            (station_num, Model.from_str(model).value),
        )
        return [row[0] for row in rows]

    def most_recent_id(self, station_num: int, model: Model) -> str | None:
        """The id used by the station's latest run, if it still names this station."""
        row = self._fetchone(
            """
            SELECT id FROM files
            WHERE station_num = ? AND model = ?
            ORDER BY init_time DESC
            LIMIT 1
            """,
            (station_num, Model.from_str(model).value),
        )
        if row is None or row[0] is None:
            return None
        if self.station_num_for_alias(row[0]) != station_num:
            return None
        return row[0]

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def count(self, station_num: int, model: Model) -> int:
        """Number of archived runs for a station/model."""
        row = self._fetchone(
            "SELECT COUNT(*) FROM files WHERE station_num = ? AND model = ?",
            (station_num, Model.from_str(model).value),
        )
        return int(row[0])

    def file_exists(self, model: Model, station_num: int, init_time: datetime) -> bool:
        """Check whether a run is in the index."""
        row = self._fetchone(
            """
            SELECT COUNT(*) FROM files
            WHERE model = ? AND station_num = ? AND init_time = ?
            """,
            (Model.from_str(model).value, station_num, to_naive_utc(init_time)),
        )
        return row[0] == 1

    def find_run(self, model: Model, station_num: int, when: datetime) -> FileRecord | None:
        """Find the run for a time.

        An exact init time match wins; otherwise the most recent run whose
        forecast period covers ``when``.
        """
        when = to_naive_utc(when)
        row = self._fetchone(
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE model = ? AND station_num = ? AND init_time <= ? AND end_time >= ?
            ORDER BY init_time = ? DESC, init_time DESC
            LIMIT 1
            """,
            (Model.from_str(model).value, station_num, when, when, when),
        )
        return row_to_file(row) if row else None

    def most_recent_for_station(self, station_num: int, model: Model) -> FileRecord | None:
        """Run with the latest init time for a station/model."""
        row = self._fetchone(
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE station_num = ? AND model = ?
            ORDER BY init_time DESC
            LIMIT 1
            """,
            (station_num, Model.from_str(model).value),
        )
        return row_to_file(row) if row else None

    def most_recent(self, site_alias: str, model: Model) -> FileRecord | None:
        """Most recent run for a site known by ``site_alias``."""
        station_num = self.station_num_for_alias(site_alias)
        if station_num is None:
            return None
        return self.most_recent_for_station(station_num, model)

    def in_time_range(
        self,
        model: Model,
        station_num: int,
        start: datetime,
        end: datetime,
    ) -> FileRecordRange:
        """Runs initialized within ``[start, end]``, ascending."""
        return FileRecordRange(
            self.db,
            self.lock,
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE model = ? AND station_num = ? AND init_time BETWEEN ? AND ?
            ORDER BY init_time ASC
            """,
            (Model.from_str(model).value, station_num, to_naive_utc(start), to_naive_utc(end)),
        )

    def valid_in(
        self,
        model: Model,
        station_num: int,
        start: datetime,
        end: datetime,
    ) -> FileRecordRange:
        """Runs with any forecast data valid within ``[start, end]``, ascending."""
        return FileRecordRange(
            self.db,
            self.lock,
            f"""
            SELECT {FILE_COLUMNS} FROM files
            WHERE model = ? AND station_num = ? AND init_time <= ? AND end_time >= ?
            ORDER BY init_time ASC
            """,
            (Model.from_str(model).value, station_num, to_naive_utc(end), to_naive_utc(start)),
        )

    def init_times(self, station_num: int, model: Model) -> list[datetime]:
        """All init times for a station/model, ascending."""
        rows = self._fetchall(
            """
            SELECT init_time FROM files
            WHERE station_num = ? AND model = ?
            ORDER BY init_time ASC
            """,
            (station_num, Model.from_str(model).value),
        )
        return [row[0] for row in rows]

    def run_inventory(self, station_num: int, model: Model) -> Inventory:
        """First/last init times and the runs missing between them.

        Raises:
            NotFoundError: If the station has no runs for the model
        """
        model = Model.from_str(model)
        site = self.site(station_num)
        return Inventory.from_init_times(
            self.init_times(station_num, model),
            model,
            auto_download=site.auto_download if site else False,
        )

    def missing_runs(
        self,
        station_num: int,
        model: Model,
        time_range: tuple[datetime, datetime] | None = None,
    ) -> list[datetime]:
        """Scheduled runs absent from the archive.

        Args:
            station_num: Station number
            model: Model
            time_range: Inclusive range to check; defaults to first..last run

        Raises:
            NotFoundError: If no range is given and the station has no runs
        """
        model = Model.from_str(model)
        have = self.init_times(station_num, model)
        if time_range is None:
            return Inventory.from_init_times(have, model).missing

        present = set(have)
        start, end = (to_naive_utc(t) for t in time_range)
        return [t for t in model.all_runs(start, end) if t not in present]

    def auto_downloads(self) -> list[DownloadInfo]:
        """Site/model pairs to fetch, with the id of their latest run."""
        rows = self._fetchall(
            """
            SELECT f.id, f.station_num, f.model
            FROM files f
            JOIN sites s ON s.station_num = f.station_num
            JOIN (
                SELECT station_num, model, MAX(init_time) AS max_init
                FROM files GROUP BY station_num, model
            ) m ON m.station_num = f.station_num AND m.model = f.model
                AND m.max_init = f.init_time
            WHERE s.auto_download
            ORDER BY f.station_num, f.model
            """
        )
        return [
            DownloadInfo(id=row[0], station_num=row[1], model=Model.from_str(row[2]))
            for row in rows
        ]

    def inventory(self, model: Model) -> list[tuple[SiteInfo, str | None]]:
        """Sites with runs of ``model`` and the id of each site's latest run."""
        rows = self._fetchall(
            f"""
            SELECT {SITE_COLUMNS}, files.id
            FROM sites
            JOIN files ON files.station_num = sites.station_num
            JOIN (
                SELECT station_num, MAX(init_time) AS max_init
                FROM files WHERE model = ?
                GROUP BY station_num
            ) m ON m.station_num = files.station_num AND files.init_time = m.max_init
            WHERE files.model = ?
            ORDER BY sites.station_num
            """,
            (Model.from_str(model).value, Model.from_str(model).value),
        )
        return [(row_to_site(row), row[8]) for row in rows]

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    def station_summary(self) -> list[StationSummary]:
        """One summary per station/model, including sites without files."""
        rows = self._fetchall(
            f"""
            SELECT {SITE_COLUMNS}, files.model, COUNT(files.file_name)
            FROM sites LEFT JOIN files ON files.station_num = sites.station_num
            GROUP BY sites.station_num, sites.name, sites.state, sites.notes,
                     sites.tz_offset_sec, sites.auto_download, sites.mean_lat,
                     sites.mean_lon, files.model
            ORDER BY sites.station_num, files.model NULLS FIRST
            """
        )
        aliases = self.aliases()
        coords = self.coordinates()

        summaries = []
        for row in rows:
            site = row_to_site(row)
            summaries.append(
                StationSummary(
                    station_num=site.station_num,
                    ids=list(aliases.get(site.station_num, [])),
                    models=[Model.from_str(row[8])] if row[8] is not None else [],
                    name=site.name,
                    state=site.state,
                    notes=site.notes,
                    tz_offset_sec=site.tz_offset_sec,
                    auto_download=site.auto_download,
                    mean_lat=site.mean_lat,
                    mean_lon=site.mean_lon,
                    coords=list(coords.get(site.station_num, [])),
                    run_count=int(row[9]),
                )
            )
        return summaries

    def station_summaries(self) -> list[StationSummary]:
        """One summary per station with its models merged."""
        merged: dict[int, StationSummary] = {}
        for summary in self.station_summary():
            existing = merged.get(summary.station_num)
            if existing is None:
                merged[summary.station_num] = summary
            else:
                existing.models.extend(summary.models)
                existing.run_count += summary.run_count
        return list(merged.values())

    def station_summaries_near(
        self,
        lat: float,
        lon: float,
        max_distance_km: float | None = None,
    ) -> list[tuple[StationSummary, float]]:
        """Station summaries ordered by distance from a point.

        Distance is to the closest recorded coordinate of each station;
        stations without coordinates are skipped.

        Returns:
            List of (summary, distance_km) tuples
        """
        results = []
        for summary in self.station_summaries():
            points = summary.coords or (
                [(summary.mean_lat, summary.mean_lon)] if summary.mean_lat is not None else []
            )
            if not points:
                continue
            dist = min(self._haversine_distance(lat, lon, p[0], p[1]) for p in points)
            if max_distance_km is None or dist <= max_distance_km:
                results.append((summary, dist))

        return sorted(results, key=lambda x: x[1])

    @staticmethod
    def _haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate distance between two points using Haversine formula.

        Args:
            lat1, lon1: First point (degrees)
            lat2, lon2: Second point (degrees)

        Returns:
            Distance in kilometers
        """
        R = 6371.0088  # Mean Earth radius in km

        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        dlat = math.radians(lat2 - lat1)
        dlon = math.radians(lon2 - lon1)

        a = (
            math.sin(dlat / 2) ** 2
            + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
        )
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return R * c
