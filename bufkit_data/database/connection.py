"""
DuckDB database connection and schema management.

The index schema is versioned with a marker in ``archive_meta``. Layouts
written by older releases are detected when the archive is opened and
migrated in a single transaction.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import duckdb

from bufkit_data.core.exceptions import DatabaseError, SchemaVersionError
from bufkit_data.utils.logging import get_logger


logger = get_logger(__name__)

SCHEMA_VERSION = 3

# Layout history:
#   1 - sites keyed by a text site code, files reference the code
#   2 - sites keyed by station number, no alias or coordinate history
#   3 - station number keys plus site_ids and coords tables (current)
LEGACY_TEXT_KEYED = 1
LEGACY_STATION_KEYED = 2


class DatabaseManager:
    """Manages DuckDB database connections and schema."""

    def __init__(self, db_path: Path | str, read_only: bool = False):
        """Initialize database manager.

        Args:
            db_path: Path to DuckDB database file
            read_only: Open in read-only mode
        """
        self.db_path = Path(db_path)
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._local = threading.local()
        self._cursors: dict[threading.Thread, duckdb.DuckDBPyConnection] = {}
        self._cursor_lock = threading.Lock()
        self._in_transaction = False

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get database connection, creating if needed."""
        if self._conn is None:
            self._connect()
        return self._conn  # type: ignore

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            if not self.read_only:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = duckdb.connect(
                str(self.db_path),
                read_only=self.read_only,
            )
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to connect to database: {e}") from e

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """Get this thread's read cursor.

        DuckDB connections are not safe to share between threads; each
        thread gets its own cursor onto the same database.

        Cursors of threads that have exited are closed here.
        """
        cur = getattr(self._local, "cursor", None)
        if cur is None:
            cur = self.conn.cursor()
            self._local.cursor = cur
            with self._cursor_lock:
                self._prune_cursors()
                self._cursors[threading.current_thread()] = cur
        return cur

    def _prune_cursors(self) -> None:
        for thread in [t for t in self._cursors if not t.is_alive()]:
            self._cursors.pop(thread).close()

    @property
    def open_cursors(self) -> int:
        """Number of thread cursors currently held."""
        with self._cursor_lock:
            return len(self._cursors)

    def close(self) -> None:
        """Close database connection and all thread cursors."""
        with self._cursor_lock:
            for cur in self._cursors.values():
                cur.close()
            self._cursors.clear()
        self._local = threading.local()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create the current database schema."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS archive_meta (
                key VARCHAR PRIMARY KEY,
                value VARCHAR NOT NULL
            )
        """)

        # Sites - one row per physical station
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sites (
                station_num INTEGER PRIMARY KEY,
                name VARCHAR DEFAULT NULL,
                state VARCHAR DEFAULT NULL,
                notes VARCHAR DEFAULT NULL,
                tz_offset_sec INTEGER DEFAULT NULL,
                auto_download BOOLEAN DEFAULT FALSE,
                mean_lat DOUBLE DEFAULT NULL,
                mean_lon DOUBLE DEFAULT NULL
            )
        """)

        # External identifiers (ICAO, WMO, ...) for sites
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS site_ids (
                station_num INTEGER NOT NULL,
                id VARCHAR NOT NULL UNIQUE
            )
        """)

        # Coordinate history, one row per distinct pair
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS coords (
                station_num INTEGER NOT NULL,
                lat DOUBLE NOT NULL,
                lon DOUBLE NOT NULL,
                UNIQUE(station_num, lat, lon)
            )
        """)

        # Archived files
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS files (
                station_num INTEGER NOT NULL,
                model VARCHAR NOT NULL,
                init_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP NOT NULL,
                file_name VARCHAR NOT NULL UNIQUE,
                id VARCHAR DEFAULT NULL
            )
        """)

        self.conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS no_dups_files "
            "ON files(model, station_num, init_time)"
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS time_ranges "
            "ON files(model, station_num, init_time, end_time)"
        )

        self._set_schema_version(SCHEMA_VERSION)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the main schema."""
        row = self.fetchone(
            "SELECT COUNT(*) FROM information_schema.tables "
            "WHERE table_schema = 'main' AND table_name = ?",
            (table_name,),
        )
        return row is not None and row[0] > 0

    def table_columns(self, table_name: str) -> list[str]:
        """List the columns of a table."""
        rows = self.fetchall(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = 'main' AND table_name = ? ORDER BY ordinal_position",
            (table_name,),
        )
        return [row[0] for row in rows]

    def schema_version(self) -> int | None:
        """Get the stored schema version.

        Returns:
            Version number, 0 for an empty database, or None for an unmarked
            database written by an older release
        """
        if self.table_exists("archive_meta"):
            row = self.fetchone(
                "SELECT value FROM archive_meta WHERE key = 'schema_version'"
            )
            if row is not None:
                return int(row[0])
        if not self.table_exists("files") and not self.table_exists("sites"):
            return 0
        return None

    def _set_schema_version(self, version: int) -> None:
        self.conn.execute(
            "INSERT INTO archive_meta (key, value) VALUES ('schema_version', ?) "
            "ON CONFLICT (key) DO UPDATE SET value = excluded.value",
            (str(version),),
        )

    def detect_layout(self) -> int:
        """Classify an unmarked database by its table layout."""
        if "site" in self.table_columns("files"):
            return LEGACY_TEXT_KEYED
        if not self.table_exists("site_ids"):
            return LEGACY_STATION_KEYED
        return SCHEMA_VERSION

    def ensure_schema(self, create: bool = True) -> int:
        """Make sure the database holds the current schema.

        Args:
            create: Create the schema in an empty database

        Returns:
            The schema version in use

        Raises:
            SchemaVersionError: If the schema is newer than this code, needs
                migrating on a read-only connection, or is missing
        """
        version = self.schema_version()

        if version == SCHEMA_VERSION:
            return version
        if version is not None and version > SCHEMA_VERSION:
            raise SchemaVersionError(version, SCHEMA_VERSION)
        if version == 0:
            if not create or self.read_only:
                raise SchemaVersionError(0, SCHEMA_VERSION, "Database holds no archive index")
            with self.transaction():
                self.create_schema()
            logger.info("Created archive index", path=str(self.db_path), version=SCHEMA_VERSION)
            return SCHEMA_VERSION

        if version is None:
            version = self.detect_layout()
        if self.read_only:
            raise SchemaVersionError(
                version, SCHEMA_VERSION, "Index must be migrated but is open read-only"
            )

        with self.transaction():
            self.migrate(version)
        logger.info(
            "Migrated archive index",
            path=str(self.db_path),
            from_version=version,
            to_version=SCHEMA_VERSION,
        )
        return SCHEMA_VERSION

    # -------------------------------------------------------------------------
    # Migrations
    # -------------------------------------------------------------------------

    def migrate(self, from_version: int) -> None:
        """Migrate an older layout to the current schema.

        Must run inside a transaction. Old tables are copied into temp
        tables, dropped, and rebuilt in the current layout.
        """
        if from_version == SCHEMA_VERSION:
            self.create_schema()
        elif from_version == LEGACY_TEXT_KEYED:
            self._migrate_text_keyed()
        elif from_version == LEGACY_STATION_KEYED:
            self._migrate_station_keyed()
        else:
            raise SchemaVersionError(from_version, SCHEMA_VERSION)

    def _snapshot_and_drop(self, *tables: str) -> None:
        for table in tables:
            self.conn.execute(f"CREATE TEMP TABLE legacy_{table} AS SELECT * FROM {table}")
        for table in tables:
            self.conn.execute(f"DROP TABLE {table}")

    def _migrate_text_keyed(self) -> None:
        """Version 1: text site codes become aliases of numbered stations."""
        self._snapshot_and_drop("files", "sites")
        self.create_schema()

        # Codes referenced only by files still need a station
        self.conn.execute("""
            CREATE TEMP TABLE legacy_codes AS
            SELECT code, ROW_NUMBER() OVER (ORDER BY code) AS station_num
            FROM (
                SELECT UPPER(site) AS code FROM legacy_sites
                UNION
                SELECT UPPER(site) AS code FROM legacy_files
            )
        """)
        self.conn.execute("""
            INSERT INTO sites (station_num, name, state, notes, tz_offset_sec, auto_download)
            SELECT c.station_num, s.name, s.state, s.notes, s.tz_offset_sec,
                   COALESCE(s.auto_download, 0) <> 0
            FROM legacy_codes c LEFT JOIN legacy_sites s ON UPPER(s.site) = c.code
        """)
        self.conn.execute("""
            INSERT INTO site_ids (station_num, id)
            SELECT station_num, code FROM legacy_codes
        """)
        self.conn.execute("""
            INSERT INTO files (station_num, model, init_time, end_time, file_name, id)
            SELECT c.station_num, f.model, CAST(f.init_time AS TIMESTAMP),
                   CAST(f.end_time AS TIMESTAMP), f.file_name, c.code
            FROM legacy_files f JOIN legacy_codes c ON UPPER(f.site) = c.code
        """)
        for table in ("legacy_codes", "legacy_files", "legacy_sites"):
            self.conn.execute(f"DROP TABLE {table}")

    def _migrate_station_keyed(self) -> None:
        """Version 2: rebuild with alias and coordinate history."""
        file_columns = set(self.table_columns("files"))
        site_columns = set(self.table_columns("sites"))
        self._snapshot_and_drop("files", "sites")
        self.create_schema()

        auto_download = (
            "COALESCE(auto_download, 0) <> 0" if "auto_download" in site_columns else "FALSE"
        )
        self.conn.execute(f"""
            INSERT INTO sites (station_num, name, state, notes, tz_offset_sec, auto_download)
            SELECT station_num, name, state, notes, tz_offset_sec, {auto_download}
            FROM legacy_sites
        """)
        # Stations only referenced by files
        self.conn.execute("""
            INSERT INTO sites (station_num)
            SELECT DISTINCT station_num FROM legacy_files
            WHERE station_num NOT IN (SELECT station_num FROM sites)
        """)

        id_column = "id" if "id" in file_columns else "NULL"
        self.conn.execute(f"""
            INSERT INTO files (station_num, model, init_time, end_time, file_name, id)
            SELECT station_num, model, CAST(init_time AS TIMESTAMP),
                   CAST(end_time AS TIMESTAMP), file_name, UPPER({id_column})
            FROM legacy_files
        """)

        if "id" in file_columns:
            # Each id goes to the station that used it most recently
            self.conn.execute("""
                INSERT INTO site_ids (station_num, id)
                SELECT arg_max(station_num, init_time), id
                FROM files WHERE id IS NOT NULL
                GROUP BY id
            """)

        if {"lat", "lon"} <= file_columns:
            self.conn.execute("""
                INSERT INTO coords (station_num, lat, lon)
                SELECT DISTINCT station_num, lat, lon
                FROM legacy_files WHERE lat IS NOT NULL AND lon IS NOT NULL
            """)
            self.conn.execute("""
                UPDATE sites SET mean_lat = m.lat, mean_lon = m.lon
                FROM (
                    SELECT station_num, AVG(lat) AS lat, AVG(lon) AS lon
                    FROM coords GROUP BY station_num
                ) AS m
                WHERE sites.station_num = m.station_num
            """)

        self.conn.execute("DROP TABLE legacy_files")
        self.conn.execute("DROP TABLE legacy_sites")

    # -------------------------------------------------------------------------
    # Queries and transactions
    # -------------------------------------------------------------------------

    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> Any:
        """Execute a query.

        Args:
            query: SQL query
            params: Query parameters

        Returns:
            Query result
        """
        try:
            if params:
                return self.conn.execute(query, params)
            return self.conn.execute(query)
        except duckdb.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e

    def fetchone(self, query: str, params: tuple[Any, ...] | None = None) -> Any:
        """Execute query and fetch one row."""
        result = self.execute(query, params)
        return result.fetchone()

    def fetchall(self, query: str, params: tuple[Any, ...] | None = None) -> list[Any]:
        """Execute query and fetch all rows."""
        result = self.execute(query, params)
        return result.fetchall()

    @property
    def in_transaction(self) -> bool:
        """True between begin_transaction() and commit()/rollback()."""
        return self._in_transaction

    def begin_transaction(self) -> None:
        """Start the single write transaction."""
        if self._in_transaction:
            raise DatabaseError("A write transaction is already open")
        self.execute("BEGIN TRANSACTION")
        self._in_transaction = True

    def commit(self) -> None:
        """Commit the write transaction."""
        try:
            self.execute("COMMIT")
        finally:
            self._in_transaction = False

    def rollback(self) -> None:
        """Roll back the write transaction."""
        try:
            self.execute("ROLLBACK")
        finally:
            self._in_transaction = False

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for transactions."""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


def init_db(
    db_path: Path | str,
    create_schema: bool = True,
    read_only: bool = False,
) -> DatabaseManager:
    """Initialize database.

    Args:
        db_path: Path to database file
        create_schema: Whether to create the schema in an empty database
        read_only: Open in read-only mode

    Returns:
        DatabaseManager instance
    """
    db = DatabaseManager(db_path, read_only=read_only)
    try:
        db.ensure_schema(create=create_schema)
    except Exception:
        db.close()
        raise
    return db
