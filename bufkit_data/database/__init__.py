"""Archive index: DuckDB schema, operations and queries."""

from bufkit_data.database.connection import DatabaseManager, init_db, SCHEMA_VERSION
from bufkit_data.database.index import Index
from bufkit_data.database.models import (
    Model,
    SiteInfo,
    FileRecord,
    FileMetadata,
    StationSummary,
    Inventory,
)
from bufkit_data.database.queries import QueryEngine, FileRecordRange

__all__ = [
    "DatabaseManager",
    "init_db",
    "SCHEMA_VERSION",
    "Index",
    "QueryEngine",
    "FileRecordRange",
    "Model",
    "SiteInfo",
    "FileRecord",
    "FileMetadata",
    "StationSummary",
    "Inventory",
]
