"""
Read-only view of an archive for embedding in other programs.

Only text comes out; no index or blob store handles are exposed.

Usage:
    from bufkit_data.archive.reader import ArchiveReader

    with ArchiveReader("/data/bufkit") as reader:
        text = reader.most_recent("KMSO", "gfs")
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from bufkit_data.archive.archive import Archive
from bufkit_data.core.exceptions import ArchiveNotFoundError, BufkitDataError, archive_error_for
from bufkit_data.database.models import Model


def _as_text(raw: bytes) -> str:
    return raw.decode("ascii", errors="replace")


class ArchiveReader:
    """Narrow read-only access to an archive."""

    def __init__(self, root: Path | str):
        self._archive = Archive.connect(root, read_only=True)

    @property
    def root(self) -> Path:
        return self._archive.root

    def most_recent(self, site_alias: str, model: Model | str) -> str:
        """Text of the latest run for a site and model."""
        return _as_text(self._archive.retrieve_most_recent(site_alias, model))

    def retrieve(self, site_alias: str, model: Model | str, when: datetime) -> str:
        """Text of the run for a site, model and time."""
        station_num = self._station_num(site_alias, "retrieve")
        return _as_text(self._archive.retrieve(model, station_num, when))

    def models(self, site_alias: str) -> list[str]:
        """Names of the models archived for a site."""
        station_num = self._station_num(site_alias, "models")
        try:
            return [m.value for m in self._archive.queries.models(station_num)]
        except BufkitDataError as e:
            raise archive_error_for(e, "models") from e

    def _station_num(self, site_alias: str, operation: str) -> int:
        try:
            station_num = self._archive.queries.station_num_for_alias(site_alias)
        except BufkitDataError as e:
            raise archive_error_for(e, operation) from e
        if station_num is None:
            raise ArchiveNotFoundError(operation, f"Unknown site id {site_alias.upper()}")
        return station_num

    def close(self) -> None:
        self._archive.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
