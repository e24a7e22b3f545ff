"""
Data models for archive records.

Uses dataclasses for type-safe data handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Iterator

from bufkit_data.core.exceptions import NotFoundError


class Model(str, Enum):
    """Forecast models stored in the archive."""

    GFS = "gfs"
    NAM = "nam"
    NAM4KM = "nam4km"

    @classmethod
    def from_str(cls, name: str | "Model") -> "Model":
        """Parse a model name, accepting the historical aliases.

        Args:
            name: e.g. "gfs", "GFS3", "namm", "nam4km"

        Raises:
            ValueError: If the name is not a known model
        """
        if isinstance(name, Model):
            return name
        key = name.strip().lower()
        model = _MODEL_ALIASES.get(key)
        if model is None:
            raise ValueError(f"Invalid model name: {name}")
        return model

    @property
    def hours_between_runs(self) -> int:
        """Number of hours between model runs."""
        return 6

    @property
    def base_hour(self) -> int:
        """Hour of the first run of the day (UTC)."""
        return 0

    def all_runs(self, start: datetime, end: datetime) -> Iterator[datetime]:
        """Iterate over all run init times from ``start`` towards ``end``.

        The first value is ``start`` snapped onto the model's run schedule;
        iteration runs backwards in time when ``end`` precedes ``start``.
        Both ends are inclusive when they fall on the schedule.
        """
        delta = timedelta(hours=self.hours_between_runs)
        base = start.replace(hour=0, minute=0, second=0, microsecond=0)
        base += timedelta(hours=self.base_hour)

        if start <= end:
            while base > start:
                base -= delta
            while base < start:
                base += delta
            current = base
            while current <= end:
                yield current
                current += delta
        else:
            while base < start:
                base += delta
            while base > start:
                base -= delta
            current = base
            while current >= end:
                yield current
                current -= delta

    def __str__(self) -> str:
        return self.value.upper()


_MODEL_ALIASES: dict[str, Model] = {
    "gfs": Model.GFS,
    "gfs3": Model.GFS,
    "nam": Model.NAM,
    "namm": Model.NAM,
    "nam4km": Model.NAM4KM,
}


@dataclass(frozen=True)
class Coords:
    """Latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


@dataclass
class SiteInfo:
    """Site metadata."""

    station_num: int
    name: str | None = None
    state: str | None = None
    notes: str | None = None
    tz_offset_sec: int | None = None
    auto_download: bool = False
    mean_lat: float | None = None
    mean_lon: float | None = None

    @property
    def mean_coords(self) -> Coords | None:
        """Representative coordinates, if any were recorded."""
        if self.mean_lat is None or self.mean_lon is None:
            return None
        return Coords(self.mean_lat, self.mean_lon)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "station_num": self.station_num,
            "name": self.name,
            "state": self.state,
            "notes": self.notes,
            "tz_offset_sec": self.tz_offset_sec,
            "auto_download": self.auto_download,
            "mean_lat": self.mean_lat,
            "mean_lon": self.mean_lon,
        }


@dataclass(frozen=True)
class FileRecord:
    """One archived sounding file."""

    station_num: int
    model: Model
    init_time: datetime
    end_time: datetime
    file_name: str
    site_id: str | None = None

    @property
    def natural_key(self) -> tuple[Model, int, datetime]:
        """The archive-wide identity of this run."""
        return (self.model, self.station_num, self.init_time)

    def covers(self, when: datetime) -> bool:
        """True if ``when`` falls within this run's forecast period."""
        return self.init_time <= when <= self.end_time

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return {
            "station_num": self.station_num,
            "model": self.model.value,
            "init_time": self.init_time,
            "end_time": self.end_time,
            "file_name": self.file_name,
            "id": self.site_id,
        }


def compressed_file_name(station_num: int, model: Model, init_time: datetime) -> str:
    """Canonical blob name for a run.

    Example: ``2017040118Z_gfs_727730.buf.gz``
    """
    return f"{init_time:%Y%m%d%H}Z_{model.value}_{station_num}.buf.gz"


@dataclass
class FileMetadata:
    """Metadata extracted from a raw sounding file."""

    model: Model
    init_time: datetime
    end_time: datetime
    lat: float
    lon: float
    external_id: str | None = None
    station_num: int | None = None
    elevation_m: float | None = None


class SiteOutcome(str, Enum):
    """How a site was resolved while archiving a file."""

    EXISTING = "existing"
    NEW_ALIAS = "new_alias"
    ALIAS_MOVED = "alias_moved"
    CREATED = "created"


@dataclass
class SiteResolution:
    """Result of resolving the site for an incoming file."""

    site: SiteInfo
    outcome: SiteOutcome
    previous_station_num: int | None = None


@dataclass
class StationSummary:
    """Summary of a station, per model or merged across models."""

    station_num: int
    ids: list[str] = field(default_factory=list)
    models: list[Model] = field(default_factory=list)
    name: str | None = None
    state: str | None = None
    notes: str | None = None
    tz_offset_sec: int | None = None
    auto_download: bool = False
    mean_lat: float | None = None
    mean_lon: float | None = None
    coords: list[tuple[float, float]] = field(default_factory=list)
    run_count: int = 0

    @property
    def model(self) -> Model | None:
        """The model of a per-model row (None for a site without files)."""
        return self.models[0] if len(self.models) == 1 else None

    @property
    def alias(self) -> str | None:
        """First alias of the station, if any."""
        return self.ids[0] if self.ids else None

    def ids_as_string(self) -> str:
        return ", ".join(self.ids)

    def models_as_string(self) -> str:
        return ", ".join(m.value for m in self.models)

    def coords_as_string(self) -> str:
        return ", ".join(f"({lat},{lon})" for lat, lon in self.coords)

    def __str__(self) -> str:
        lines = [f"Station Num: {self.station_num}"]
        if self.name:
            lines.append(f"       Name: {self.name}")
        if self.state:
            lines.append(f"      State: {self.state}")
        if self.notes:
            lines.append(f"      Notes: {self.notes}")
        lines.append(f"        Ids: {self.ids_as_string()}")
        lines.append(f"     Models: {self.models_as_string()}")
        lines.append(f"     Coords: {self.coords_as_string()}")
        lines.append(f"  Num Files: {self.run_count}")
        return "\n".join(lines)


@dataclass
class Inventory:
    """First and last init times of a site/model plus the runs missing between."""

    first: datetime
    last: datetime
    missing: list[datetime] = field(default_factory=list)
    auto_download: bool = False

    @classmethod
    def from_init_times(
        cls,
        init_times: Iterable[datetime],
        model: Model,
        auto_download: bool = False,
    ) -> "Inventory":
        """Build an inventory from init times sorted earliest to latest.

        Raises:
            NotFoundError: If there are no init times
        """
        times = iter(init_times)
        delta = timedelta(hours=model.hours_between_runs)

        first = next(times, None)
        if first is None:
            raise NotFoundError(f"No {model.value} runs to build an inventory from")

        missing: list[datetime] = []
        last = first
        expected = first
        for init_time in times:
            expected += delta
            while expected < init_time:
                missing.append(expected)
                expected += delta
            expected = init_time
            last = init_time

        return cls(first=first, last=last, missing=missing, auto_download=auto_download)


@dataclass(frozen=True)
class DownloadInfo:
    """Site/model pair flagged for automatic download."""

    id: str | None
    station_num: int
    model: Model
