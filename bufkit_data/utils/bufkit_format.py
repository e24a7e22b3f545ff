"""
Bufkit sounding file header parser.

Bufkit files are plain text. Each sounding in the file starts with a
station block such as::

    STID = KMSO STNM = 727730 TIME = 170401/0000
    SLAT = 46.92 SLON = -114.08 SELV = 972.0

The first block gives the init time, station and location; the last block
gives the end of the forecast period. The model is not recorded in the file
and must be supplied by the caller.

Usage:
    from bufkit_data.utils.bufkit_format import BufkitExtractor

    extractor = BufkitExtractor()
    meta = extractor(raw_bytes, Model.GFS)
"""

from __future__ import annotations

import re
from typing import Protocol

from bufkit_data.core.exceptions import UnparsableFileError
from bufkit_data.database.models import FileMetadata, Model
from bufkit_data.utils.dates import bufkit_time
from bufkit_data.utils.logging import get_logger


logger = get_logger(__name__)

STATION_LINE = re.compile(
    r"STID\s*=\s*(?P<stid>[^\s=]*)\s+STNM\s*=\s*(?P<stnm>-?\d+)\s+"
    r"TIME\s*=\s*(?P<time>\d{6}/\d{4})"
)
LOCATION_LINE = re.compile(
    r"SLAT\s*=\s*(?P<lat>-?\d+(?:\.\d*)?)\s+SLON\s*=\s*(?P<lon>-?\d+(?:\.\d*)?)"
    r"(?:\s+SELV\s*=\s*(?P<elev>-?\d+(?:\.\d*)?))?"
)


class MetadataExtractor(Protocol):
    """Turns raw file bytes into a FileMetadata record."""

    def __call__(self, raw: bytes, model: Model | None = None) -> FileMetadata:
        ...


class BufkitExtractor:
    """Extract archive metadata from bufkit text."""

    def __call__(self, raw: bytes, model: Model | str | None = None) -> FileMetadata:
        """Parse the station blocks of a bufkit file.

        Args:
            raw: Raw file bytes
            model: Model that produced the file

        Returns:
            FileMetadata

        Raises:
            UnparsableFileError: If the file is not a usable bufkit file
        """
        if model is None:
            raise UnparsableFileError("Bufkit files do not name their model; a model is required")
        try:
            model = Model.from_str(model)
        except ValueError as e:
            raise UnparsableFileError(str(e)) from e

        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise UnparsableFileError(f"Not a bufkit text file: {e}") from e

        stations = list(STATION_LINE.finditer(text))
        if not stations:
            raise UnparsableFileError("No STID/STNM/TIME station block found")

        location = LOCATION_LINE.search(text)
        if location is None:
            raise UnparsableFileError("No SLAT/SLON location found")

        first, last = stations[0], stations[-1]
        try:
            init_time = bufkit_time(first.group("time"))
            end_time = bufkit_time(last.group("time"))
        except ValueError as e:
            raise UnparsableFileError(f"Bad TIME value: {e}") from e

        if end_time < init_time:
            raise UnparsableFileError(
                f"Last valid time {end_time} precedes init time {init_time}"
            )

        station_num = int(first.group("stnm"))
        if station_num < 0:
            raise UnparsableFileError(f"Negative station number {station_num}")

        external_id = first.group("stid").upper() or None
        elevation = location.group("elev")

        logger.debug(
            "Parsed bufkit header",
            station_num=station_num,
            external_id=external_id,
            soundings=len(stations),
        )

        return FileMetadata(
            model=model,
            init_time=init_time,
            end_time=end_time,
            lat=float(location.group("lat")),
            lon=float(location.group("lon")),
            external_id=external_id,
            station_num=station_num,
            elevation_m=float(elevation) if elevation is not None else None,
        )


extract_metadata = BufkitExtractor()
