"""Shared fixtures: synthetic bufkit files and scratch archives."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from bufkit_data.archive.archive import Archive


def bufkit_text(
    stid: str = "KMSO",
    stnm: int = 727730,
    init: datetime = datetime(2017, 4, 1, 0),
    hours: tuple[int, ...] = (0, 6, 12),
    lat: float = 46.92,
    lon: float = -114.08,
    elev: float = 972.0,
) -> bytes:
    """Build a minimal bufkit file with one station block per forecast hour."""
    blocks = []
    for hour in hours:
        valid = init + timedelta(hours=hour)
        blocks.append(
            f"STID = {stid} STNM = {stnm} TIME = {valid:%y%m%d/%H%M}\n"
            f"SLAT = {lat} SLON = {lon} SELV = {elev}\n"
            f"STIM = {hour}\n"
            "\n"
            "SHOW = 8.5 LIFT = 9.1 SWET = 38.4 KINX = -12.3\n"
            "\n"
            "PRES TMPC TMWC DWPC THTE DRCT SKNT OMEG\n"
            "897.70 3.04 -0.47 -6.36 290.07 122.74 6.17 -1.00\n"
        )
    body = "SNPARM = PRES;TMPC;TMWC;DWPC;THTE;DRCT;SKNT;OMEG\n\n" + "\n".join(blocks)
    return (body + "\nSTN YYMMDD/HHMM PMSL PRES SKTC\n").encode("ascii")


@pytest.fixture
def make_bufkit():
    """Factory for synthetic bufkit file contents."""
    return bufkit_text


@pytest.fixture
def archive_root(tmp_path: Path) -> Path:
    return tmp_path / "archive"


@pytest.fixture
def archive(archive_root: Path):
    """A freshly created archive, closed after the test."""
    arch = Archive.create(archive_root)
    yield arch
    arch.close()
