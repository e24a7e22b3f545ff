"""
Tests for bufkit header parsing.
"""

import pytest
from datetime import datetime

from bufkit_data.core.exceptions import UnparsableFileError
from bufkit_data.database.models import Model
from bufkit_data.utils.bufkit_format import BufkitExtractor, extract_metadata
from bufkit_data.utils.dates import bufkit_time


class TestBufkitTime:
    """Bufkit time stamps."""

    def test_parse(self):
        assert bufkit_time("170401/1800") == datetime(2017, 4, 1, 18, 0)

    def test_bad(self):
        with pytest.raises(ValueError):
            bufkit_time("2017-04-01")


class TestExtractor:
    """Metadata extraction."""

    def test_extract(self, make_bufkit):
        meta = extract_metadata(make_bufkit(init=datetime(2017, 4, 1, 12)), Model.GFS)
        assert meta.model == Model.GFS
        assert meta.external_id == "KMSO"
        assert meta.station_num == 727730
        assert meta.init_time == datetime(2017, 4, 1, 12)
        assert meta.end_time == datetime(2017, 4, 2, 0)
        assert meta.lat == pytest.approx(46.92)
        assert meta.lon == pytest.approx(-114.08)
        assert meta.elevation_m == pytest.approx(972.0)

    def test_model_alias(self, make_bufkit):
        assert BufkitExtractor()(make_bufkit(), "namm").model == Model.NAM

    def test_lower_case_id(self, make_bufkit):
        assert extract_metadata(make_bufkit(stid="kmso"), "gfs").external_id == "KMSO"

    def test_missing_id(self, make_bufkit):
        assert extract_metadata(make_bufkit(stid=""), "gfs").external_id is None

    def test_single_sounding(self, make_bufkit):
        meta = extract_metadata(make_bufkit(hours=(0,)), "gfs")
        assert meta.init_time == meta.end_time

    def test_model_required(self, make_bufkit):
        with pytest.raises(UnparsableFileError):
            extract_metadata(make_bufkit())

    def test_unknown_model(self, make_bufkit):
        with pytest.raises(UnparsableFileError):
            extract_metadata(make_bufkit(), "rap")

    def test_not_text(self):
        with pytest.raises(UnparsableFileError):
            extract_metadata(b"\xff\xfe\x00binary", "gfs")

    def test_no_station_block(self):
        with pytest.raises(UnparsableFileError):
            extract_metadata(b"SNPARM = PRES\n", "gfs")

    def test_no_location(self):
        raw = b"STID = KMSO STNM = 727730 TIME = 170401/0000\n"
        with pytest.raises(UnparsableFileError):
            extract_metadata(raw, "gfs")

    def test_time_going_backwards(self, make_bufkit):
        with pytest.raises(UnparsableFileError):
            extract_metadata(make_bufkit(hours=(12, 0)), "gfs")

    def test_bad_time(self):
        raw = (
            b"STID = KMSO STNM = 727730 TIME = 171340/0000\n"
            b"SLAT = 46.92 SLON = -114.08 SELV = 972.0\n"
        )
        with pytest.raises(UnparsableFileError):
            extract_metadata(raw, "gfs")
