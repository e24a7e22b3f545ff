"""Tests for archive data models."""

import pytest
from datetime import datetime, timedelta

from bufkit_data.core.exceptions import NotFoundError
from bufkit_data.database.models import (
    FileRecord,
    Inventory,
    Model,
    SiteInfo,
    StationSummary,
    compressed_file_name,
)


class TestModel:
    """Model names and run schedule."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("gfs", Model.GFS),
            ("GFS3", Model.GFS),
            ("nam", Model.NAM),
            ("NAMM", Model.NAM),
            ("nam4km", Model.NAM4KM),
            ("NAM4KM", Model.NAM4KM),
        ],
    )
    def test_from_str(self, name, expected):
        assert Model.from_str(name) is expected

    def test_from_str_passthrough(self):
        assert Model.from_str(Model.NAM) is Model.NAM

    def test_invalid_name(self):
        with pytest.raises(ValueError, match="Invalid model name"):
            Model.from_str("hrrr")

    def test_str(self):
        assert str(Model.NAM4KM) == "NAM4KM"
        assert Model.GFS.value == "gfs"

    def test_schedule(self):
        assert Model.GFS.hours_between_runs == 6
        assert Model.NAM.base_hour == 0

    def test_all_runs_forward(self):
        runs = list(Model.GFS.all_runs(datetime(2017, 4, 1, 1), datetime(2017, 4, 1, 18)))
        assert runs == [datetime(2017, 4, 1, h) for h in (6, 12, 18)]

    def test_all_runs_backward(self):
        runs = list(Model.GFS.all_runs(datetime(2017, 4, 1, 13), datetime(2017, 4, 1, 0)))
        assert runs == [datetime(2017, 4, 1, h) for h in (12, 6, 0)]

    def test_all_runs_single(self):
        t = datetime(2017, 4, 1, 6)
        assert list(Model.NAM.all_runs(t, t)) == [t]


class TestFileRecord:
    """File records and names."""

    def test_file_name(self):
        assert (
            compressed_file_name(727730, Model.GFS, datetime(2017, 4, 1, 18))
            == "2017040118Z_gfs_727730.buf.gz"
        )

    def test_covers(self):
        init = datetime(2017, 4, 1)
        record = FileRecord(727730, Model.GFS, init, init + timedelta(hours=12), "x")
        assert record.covers(init)
        assert record.covers(init + timedelta(hours=12))
        assert not record.covers(init + timedelta(hours=13))
        assert record.natural_key == (Model.GFS, 727730, init)

    def test_to_dict(self):
        init = datetime(2017, 4, 1)
        data = FileRecord(1, Model.NAM, init, init, "x", "KMSO").to_dict()
        assert data["model"] == "nam"
        assert data["id"] == "KMSO"


class TestSiteInfo:
    """Site metadata."""

    def test_mean_coords(self):
        assert SiteInfo(1).mean_coords is None
        assert SiteInfo(1, mean_lat=1.5, mean_lon=2.5).mean_coords.as_tuple() == (1.5, 2.5)


class TestInventory:
    """Gap detection."""

    def test_gaps(self):
        base = datetime(2017, 4, 1)
        times = [base, base + timedelta(hours=6), base + timedelta(hours=24)]
        inv = Inventory.from_init_times(times, Model.GFS)
        assert inv.first == base
        assert inv.last == base + timedelta(hours=24)
        assert inv.missing == [base + timedelta(hours=h) for h in (12, 18)]

    def test_no_gaps(self):
        base = datetime(2017, 4, 1)
        inv = Inventory.from_init_times([base], Model.NAM, auto_download=True)
        assert inv.first == inv.last == base
        assert inv.missing == []
        assert inv.auto_download

    def test_empty(self):
        with pytest.raises(NotFoundError):
            Inventory.from_init_times([], Model.GFS)


class TestStationSummary:
    """Summary display."""

    def test_strings(self):
        summary = StationSummary(
            station_num=727730,
            ids=["KMSO", "MSO"],
            models=[Model.GFS, Model.NAM],
            name="Missoula",
            coords=[(46.92, -114.08)],
            run_count=4,
        )
        assert summary.ids_as_string() == "KMSO, MSO"
        assert summary.models_as_string() == "gfs, nam"
        assert summary.alias == "KMSO"
        assert summary.model is None
        text = str(summary)
        assert "Missoula" in text
        assert "(46.92,-114.08)" in text
