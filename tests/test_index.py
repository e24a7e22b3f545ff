"""
Tests for index operations against a scratch DuckDB file.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path

from bufkit_data.core.exceptions import (
    DatabaseError,
    DuplicateFileNameError,
    DuplicateNaturalKeyError,
    FileNotInIndexError,
    NotFoundError,
    SiteInUseError,
    UnknownSiteError,
)
from bufkit_data.database.connection import init_db
from bufkit_data.database.index import Index, normalize_alias
from bufkit_data.database.models import Coords, FileRecord, Model, SiteInfo


INIT = datetime(2017, 4, 1, 12)


@pytest.fixture
def index(tmp_path: Path):
    db = init_db(tmp_path / "index.duckdb")
    yield Index(db)
    db.close()


def make_record(station_num: int = 727730, init: datetime = INIT, name: str | None = None) -> FileRecord:
    return FileRecord(
        station_num=station_num,
        model=Model.GFS,
        init_time=init,
        end_time=init + timedelta(hours=180),
        file_name=name or f"{init:%Y%m%d%H}Z_gfs_{station_num}.buf.gz",
        site_id="KMSO",
    )


class TestSites:
    """Site, alias and coordinate operations."""

    def test_upsert_creates_then_updates(self, index):
        assert index.upsert_site(SiteInfo(station_num=1, name="A")) is True
        assert index.upsert_site(SiteInfo(station_num=1, name="B")) is False
        assert index.site(1).name == "B"

    def test_upsert_keeps_mean_coordinates(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        index.add_coordinate(1, 10.0, 20.0)
        index.recompute_mean_coordinates(1)
        index.upsert_site(SiteInfo(station_num=1, name="renamed"))
        assert index.site(1).mean_coords == Coords(10.0, 20.0)

    def test_alias_normalized(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        index.add_site_alias(1, " kmso ")
        assert index.aliases(1) == ["KMSO"]
        assert index.site_for_alias("Kmso").station_num == 1
        assert normalize_alias(" kmso ") == "KMSO"

    def test_alias_moves(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        index.upsert_site(SiteInfo(station_num=2))
        assert index.add_site_alias(1, "KMSO") is None
        assert index.add_site_alias(1, "KMSO") is None
        assert index.add_site_alias(2, "KMSO") == 1
        assert index.aliases(1) == []
        assert index.aliases(2) == ["KMSO"]

    def test_alias_unknown_site(self, index):
        with pytest.raises(UnknownSiteError):
            index.add_site_alias(99, "KMSO")

    def test_coordinate_dedup(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        assert index.add_coordinate(1, 46.92, -114.08) is True
        assert index.add_coordinate(1, 46.92, -114.08) is False
        assert index.coordinates(1) == [Coords(46.92, -114.08)]

    def test_mean_of_distinct_pairs(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        for lat, lon in ((10.0, 20.0), (10.0, 20.0), (20.0, 40.0)):
            index.add_coordinate(1, lat, lon)
        mean = index.recompute_mean_coordinates(1)
        assert mean == Coords(15.0, 30.0)
        assert index.site(1).mean_lat == 15.0

    def test_next_station_num(self, index):
        assert index.next_station_num() == 1
        index.upsert_site(SiteInfo(station_num=727730))
        assert index.next_station_num() == 727731

    def test_delete_site(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        index.add_site_alias(1, "AAA")
        index.add_coordinate(1, 1.0, 1.0)
        assert index.delete_site(1) == []
        assert index.site(1) is None
        assert index.site_for_alias("AAA") is None
        assert index.coordinates(1) == []

    def test_delete_site_in_use(self, index):
        index.upsert_site(SiteInfo(station_num=727730))
        index.insert_file(make_record())
        with pytest.raises(SiteInUseError):
            index.delete_site(727730)
        assert index.delete_site(727730, cascade=True) == [make_record().file_name]
        assert index.file_names() == set()

    def test_delete_unknown_site(self, index):
        with pytest.raises(UnknownSiteError):
            index.delete_site(5)

    def test_sites_without_aliases(self, index):
        index.upsert_site(SiteInfo(station_num=1))
        index.upsert_site(SiteInfo(station_num=2))
        index.add_site_alias(2, "BBB")
        assert index.sites_without_aliases() == [1]


class TestFiles:
    """File row operations and uniqueness."""

    @pytest.fixture(autouse=True)
    def site(self, index):
        index.upsert_site(SiteInfo(station_num=727730))

    def test_insert_and_find(self, index):
        record = make_record()
        index.insert_file(record)
        assert index.find_file(Model.GFS, 727730, INIT) == record
        assert index.find_file_by_name(record.file_name) == record
        assert index.files_for_site(727730) == [record]

    def test_find_missing(self, index):
        assert index.find_file("gfs", 727730, INIT) is None
        assert index.find_file_by_name("nothing.buf.gz") is None

    def test_duplicate_natural_key(self, index):
        index.insert_file(make_record())
        with pytest.raises(DuplicateNaturalKeyError):
            index.insert_file(make_record(name="other.buf.gz"))

    def test_duplicate_file_name(self, index):
        index.insert_file(make_record())
        with pytest.raises(DuplicateFileNameError):
            index.insert_file(
                make_record(init=INIT + timedelta(minutes=30), name=make_record().file_name)
            )

    def test_unknown_site(self, index):
        with pytest.raises(UnknownSiteError):
            index.insert_file(make_record(station_num=1))

    def test_end_before_init(self, index):
        record = FileRecord(
            station_num=727730,
            model=Model.GFS,
            init_time=INIT,
            end_time=INIT - timedelta(hours=1),
            file_name="bad.buf.gz",
        )
        with pytest.raises(DatabaseError):
            index.insert_file(record)

    def test_delete_file(self, index):
        record = make_record()
        index.insert_file(record)
        assert index.delete_file(record.file_name) == record
        assert index.file_names() == set()

    def test_delete_missing_file(self, index):
        with pytest.raises(FileNotInIndexError) as exc_info:
            index.delete_file("nothing.buf.gz")
        assert isinstance(exc_info.value, NotFoundError)


class TestTransactions:
    """Commit and rollback."""

    def test_rollback(self, index):
        index.begin_transaction()
        index.upsert_site(SiteInfo(station_num=1))
        index.rollback()
        assert index.site(1) is None

    def test_commit(self, index):
        index.begin_transaction()
        index.upsert_site(SiteInfo(station_num=1))
        index.commit()
        assert index.site(1) is not None

    def test_context_manager_rolls_back(self, index):
        with pytest.raises(RuntimeError):
            with index.transaction():
                index.upsert_site(SiteInfo(station_num=1))
                raise RuntimeError("abort")
        assert index.site(1) is None
        assert not index.db.in_transaction

    def test_nested_begin_rejected(self, index):
        index.begin_transaction()
        try:
            with pytest.raises(DatabaseError):
                index.begin_transaction()
        finally:
            index.rollback()
