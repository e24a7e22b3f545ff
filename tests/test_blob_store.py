"""
Tests for the compressed blob store and gzip helpers.
"""

import gzip
import pytest
from pathlib import Path

from bufkit_data.archive.blob_store import BlobStore
from bufkit_data.core.exceptions import (
    BlobExistsError,
    BlobNotFoundError,
    CorruptDataError,
    NotFoundError,
    StoreIOError,
)
from bufkit_data.utils.compression import compress_bytes, decompress_bytes, is_gzip


NAME = "2017040100Z_gfs_727730.buf.gz"


@pytest.fixture
def store(tmp_path: Path) -> BlobStore:
    return BlobStore(tmp_path / "data")


class TestCompression:
    """gzip helpers."""

    def test_deterministic(self):
        assert compress_bytes(b"abc" * 100) == compress_bytes(b"abc" * 100)

    def test_readable_by_gzip(self):
        assert gzip.decompress(compress_bytes(b"sounding")) == b"sounding"
        assert decompress_bytes(gzip.compress(b"sounding")) == b"sounding"

    def test_is_gzip(self):
        assert is_gzip(compress_bytes(b""))
        assert not is_gzip(b"SNPARM")


class TestStore:
    """Writing blobs."""

    def test_store_and_load(self, store):
        path = store.store(NAME, b"raw text")
        assert path == store.data_root / NAME
        assert is_gzip(path.read_bytes())
        assert store.load(NAME) == b"raw text"

    def test_existing_blob(self, store):
        store.store(NAME, b"one")
        with pytest.raises(BlobExistsError):
            store.store(NAME, b"two")
        assert store.load(NAME) == b"one"

    def test_overwrite(self, store):
        store.store(NAME, b"one")
        store.store(NAME, b"two", overwrite=True)
        assert store.load(NAME) == b"two"

    def test_no_temp_files_left(self, store):
        store.store(NAME, b"raw")
        assert store.temp_files() == []
        assert store.names() == {NAME}

    def test_compression_level(self, tmp_path):
        raw = b"PRES TMPC " * 1000
        fast = BlobStore(tmp_path / "fast", compression_level=0).store(NAME, raw)
        best = BlobStore(tmp_path / "best", compression_level=9).store(NAME, raw)
        assert best.stat().st_size < fast.stat().st_size

    def test_write_failure(self, store, monkeypatch):
        import os

        def fail(src, dst):
            raise OSError("device full")

        monkeypatch.setattr(os, "replace", fail)
        with pytest.raises(StoreIOError):
            store.store(NAME, b"raw")
        monkeypatch.undo()
        assert store.temp_files() == []
        assert not store.exists(NAME)

    @pytest.mark.parametrize("name", ["", ".", "..", "../escape.gz", "sub/dir.gz", ".hidden"])
    def test_invalid_names(self, store, name):
        with pytest.raises(ValueError):
            store.path_for(name)


class TestLoad:
    """Reading blobs."""

    def test_missing(self, store):
        with pytest.raises(BlobNotFoundError) as exc_info:
            store.load(NAME)
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.file_name == NAME

    def test_corrupt(self, store):
        store.data_root.mkdir(parents=True)
        (store.data_root / NAME).write_bytes(b"not gzip at all")
        with pytest.raises(CorruptDataError):
            store.load(NAME)

    def test_truncated(self, store):
        path = store.store(NAME, b"x" * 10000)
        path.write_bytes(path.read_bytes()[:20])
        with pytest.raises(CorruptDataError):
            store.load(NAME)


class TestRemove:
    """Removing blobs."""

    def test_remove(self, store):
        store.store(NAME, b"raw")
        store.remove(NAME)
        assert not store.exists(NAME)

    def test_remove_missing_is_ok(self, store):
        store.remove(NAME)

    def test_names_skips_temp_files(self, store):
        store.store(NAME, b"raw")
        (store.data_root / ".x.tmp").write_bytes(b"")
        assert store.names() == {NAME}
        assert [p.name for p in store.temp_files()] == [".x.tmp"]

    def test_empty_store(self, store):
        assert store.names() == set()
        assert store.temp_files() == []
