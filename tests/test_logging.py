"""Tests for logging setup."""

import json
import logging

import pytest
import structlog

from bufkit_data.core.config import LoggingConfig
from bufkit_data.utils.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)
    structlog.reset_defaults()


def read_events(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestSetupLogging:
    """Handlers and rendering from LoggingConfig."""

    def test_json_file_with_bound_context(self, tmp_path):
        setup_logging(
            LoggingConfig(log_dir=tmp_path, log_to_file=True, log_to_console=False, json_format=True)
        )

        get_logger("bufkit_data.test", root="/data/bufkit").info("Archived file", file_name="a.buf.gz")

        events = read_events(tmp_path / "bufkit_data.log")
        assert len(events) == 1
        assert events[0]["event"] == "Archived file"
        assert events[0]["root"] == "/data/bufkit"
        assert events[0]["file_name"] == "a.buf.gz"
        assert events[0]["level"] == "info"
        assert events[0]["logger"] == "bufkit_data.test"

    def test_stdlib_records_share_format(self, tmp_path):
        setup_logging(
            LoggingConfig(log_dir=tmp_path, log_to_file=True, log_to_console=False, json_format=True)
        )

        logging.getLogger("duckdb").warning("plain record")

        events = read_events(tmp_path / "bufkit_data.log")
        assert events[0]["event"] == "plain record"
        assert events[0]["level"] == "warning"

    def test_level_filtering(self, tmp_path):
        config = LoggingConfig(
            level="WARNING",
            log_dir=tmp_path,
            log_file="archive.log",
            log_to_file=True,
            log_to_console=False,
            json_format=True,
        )
        setup_logging(config)

        log = get_logger("bufkit_data.test")
        log.info("hidden")
        log.warning("shown")

        assert [e["event"] for e in read_events(tmp_path / "archive.log")] == ["shown"]

    def test_verbose_overrides_level(self, tmp_path):
        config = LoggingConfig(
            level="ERROR", log_dir=tmp_path, log_to_file=True, log_to_console=False, json_format=True
        )
        setup_logging(config, verbose=True)

        get_logger("bufkit_data.test").debug("detail")

        assert [e["event"] for e in read_events(tmp_path / "bufkit_data.log")] == ["detail"]

    def test_no_handlers(self):
        setup_logging(LoggingConfig(log_to_console=False))
        get_logger("bufkit_data.test").info("nowhere")
        assert all(isinstance(h, logging.NullHandler) for h in logging.getLogger().handlers)


class TestArchiveContext:
    """Archive events carry the archive root."""

    def test_archive_binds_root(self, tmp_path, make_bufkit):
        from bufkit_data.archive.archive import Archive

        log_dir = tmp_path / "logs"
        setup_logging(
            LoggingConfig(log_dir=log_dir, log_to_file=True, log_to_console=False, json_format=True)
        )

        root = tmp_path / "archive"
        with Archive.create(root) as archive:
            archive.add(make_bufkit(), model="gfs")

        archived = [e for e in read_events(log_dir / "bufkit_data.log") if e["event"] == "Archived file"]
        assert len(archived) == 1
        assert archived[0]["root"] == str(root)
