"""Tests for date/time utilities."""

import pytest
from datetime import datetime, timedelta, timezone

from bufkit_data.utils.dates import parse_datetime, to_naive_utc


class TestToNaiveUTC:
    """Normalizing datetimes for the index."""

    def test_naive_unchanged(self):
        dt = datetime(2017, 4, 1, 18)
        assert to_naive_utc(dt) is dt

    def test_aware_converted(self):
        dt = datetime(2017, 4, 1, 12, tzinfo=timezone(timedelta(hours=-6)))
        assert to_naive_utc(dt) == datetime(2017, 4, 1, 18)


class TestParseDatetime:
    """User supplied times."""

    @pytest.mark.parametrize(
        "text",
        [
            "2017-04-01T18:00:00",
            "2017-04-01T18",
            "2017-04-01 18:00",
            "2017-04-01 18",
            "2017040118Z",
            "2017040118",
            " 2017-04-01T18:00 ",
        ],
    )
    def test_formats(self, text):
        assert parse_datetime(text) == datetime(2017, 4, 1, 18)

    def test_date_only(self):
        assert parse_datetime("2017-04-01") == datetime(2017, 4, 1)

    def test_iso_with_offset(self):
        assert parse_datetime("2017-04-01T12:00:00-06:00") == datetime(2017, 4, 1, 18)

    def test_unrecognized(self):
        with pytest.raises(ValueError, match="Unrecognized"):
            parse_datetime("next tuesday")
