"""
Tests for value normalization helpers.

Run with: CONVENE_ENV=test pytest src/convene/values_test.py -v
"""

from datetime import date, datetime, time

import pytest

from convene.values import decode_json, encode_json, normalize_date, normalize_time


class TestNormalizeTime:
    """Tests for normalize_time()"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("09:30", "09:30:00"),
            ("9:30", "09:30:00"),
            ("09:30:15", "09:30:15"),
            (time(9, 30), "09:30:00"),
            (time(9, 30, 0, 500), "09:30:00"),
            (datetime(2025, 3, 10, 14, 5), "14:05:00"),
            (None, None),
            ("", None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_time(value) == expected

    def test_invalid_time_raises(self):
        with pytest.raises(ValueError):
            normalize_time("25:00")


class TestNormalizeDate:
    """Tests for normalize_date()"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2025-03-10", "2025-03-10"),
            (date(2025, 3, 10), "2025-03-10"),
            (datetime(2025, 3, 10, 23, 59), "2025-03-10"),
            ("2025-03-10T08:00:00", "2025-03-10"),
            (None, None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_date(value) == expected


class TestJson:
    """Tests for encode_json() / decode_json()"""

    def test_encode_structured(self):
        assert encode_json({"choices": ["a"]}) == '{"choices": ["a"]}'

    def test_encode_passes_strings_through(self):
        assert encode_json("not json at all") == "not json at all"

    @pytest.mark.parametrize(
        "raw,expected",
        [('{"a": 1}', {"a": 1}), ({"a": 1}, {"a": 1}), ("", {}), (None, {}), ("{broken", {})],
    )
    def test_decode(self, raw, expected):
        assert decode_json(raw, {}) == expected
