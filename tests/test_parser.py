"""
Tests for data_ops.parser — narrow and wide CSV parsing.

Run with: python -m pytest tests/test_parser.py
"""

import pytest

from data_ops.errors import ParseError
from data_ops.parser import ParsedTable, parse_csv


class TestNarrow:
    def test_basic(self):
        table = parse_csv("id,all_avg\n01001,3.5\n01002,-1\n")
        assert table.header == ["id", "all_avg"]
        assert table.rows == {"01001": 3.5, "01002": -1.0}
        assert table.schema == "narrow"
        assert len(table) == 2

    def test_ids_keep_leading_zeros(self):
        table = parse_csv("id,v\n0100005,1\n")
        assert "0100005" in table.rows

    def test_non_numeric_cells_keep_raw_value(self):
        table = parse_csv("id,v\na,abc\nb,\nc,2\n")
        assert table.rows["a"] == "abc"
        assert table.rows["b"] == ""
        assert table.rows["c"] == 2.0

    def test_numeric_cells_are_floats(self):
        table = parse_csv("id,v\na,7\n")
        assert isinstance(table.rows["a"], float)

    def test_restated_header_is_dropped(self):
        table = parse_csv("id,v\na,1\nid,v\nb,2\n")
        assert table.rows == {"a": 1.0, "b": 2.0}

    def test_header_only(self):
        table = parse_csv("id,v\n")
        assert table.header == ["id", "v"]
        assert table.rows == {}

    def test_accepts_bytes(self):
        table = parse_csv(b"id,v\na,1.25\n")
        assert table.rows == {"a": 1.25}

    def test_too_many_columns_for_narrow(self):
        with pytest.raises(ParseError) as exc_info:
            parse_csv("id,a,b\nx,1,2\n")
        assert exc_info.value.row == 1


class TestWide:
    def test_rows_echo_id(self):
        text = "id,name,lat,lon,w_avg\nD1,Alpha,40.1,-75.2,0.5\n"
        table = parse_csv(text, "wide")
        assert table.header == ["id", "name", "lat", "lon", "w_avg"]
        assert table.rows["D1"] == ["D1", "Alpha", 40.1, -75.2, 0.5]

    def test_restated_header_is_dropped(self):
        text = "id,name,w_avg\nD1,Alpha,1\nid,name,w_avg\nD2,Beta,2\n"
        table = parse_csv(text, "wide")
        assert list(table.rows) == ["D1", "D2"]


class TestErrors:
    def test_ragged_row(self):
        with pytest.raises(ParseError) as exc_info:
            parse_csv("id,v\na,1\nb,2,3\n")
        err = exc_info.value
        assert err.row == 3
        assert err.column == 3
        assert "row 3" in str(err)

    def test_empty_input(self):
        with pytest.raises(ParseError) as exc_info:
            parse_csv("")
        assert exc_info.value.row is None

    def test_invalid_utf8(self):
        with pytest.raises(ParseError):
            parse_csv(b"id,v\n\xff\xfe,1\n")

    def test_unknown_schema(self):
        with pytest.raises(ValueError, match="Unknown schema"):
            parse_csv("id,v\na,1\n", "tall")

    def test_parse_error_is_pipeline_error(self):
        from data_ops.errors import ScatterviewError
        assert issubclass(ParseError, ScatterviewError)


class TestParsedTable:
    def test_defaults(self):
        table = ParsedTable(header=["id", "v"])
        assert table.rows == {}
        assert len(table) == 0
