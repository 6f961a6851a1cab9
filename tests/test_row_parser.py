"""Tests for turning transcribed text into rows."""
from __future__ import annotations

from contribution_pipeline.models import Column, ColumnDataType
from contribution_pipeline.row_parser import column_keys, is_illegible, parse_rows

COLUMNS = [
    Column(position=2, data_type=ColumnDataType.DATE, header_guess="Date"),
    Column(position=1, data_type=ColumnDataType.OWNER_NAME, header_guess="Owner"),
    Column(position=3, data_type=ColumnDataType.AGE),
]


class TestColumnKeys:
    def test_unique_types_use_the_type(self):
        assert column_keys(sorted(COLUMNS, key=lambda c: c.position)) == ["owner_name", "date", "age"]

    def test_duplicate_and_unknown_types_fall_back(self):
        columns = [
            Column(position=1, data_type=ColumnDataType.NAME, header_guess="Father"),
            Column(position=2, data_type=ColumnDataType.NAME),
            Column(position=3),
        ]
        assert column_keys(columns) == ["Father", "Column 2", "Column 3"]


class TestParseRows:
    def test_cells_split_on_wide_spaces_and_tabs(self):
        text = "John Smith   1864-03-01   34\nMary Jones\t1865"

        rows = parse_rows(text, COLUMNS)

        assert rows[0]["columns"] == {"owner_name": "John Smith", "date": "1864-03-01", "age": "34"}
        assert rows[0]["confidence"] == 1.0
        assert rows[0]["raw_text"] == "John Smith   1864-03-01   34"
        assert rows[1]["columns"] == {"owner_name": "Mary Jones", "date": "1865"}
        assert rows[1]["confidence"] == 0.67
        assert [r["row_index"] for r in rows] == [0, 1]

    def test_single_spaces_stay_in_one_cell(self):
        rows = parse_rows("John Henry Smith", COLUMNS)
        assert rows[0]["columns"] == {"owner_name": "John Henry Smith"}

    def test_header_line_is_skipped(self):
        rows = parse_rows("Owner    Date    Age\nJohn Smith    1864    34", COLUMNS)

        assert len(rows) == 1
        assert rows[0]["row_index"] == 0
        assert rows[0]["columns"]["owner_name"] == "John Smith"

    def test_csv(self):
        rows = parse_rows('"Smith, John",1864,34\n,,\nJones,1865,', COLUMNS, as_csv=True)

        assert len(rows) == 2
        assert rows[0]["columns"]["owner_name"] == "Smith, John"
        assert rows[1]["columns"] == {"owner_name": "Jones", "date": "1865"}

    def test_illegible_cells_are_flagged(self):
        rows = parse_rows("[illegible]    1864    34", COLUMNS)
        assert rows[0]["illegible"] is True

    def test_nothing_to_parse(self):
        assert parse_rows("", COLUMNS) == []
        assert parse_rows("   \n  ", COLUMNS) == []
        assert parse_rows("John Smith    1864", []) == []


class TestIllegible:
    def test_markers(self):
        assert is_illegible({"columns": {"name": "J??? Smith"}})
        assert is_illegible({"columns": {"name": "[unclear]"}})
        assert is_illegible({"illegible": True, "columns": {}})
        assert not is_illegible({"columns": {"name": "John Smith", "age": 34}})
