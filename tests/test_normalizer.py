"""
Tests for result normalization and row comparison
"""

import datetime
from decimal import Decimal

import pytest

from sqllogic.errors import AssertionMismatch
from sqllogic.normalizer import (
    NUMERIC_BOOLS, WORD_BOOLS, canonical_datetime, compare_rows,
    normalize_expected, normalize_expected_rows, normalize_rows, normalize_value,
)


def test_null_and_empty_are_distinct():
    assert normalize_value(None, "T", WORD_BOOLS) == "NULL"
    assert normalize_value("", "T", WORD_BOOLS) == "(empty)"
    assert normalize_expected("NULL", "T") == "NULL"
    assert normalize_expected("(empty)", "T") == "(empty)"


def test_booleans_follow_the_backend():
    assert normalize_value(True, "B", NUMERIC_BOOLS) == "1"
    assert normalize_value(False, "B", NUMERIC_BOOLS) == "0"
    assert normalize_value(True, "B", WORD_BOOLS) == "true"
    assert normalize_value(False, "T", WORD_BOOLS) == "false"


def test_non_bool_values_keep_their_text_for_boolean_columns():
    assert normalize_value(1, "B", WORD_BOOLS) == "1"
    assert normalize_value("true", "B", NUMERIC_BOOLS) == "true"


@pytest.mark.parametrize("value, expected", [
    (42, "42"),
    ("007", "7"),
    ("+3", "3"),
    ("-0", "0"),
    (3.0, "3"),
    ("12abc", "12abc"),
])
def test_integer_canonical_form(value, expected):
    assert normalize_value(value, "I", WORD_BOOLS) == expected


def test_text_is_verbatim():
    assert normalize_value("007", "T", WORD_BOOLS) == "007"
    assert normalize_value(b"bytes", "T", WORD_BOOLS) == "bytes"
    assert normalize_value(Decimal("1.50"), "T", WORD_BOOLS) == "1.50"
    assert normalize_value(0.1, "F", WORD_BOOLS) == "0.1"


def test_datetime_values():
    value = datetime.datetime(2021, 3, 4, 5, 6, 7)
    assert normalize_value(value, "T", NUMERIC_BOOLS) == "2021-03-04 05:06:07"

    value = datetime.datetime(2021, 3, 4, 5, 6, 7, 120000)
    assert normalize_value(value, "T", NUMERIC_BOOLS) == "2021-03-04 05:06:07.120000"

    assert normalize_value(datetime.date(2021, 3, 4), "T", NUMERIC_BOOLS) == "2021-03-04"


def test_datetime_strings_are_padded_not_converted():
    assert canonical_datetime("2021-3-4 5:06:07") == "2021-03-04 05:06:07"
    assert canonical_datetime("2021-03-04 05:06:07.5") == "2021-03-04 05:06:07.5"
    assert canonical_datetime("2021-03-04T05:06:07") == "2021-03-04T05:06:07"
    assert canonical_datetime("not a date") == "not a date"


def test_sub_second_precision_differences_are_kept():
    with_micros = normalize_value("2021-03-04 05:06:07.000000", "T", WORD_BOOLS)
    truncated = normalize_value(datetime.datetime(2021, 3, 4, 5, 6, 7), "T", NUMERIC_BOOLS)
    assert with_micros != truncated


def test_normalize_rows_uses_column_types():
    rows = normalize_rows([(1, None, True), ("02", "x", False)], "ITB", NUMERIC_BOOLS)
    assert rows == [("1", "NULL", "1"), ("2", "x", "0")]

    assert normalize_expected_rows([("02", "x")], "IT") == [("2", "x")]


def test_compare_rows_equal():
    compare_rows([("1", "a")], [("1", "a")])


def test_compare_rows_reports_first_cell():
    with pytest.raises(AssertionMismatch) as excinfo:
        compare_rows([("1", "a"), ("2", "b")], [("1", "a"), ("2", "c")])
    assert excinfo.value.row == 2
    assert excinfo.value.column == 2
    assert "expected 'b', got 'c'" in str(excinfo.value)


def test_compare_rows_row_count():
    with pytest.raises(AssertionMismatch, match="row count mismatch: expected 2 rows, got 1"):
        compare_rows([("1",), ("2",)], [("1",)])


def test_compare_rows_column_count():
    with pytest.raises(AssertionMismatch, match="expected 1 columns, got 2"):
        compare_rows([("1",)], [("1", "2")])


def test_compare_rows_is_order_sensitive():
    with pytest.raises(AssertionMismatch):
        compare_rows([("1",), ("2",)], [("2",), ("1",)])
