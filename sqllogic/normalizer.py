"""
Result normalization: canonical text for backend values and fixture cells
"""

import datetime
import re
from decimal import Decimal
from typing import Any, List, Sequence, Tuple

from .errors import AssertionMismatch
from .models import EMPTY_SENTINEL, NULL_SENTINEL, Row

_DATETIME = re.compile(
    r"^(?P<year>\d{1,4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})"
    r"(?:(?P<sep>[ T])(?P<hour>\d{1,2}):(?P<minute>\d{1,2}):(?P<second>\d{1,2})(?P<fraction>\.\d+)?)?$"
)
_INTEGER = re.compile(r"^[+-]?\d+$")


class BoolLiterals:
    """Native boolean spelling of a backend protocol"""

    def __init__(self, true: str, false: str):
        self.true = true
        self.false = false

    def render(self, value: bool) -> str:
        return self.true if value else self.false


NUMERIC_BOOLS = BoolLiterals("1", "0")
WORD_BOOLS = BoolLiterals("true", "false")


def canonical_datetime(text: str) -> str:
    """Zero-pad a date or datetime string; fractional digits are kept as given"""
    match = _DATETIME.match(text)
    if not match:
        return text
    parts = match.groupdict()
    out = f"{int(parts['year']):04d}-{int(parts['month']):02d}-{int(parts['day']):02d}"
    if parts["hour"] is not None:
        out += f"{parts['sep']}{int(parts['hour']):02d}:{int(parts['minute']):02d}:{int(parts['second']):02d}"
        out += parts["fraction"] or ""
    return out


def _format_datetime(value: datetime.datetime) -> str:
    text = value.strftime("%Y-%m-%d %H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text


def _canonical_text(text: str, type_tag: str) -> str:
    if text == "":
        return EMPTY_SENTINEL
    if type_tag == "I" and _INTEGER.match(text):
        return str(int(text))
    return canonical_datetime(text)


def normalize_value(value: Any, type_tag: str, bools: BoolLiterals) -> str:
    """Canonical string for one raw backend value"""
    if value is None:
        return NULL_SENTINEL
    if isinstance(value, bool):
        return bools.render(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if type_tag == "I" and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime.datetime):
        return _format_datetime(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8", errors="replace")
    return _canonical_text(str(value), type_tag)


def normalize_expected(cell: str, type_tag: str) -> str:
    """Canonical string for one fixture cell"""
    if cell in (NULL_SENTINEL, EMPTY_SENTINEL):
        return cell
    return _canonical_text(cell, type_tag)


def _tag(types: str, column: int) -> str:
    # Extra columns fall back to text
    return types[column] if column < len(types) else "T"


def normalize_rows(rows: Sequence[Sequence[Any]], types: str, bools: BoolLiterals) -> List[Row]:
    return [
        tuple(normalize_value(value, _tag(types, col), bools) for col, value in enumerate(row))
        for row in rows
    ]


def normalize_expected_rows(rows: Sequence[Row], types: str) -> List[Row]:
    return [
        tuple(normalize_expected(cell, _tag(types, col)) for col, cell in enumerate(row))
        for row in rows
    ]


def compare_rows(expected: Sequence[Row], actual: Sequence[Row]) -> None:
    """Order-sensitive, exact comparison; raises AssertionMismatch on the first difference"""
    for row_no, (want, got) in enumerate(zip(expected, actual), 1):
        if len(want) != len(got):
            raise AssertionMismatch(
                f"row {row_no}: expected {len(want)} columns, got {len(got)} "
                f"(expected {' '.join(want)!r}, got {' '.join(got)!r})",
                row=row_no,
            )
        for col_no, (a, b) in enumerate(zip(want, got), 1):
            if a != b:
                raise AssertionMismatch(
                    f"row {row_no}, column {col_no}: expected {a!r}, got {b!r}",
                    row=row_no,
                    column=col_no,
                )

    if len(expected) != len(actual):
        raise AssertionMismatch(f"row count mismatch: expected {len(expected)} rows, got {len(actual)}")


def render_rows(rows: Sequence[Row]) -> Tuple[str, ...]:
    return tuple(" ".join(row) for row in rows)
