"""
Fixture parser for SQL logic test files

A fixture file is a sequence of directives separated by blank lines:

    statement ok
    CREATE TABLE t(a INT);

    statement error ".*no such table.*"
    SELECT * FROM missing;

    statement query B label(mysql,http)
    SELECT 1=1;

    ---- mysql
    1

    ---- http
    true
"""

import logging
import os
import re
from typing import List, Optional

from .errors import ParseError
from .models import QUERY, STATEMENT_ERROR, STATEMENT_OK, ResultBlock, Suite, TestRecord

logger = logging.getLogger(__name__)

TYPE_TAGS = frozenset("TIBF")
SEPARATOR = "----"

_QUERY_HEADER = re.compile(r"^(?P<types>\S+)(?:\s+label\((?P<labels>[^)]*)\))?\s*$")
_LABEL_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


def unquote_pattern(pattern: str) -> str:
    """Drop the double quotes a `statement error` pattern may be wrapped in"""
    if len(pattern) >= 2 and pattern[0] == pattern[-1] == '"':
        return pattern[1:-1]
    return pattern


def _is_directive(line: str) -> bool:
    return line == "statement" or line.startswith("statement ")


def _is_comment(stripped: str) -> bool:
    return stripped.startswith("--") and not stripped.startswith(SEPARATOR)


class FixtureParser:
    """Parse the text of one fixture file into ordered test records"""

    def __init__(self, path: str = "<string>"):
        self.path = path

    def parse(self, text: str) -> List[TestRecord]:
        lines = text.splitlines()
        records: List[TestRecord] = []
        i = 0

        while i < len(lines):
            line = lines[i]
            stripped = line.strip()
            if not stripped or _is_comment(stripped):
                i += 1
                continue
            if line.startswith(SEPARATOR):
                raise self._error("result separator without a preceding query", i + 1)
            if not _is_directive(line):
                raise self._error(f"unexpected line outside a directive: {line!r}", i + 1)

            record = self._parse_header(line, i + 1)
            record.index = len(records)
            i = self._parse_sql(record, lines, i + 1)

            if record.kind == QUERY:
                i = self._parse_results(record, lines, i)
            elif i < len(lines) and lines[i].startswith(SEPARATOR):
                raise self._error("result block is only allowed after 'statement query'", i + 1)

            records.append(record)

        logger.debug(f"Parsed {len(records)} records from {self.path}")
        return records

    def _error(self, message: str, line: int) -> ParseError:
        return ParseError(message, line, self.path)

    def _parse_header(self, line: str, lineno: int) -> TestRecord:
        words = line.split(None, 2)
        if len(words) < 2:
            raise self._error(f"incomplete directive: {line!r}", lineno)

        directive = words[1]
        rest = words[2].strip() if len(words) > 2 else ""

        if directive == "ok":
            if rest:
                raise self._error(f"unexpected text after 'statement ok': {rest!r}", lineno)
            return TestRecord(kind=STATEMENT_OK, sql="", line=lineno)

        if directive == "error":
            try:
                re.compile(unquote_pattern(rest))
            except re.error as e:
                raise self._error(f"invalid error pattern {rest!r}: {e}", lineno)
            return TestRecord(kind=STATEMENT_ERROR, sql="", line=lineno, expected_error=rest or None)

        if directive == "query":
            match = _QUERY_HEADER.match(rest)
            if not match:
                raise self._error(f"malformed query header: {line!r}", lineno)
            types = match.group("types")
            bad = sorted(set(types) - TYPE_TAGS)
            if bad:
                raise self._error(f"malformed type spec {types!r}: unknown tag(s) {''.join(bad)}", lineno)
            labels = ()
            if match.group("labels") is not None:
                labels = self._parse_labels(match.group("labels"), lineno)
            return TestRecord(kind=QUERY, sql="", line=lineno, result_type_spec=types, labels=labels)

        raise self._error(f"unknown directive: {line!r}", lineno)

    def _parse_labels(self, text: str, lineno: int):
        labels = [name.strip() for name in text.split(",")]
        for name in labels:
            if not _LABEL_NAME.match(name):
                raise self._error(f"malformed label {name!r} in label({text})", lineno)
        if len(set(labels)) != len(labels):
            raise self._error(f"duplicate label in label({text})", lineno)
        return tuple(labels)

    def _parse_sql(self, record: TestRecord, lines: List[str], i: int) -> int:
        sql_lines = []
        while i < len(lines) and lines[i].strip() and not lines[i].startswith(SEPARATOR):
            if _is_directive(lines[i]):
                raise self._error("missing blank line before next directive", i + 1)
            sql_lines.append(lines[i])
            i += 1

        if not sql_lines:
            raise self._error("directive has no SQL body", record.line)
        record.sql = "\n".join(sql_lines)
        return i

    def _parse_results(self, record: TestRecord, lines: List[str], i: int) -> int:
        blank = i < len(lines) and not lines[i].strip()
        start = i + 1 if blank else i
        if start >= len(lines) or not lines[start].startswith(SEPARATOR):
            # No result block: only success is checked
            return i

        record.blank_before_results = blank
        i = start
        while True:
            i = self._parse_block(record, lines, i)
            if i + 1 < len(lines) and not lines[i].strip() and lines[i + 1].startswith(SEPARATOR):
                i += 1
                continue
            break

        if record.label_blocks:
            missing = [label for label in record.labels if label not in record.label_blocks]
            if missing:
                raise self._error(f"no expected result for label(s) {', '.join(missing)}", record.line)
        return i

    def _parse_block(self, record: TestRecord, lines: List[str], i: int) -> int:
        separator = lines[i]
        suffix = separator[len(SEPARATOR):]
        if suffix and not suffix[0].isspace():
            raise self._error(f"malformed result separator: {separator!r}", i + 1)
        label: Optional[str] = suffix.strip() or None

        if label is None:
            if record.has_results:
                raise self._error("unlabelled result block must be the only block of a query", i + 1)
        else:
            if record.shared_block is not None:
                raise self._error("cannot mix labelled and unlabelled result blocks", i + 1)
            if label in record.label_blocks:
                raise self._error(f"duplicate result block for label {label!r}", i + 1)
            if label not in record.labels:
                raise self._error(f"result block for undeclared label {label!r}", i + 1)

        block = ResultBlock(label=label)
        i += 1
        while i < len(lines) and lines[i].strip():
            if _is_directive(lines[i]):
                raise self._error("missing blank line before next directive", i + 1)
            block.lines.append(lines[i])
            i += 1

        if label is None:
            record.shared_block = block
        else:
            record.label_blocks[label] = block
        return i


def serialize_header(record: TestRecord) -> str:
    if record.kind == STATEMENT_OK:
        return "statement ok"
    if record.kind == STATEMENT_ERROR:
        if record.expected_error is None:
            return "statement error"
        return f"statement error {record.expected_error}"
    header = f"statement query {record.result_type_spec}"
    if record.labels:
        header += f" label({','.join(record.labels)})"
    return header


def serialize_record(record: TestRecord) -> str:
    """Render a record back into fixture text"""
    lines = [serialize_header(record)]
    lines.extend(record.sql.split("\n"))

    if record.kind == QUERY and record.has_results:
        if record.blank_before_results:
            lines.append("")
        if record.shared_block is not None:
            blocks = [record.shared_block]
        else:
            blocks = list(record.label_blocks.values())
        for n, block in enumerate(blocks):
            if n:
                lines.append("")
            lines.append(SEPARATOR if block.label is None else f"{SEPARATOR} {block.label}")
            lines.extend(block.lines)

    return "\n".join(lines) + "\n"


def serialize_suite(records: List[TestRecord]) -> str:
    return "\n".join(serialize_record(record) for record in records)


def parse_fixture(text: str, path: str = "<string>") -> List[TestRecord]:
    return FixtureParser(path).parse(text)


def parse_file(path: str, name: Optional[str] = None) -> Suite:
    """Read and parse one fixture file into a Suite"""
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    records = FixtureParser(path).parse(text)
    return Suite(name=name or os.path.basename(path), path=path, records=records)
