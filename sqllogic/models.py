"""
Data classes and type definitions for the SQL logic test runner
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

STATEMENT_OK = "statement-ok"
STATEMENT_ERROR = "statement-error"
QUERY = "query"

NULL_SENTINEL = "NULL"
EMPTY_SENTINEL = "(empty)"

Row = Tuple[str, ...]


class Status(str, Enum):
    """Lifecycle of one (record, backend) pair"""
    PENDING = "pending"
    EXECUTING = "executing"
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


def split_row(line: str, width: int) -> Row:
    """Split one fixture result line into cells for a result of `width` columns"""
    if width <= 1:
        return (line,)
    return tuple(line.split(None, width - 1))


@dataclass
class ResultBlock:
    """One `----` block: optional backend label and its raw row lines"""
    label: Optional[str]
    lines: List[str] = field(default_factory=list)

    def rows(self, width: int) -> List[Row]:
        return [split_row(line, width) for line in self.lines]


@dataclass
class TestRecord:
    """One parsed directive block of a fixture file"""
    __test__ = False

    kind: str
    sql: str
    line: int = 0
    index: int = 0
    expected_error: Optional[str] = None
    result_type_spec: str = ""
    labels: Tuple[str, ...] = ()
    shared_block: Optional[ResultBlock] = None
    label_blocks: Dict[str, ResultBlock] = field(default_factory=dict)
    blank_before_results: bool = True

    @property
    def width(self) -> int:
        return len(self.result_type_spec)

    @property
    def has_results(self) -> bool:
        return self.shared_block is not None or bool(self.label_blocks)

    @property
    def expected_rows(self) -> Optional[List[Row]]:
        """Shared expected rows, None for a wildcard or label-specific query"""
        if self.shared_block is None:
            return None
        return self.shared_block.rows(self.width)

    @property
    def label_specific_expected(self) -> Dict[str, List[Row]]:
        return {label: block.rows(self.width) for label, block in self.label_blocks.items()}

    def applies_to(self, backend: str) -> bool:
        return not self.labels or backend in self.labels

    def expected_for(self, backend: str) -> Optional[List[Row]]:
        """Expected rows for one backend, label-specific block first"""
        if backend in self.label_blocks:
            return self.label_blocks[backend].rows(self.width)
        return self.expected_rows


@dataclass
class Suite:
    """Ordered records parsed from one fixture file"""
    name: str
    path: str
    records: List[TestRecord] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """Outcome of running one record against one backend"""
    file: str
    record_index: int
    line: int
    backend: str
    status: Status
    sql: str = ""
    message: str = ""
    expected: Optional[List[Row]] = None
    actual: Optional[List[Row]] = None
    execution_time: float = 0.0
