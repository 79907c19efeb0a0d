"""
Report aggregation and rendering for the SQL logic test runner
"""

import asyncio
import json
import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ParseError
from .models import ExecutionResult, Status
from .normalizer import render_rows

logger = logging.getLogger(__name__)

COUNTED = (Status.PASSED, Status.FAILED, Status.ERROR, Status.SKIPPED)


@dataclass
class FileStats:
    """Outcome counts for one fixture file"""
    passed: int = 0
    failed: int = 0
    error: int = 0
    skipped: int = 0

    def add(self, status: Status):
        setattr(self, status.value, getattr(self, status.value) + 1)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.error + self.skipped


@dataclass
class Report:
    """Append-only aggregation of (record, backend) outcomes

    `add` is the single accumulation point shared by all backend workers.
    """
    max_failures: int = 10
    files: Dict[str, FileStats] = field(default_factory=dict)
    failures: List[ExecutionResult] = field(default_factory=list)
    parse_errors: List[ParseError] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)
    failure_count: int = 0

    def __post_init__(self):
        self._lock = asyncio.Lock()

    async def add(self, result: ExecutionResult):
        async with self._lock:
            self.record(result)

    def record(self, result: ExecutionResult):
        if result.status not in COUNTED:
            raise ValueError(f"Cannot report an unfinished result: {result.status.value}")
        self.files.setdefault(result.file, FileStats()).add(result.status)
        self.results.append(result)
        if result.status in (Status.FAILED, Status.ERROR):
            self.failure_count += 1
            if len(self.failures) < self.max_failures:
                self.failures.append(result)

    def add_parse_error(self, file: str, error: ParseError):
        self.files.setdefault(file, FileStats())
        self.parse_errors.append(error)

    @property
    def totals(self) -> FileStats:
        totals = FileStats()
        for stats in self.files.values():
            totals.passed += stats.passed
            totals.failed += stats.failed
            totals.error += stats.error
            totals.skipped += stats.skipped
        return totals

    @property
    def succeeded(self) -> bool:
        totals = self.totals
        return totals.failed == 0 and totals.error == 0 and not self.parse_errors

    def backend_stats(self) -> Dict[str, FileStats]:
        stats: Dict[str, FileStats] = {}
        for result in self.results:
            stats.setdefault(result.backend, FileStats()).add(result.status)
        return stats


class ReportWriter:
    """Render a report and persist it"""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = output_dir
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

    def generate_report(self, report: Report) -> str:
        """Generate the text report"""
        totals = report.totals
        lines = [
            "",
            "=== SQL Logic Test Report ===",
            "",
            "Files:",
        ]

        for name, stats in report.files.items():
            lines.append(
                f"- {name}: {stats.passed} passed, {stats.failed} failed, "
                f"{stats.error} errors, {stats.skipped} skipped"
            )

        lines.append("")
        lines.append("Backends:")
        for name, stats in report.backend_stats().items():
            executed = stats.total - stats.skipped
            rate = stats.passed / executed * 100 if executed > 0 else 0
            lines.append(f"- {name}: {stats.passed}/{executed} passed ({rate:.1f}%)")

        lines.extend([
            "",
            "Summary:",
            f"- Passed: {totals.passed}",
            f"- Failed: {totals.failed}",
            f"- Errors: {totals.error}",
            f"- Skipped: {totals.skipped}",
            f"- Parse errors: {len(report.parse_errors)}",
        ])

        if report.parse_errors:
            lines.append("")
            lines.append("Parse Errors:")
            for error in report.parse_errors:
                lines.append(f"- {error}")

        if report.failures:
            shown = len(report.failures)
            lines.append("")
            lines.append(f"Failures (first {shown} of {report.failure_count}):")
            for i, failure in enumerate(report.failures, 1):
                lines.extend(self._describe_failure(i, failure))

        lines.append("")
        lines.append("Result: " + ("PASSED" if report.succeeded else "FAILED"))
        return "\n".join(lines) + "\n"

    def _describe_failure(self, number: int, result: ExecutionResult) -> List[str]:
        out = [
            f"{number}. {result.file}:{result.line} (record {result.record_index}) "
            f"[{result.backend}] {result.status.value}: {result.message}",
        ]
        for sql_line in result.sql.split("\n"):
            out.append(f"     {sql_line}")
        if result.expected is not None:
            out.append("   expected:")
            out.extend(f"     {row}" for row in render_rows(result.expected))
        if result.actual is not None and result.expected is not None:
            out.append("   actual:")
            out.extend(f"     {row}" for row in render_rows(result.actual))
        return out

    def save_results(self, report: Report, filename: Optional[str] = None) -> str:
        """Save every outcome as JSON"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"sqllogic_results_{timestamp}.json"

        output_path = os.path.join(self.output_dir or ".", filename)
        data = {
            "summary": self._stats_dict(report.totals),
            "files": {name: self._stats_dict(stats) for name, stats in report.files.items()},
            "parse_errors": [
                {"path": e.path, "line": e.line, "message": e.message}
                for e in report.parse_errors
            ],
            "results": [self._result_dict(result) for result in report.results],
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info(f"Results saved to {output_path}")
        return output_path

    def save_report(self, text: str, filename: Optional[str] = None) -> str:
        """Save the text report to file"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"sqllogic_report_{timestamp}.txt"

        output_path = os.path.join(self.output_dir or ".", filename)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(text)

        logger.info(f"Report saved to {output_path}")
        return output_path

    def _stats_dict(self, stats: FileStats) -> Dict[str, int]:
        return {
            "passed": stats.passed,
            "failed": stats.failed,
            "error": stats.error,
            "skipped": stats.skipped,
        }

    def _result_dict(self, result: ExecutionResult) -> Dict[str, Any]:
        return {
            "file": result.file,
            "record": result.record_index,
            "line": result.line,
            "backend": result.backend,
            "status": result.status.value,
            "message": result.message,
            "expected": [list(row) for row in result.expected] if result.expected is not None else None,
            "actual": [list(row) for row in result.actual] if result.actual is not None else None,
            "execution_time": result.execution_time,
        }
