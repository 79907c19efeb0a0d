"""
Test executor: runs records against handlers and judges the outcome
"""

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional

from .errors import AssertionMismatch, BackendConnectionError, ExecutionError
from .handlers import Handler
from .models import QUERY, STATEMENT_ERROR, STATEMENT_OK, ExecutionResult, Status, Suite, TestRecord
from .normalizer import compare_rows, normalize_expected_rows, normalize_rows
from .parser import unquote_pattern
from .report import Report

logger = logging.getLogger(__name__)


def error_matches(pattern: Optional[str], error: ExecutionError) -> bool:
    """Match a `statement error` pattern against a backend error

    A numeric pattern is compared with the error code, anything else is a
    regular expression searched in the error text. Surrounding double
    quotes are not part of the pattern.
    """
    if pattern is None:
        return True
    pattern = unquote_pattern(pattern)
    if pattern.isdigit():
        return error.code is not None and int(pattern) == error.code
    return re.search(pattern, str(error)) is not None


class TestExecutor:
    """Run suites against a set of handlers, one sequential worker per handler"""
    __test__ = False

    def __init__(self, handlers: Dict[str, Handler], report: Report,
                 timeout: float = 30, parallel_backends: bool = True):
        self.handlers = handlers
        self.report = report
        self.timeout = timeout
        self.parallel_backends = parallel_backends
        self.unavailable: Dict[str, str] = {}

    async def run_suite(self, suite: Suite):
        """Execute every record of a suite on every handler"""
        if self.parallel_backends:
            await asyncio.gather(*(
                self._run_backend(suite, name, handler)
                for name, handler in self.handlers.items()
            ))
        else:
            for name, handler in self.handlers.items():
                await self._run_backend(suite, name, handler)

    def skip_suite(self, suite: Suite, reason: str) -> List[ExecutionResult]:
        return [
            self._result(suite, record, name, Status.SKIPPED, reason)
            for record in suite.records
            for name in self.handlers
        ]

    async def _run_backend(self, suite: Suite, name: str, handler: Handler):
        if name not in self.unavailable:
            try:
                await asyncio.wait_for(handler.connect(), self.timeout)
                logger.info(f"✓ {name} connected for {suite.name}")
            except asyncio.TimeoutError:
                logger.error(f"✗ {name} is unreachable: connect timed out")
                self.unavailable[name] = "connect timed out"
            except Exception as e:
                reason = str(e) if isinstance(e, BackendConnectionError) else f"{type(e).__name__}: {e}"
                logger.error(f"✗ {name} is unreachable: {reason}")
                self.unavailable[name] = reason

        try:
            for record in suite.records:
                result = await self.run_record(suite, record, name, handler)
                await self.report.add(result)
        finally:
            await handler.close()

    async def run_record(self, suite: Suite, record: TestRecord, name: str, handler: Handler) -> ExecutionResult:
        """Execute one record on one handler: PENDING -> EXECUTING -> final status"""
        result = self._result(suite, record, name, Status.PENDING)

        if not record.applies_to(name):
            result.status = Status.SKIPPED
            result.message = f"restricted to label({','.join(record.labels)})"
            return result

        if name in self.unavailable:
            result.status = Status.ERROR
            result.message = f"backend unavailable: {self.unavailable[name]}"
            return result

        result.status = Status.EXECUTING
        start_time = time.time()
        try:
            await asyncio.wait_for(self._execute(record, name, handler, result), self.timeout)
            result.status = Status.PASSED
        except AssertionMismatch as e:
            result.status = Status.FAILED
            result.message = str(e)
        except ExecutionError as e:
            result.status = Status.FAILED
            result.message = f"unexpected error: {e}"
        except asyncio.TimeoutError:
            result.status = Status.FAILED
            result.message = f"timed out after {self.timeout}s"
            logger.warning(f"⚠️  {name} timed out on {suite.name}:{record.line}")
            await self._recover(name, handler)
        except BackendConnectionError as e:
            result.status = Status.ERROR
            result.message = f"connection error: {e.message}"
            logger.error(f"✗ {name} lost its connection on {suite.name}:{record.line}: {e.message}")
            await self._recover(name, handler)
        except Exception as e:
            result.status = Status.ERROR
            result.message = f"{type(e).__name__}: {e}"
            logger.exception(f"✗ {name} raised on {suite.name}:{record.line}")
        result.execution_time = time.time() - start_time

        if result.status == Status.PASSED:
            logger.debug(f"✓ {name} {suite.name}:{record.line}")
        else:
            logger.warning(f"✗ {name} {suite.name}:{record.line} {result.status.value}: {result.message}")
        return result

    async def _execute(self, record: TestRecord, name: str, handler: Handler, result: ExecutionResult):
        if record.kind == STATEMENT_OK:
            await handler.execute_statement(record.sql)

        elif record.kind == STATEMENT_ERROR:
            try:
                await handler.execute_statement(record.sql)
            except ExecutionError as e:
                if not error_matches(record.expected_error, e):
                    raise AssertionMismatch(f"error {str(e)!r} does not match {record.expected_error}")
                return
            raise AssertionMismatch(f"expected an error matching {record.expected_error}, but the statement succeeded")

        elif record.kind == QUERY:
            rows = await handler.execute_query(record.sql)
            result.actual = normalize_rows(rows, record.result_type_spec, handler.bools)
            expected = record.expected_for(name)
            if expected is None:
                return
            result.expected = normalize_expected_rows(expected, record.result_type_spec)
            compare_rows(result.expected, result.actual)

        else:
            raise ValueError(f"Unknown record kind: {record.kind}")

    async def _recover(self, name: str, handler: Handler):
        try:
            await asyncio.wait_for(handler.reconnect(), self.timeout)
        except Exception as e:
            reason = str(e) or f"reconnect failed: {type(e).__name__}"
            logger.error(f"✗ {name} could not reconnect, its remaining records are errors: {reason}")
            self.unavailable[name] = reason

    def _result(self, suite: Suite, record: TestRecord, backend: str,
                status: Status, message: str = "") -> ExecutionResult:
        return ExecutionResult(
            file=suite.name,
            record_index=record.index,
            line=record.line,
            backend=backend,
            status=status,
            sql=record.sql,
            message=message,
        )
