"""
Error taxonomy for the SQL logic test runner
"""

from typing import Optional


class LogicTestError(Exception):
    """Base class for runner errors"""


class ConfigError(LogicTestError):
    """Configuration file is missing fields or holds invalid values"""


class ParseError(LogicTestError):
    """Malformed fixture file, fatal to that file"""

    def __init__(self, message: str, line: int, path: str = "<string>"):
        super().__init__(f"{path}:{line}: {message}")
        self.message = message
        self.line = line
        self.path = path


class BackendConnectionError(LogicTestError):
    """Backend unreachable: refused, reset or connect timeout"""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend
        self.message = message


class ExecutionError(LogicTestError):
    """Backend rejected a statement or query"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"code: {self.code}, {self.message}"


class AssertionMismatch(LogicTestError):
    """Returned rows diverge from the expected rows"""

    def __init__(self, message: str, row: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.row = row
        self.column = column
