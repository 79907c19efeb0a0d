"""
Shared fixtures: in-memory handlers standing in for real backends
"""

import asyncio
import re
from typing import Any, Dict, List, Optional

import pytest

from sqllogic.config import BackendConfig, Config
from sqllogic.errors import BackendConnectionError
from sqllogic.handlers import Handler
from sqllogic.normalizer import NUMERIC_BOOLS, WORD_BOOLS

_SET = re.compile(r"^SET\s+(\w+)\s*=\s*'?([^';]*)'?;?$", re.IGNORECASE)
_SHOW = re.compile(r"^SELECT\s+current_setting\('(\w+)'\);?$", re.IGNORECASE)


class FakeHandler(Handler):
    """Handler answering from a dict of canned responses

    `SET name = value` updates the fake session, and
    `SELECT current_setting('name')` reads it back.
    """

    def __init__(self, name: str, protocol: str = "http",
                 responses: Optional[Dict[str, Any]] = None,
                 delays: Optional[Dict[str, float]] = None,
                 fail_connect: bool = False):
        super().__init__(BackendConfig(name=name, protocol=protocol, host="localhost", port=1), timeout=5)
        self.bools = NUMERIC_BOOLS if protocol == "mysql" else WORD_BOOLS
        self.responses = responses or {}
        self.delays = delays or {}
        self.fail_connect = fail_connect
        self.calls: List[str] = []
        self.settings: Dict[str, str] = {}
        self.opened = 0
        self.closed = 0

    async def _open(self):
        if self.fail_connect:
            raise BackendConnectionError(self.name, "connection refused")
        self.opened += 1
        self.settings = {}

    async def _close(self):
        self.closed += 1

    async def _answer(self, sql: str):
        self.calls.append(sql)
        if sql in self.delays:
            await asyncio.sleep(self.delays[sql])
        response = self.responses.get(sql, [])
        if isinstance(response, Exception):
            raise response
        return response

    async def _statement(self, sql: str):
        match = _SET.match(sql)
        if match:
            self.calls.append(sql)
            self.settings[match.group(1).lower()] = match.group(2)
            return
        await self._answer(sql)

    async def _query(self, sql: str):
        match = _SHOW.match(sql)
        if match:
            self.calls.append(sql)
            return [(self.settings.get(match.group(1).lower(), "UTC"),)]
        return await self._answer(sql)


@pytest.fixture
def config_data() -> Dict[str, Any]:
    return {
        'backends': {
            'mysql': {'protocol': 'mysql', 'host': '127.0.0.1', 'port': 3307},
            'http': {'protocol': 'http', 'host': '127.0.0.1', 'port': 8000},
        },
        'test_settings': {'timeout_seconds': 5, 'max_failures_reported': 10},
        'skip_files': [],
    }


@pytest.fixture
def config(config_data) -> Config:
    return Config(config_path=None, data=config_data)


@pytest.fixture
def write_fixture(tmp_path):
    def write(name: str, text: str):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path
    return write
