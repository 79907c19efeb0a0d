"""
Handler adapters: one client per wire protocol
"""

import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

import aiohttp
import aiomysql

from .config import BackendConfig
from .errors import BackendConnectionError, ExecutionError
from .normalizer import NUMERIC_BOOLS, WORD_BOOLS, BoolLiterals

logger = logging.getLogger(__name__)

RawRow = Tuple[Any, ...]

_SESSION_STATEMENT = re.compile(r"^\s*(SET|UNSET|USE)\b", re.IGNORECASE)

# CR_CONN_HOST_ERROR, CR_SERVER_GONE_ERROR, CR_SERVER_LOST
MYSQL_CONNECTION_LOST = (2003, 2006, 2013)

# Engine errors carry their own code in the message text:
# "Code: 1025, displayText = Unknown table 't'." or "Code: 60. DB::Exception: ..."
_ENGINE_ERROR = re.compile(r"^Code:\s*(\d+)[,.]\s*(?:displayText\s*=\s*)?(.*)$", re.DOTALL)


def parse_engine_error(text: str) -> Optional[Tuple[int, str]]:
    """Split an engine error message into (code, message), None when it has no code"""
    match = _ENGINE_ERROR.match(text.strip())
    if not match:
        return None
    return int(match.group(1)), match.group(2).strip()


async def read_text(response: aiohttp.ClientResponse) -> str:
    """Response body as text; undecodable bytes become U+FFFD"""
    body = await response.read()
    return body.decode("utf-8", errors="replace")


def is_session_statement(sql: str) -> bool:
    return bool(_SESSION_STATEMENT.match(sql))


class Handler(ABC):
    """Abstract base class for protocol handlers

    A handler owns exactly one connection. Statements that change session
    state are remembered and replayed by `reconnect` so that later records
    keep seeing them.
    """

    protocol = ""
    bools: BoolLiterals = WORD_BOOLS

    def __init__(self, config: BackendConfig, timeout: float = 30):
        self.config = config
        self.name = config.name
        self.timeout = timeout
        self.connected = False
        self.session_statements: List[str] = []

    async def connect(self):
        """Open a fresh connection with an empty session"""
        self.session_statements = []
        await self._open()
        self.connected = True
        logger.debug(f"{self.name}: connected to {self.config.host}:{self.config.port}")

    async def close(self):
        """Close the connection; safe to call more than once"""
        if not self.connected:
            return
        self.connected = False
        await self._close()
        logger.debug(f"{self.name}: connection closed")

    async def reconnect(self):
        """Re-open the connection and restore session settings"""
        statements = list(self.session_statements)
        await self.close()
        await self.connect()
        for sql in statements:
            await self.execute_statement(sql)
        logger.info(f"{self.name}: reconnected, replayed {len(statements)} session statement(s)")

    async def execute_statement(self, sql: str):
        await self._statement(sql)
        if is_session_statement(sql):
            self.session_statements.append(sql)

    async def execute_query(self, sql: str) -> List[RawRow]:
        return await self._query(sql)

    async def health_check(self):
        await self._query("SELECT 1")

    @abstractmethod
    async def _open(self):
        """Establish the connection, raising BackendConnectionError on failure"""

    @abstractmethod
    async def _close(self):
        pass

    @abstractmethod
    async def _statement(self, sql: str):
        pass

    @abstractmethod
    async def _query(self, sql: str) -> List[RawRow]:
        pass


class MySQLHandler(Handler):
    """MySQL wire protocol handler"""

    protocol = "mysql"
    bools = NUMERIC_BOOLS

    def __init__(self, config: BackendConfig, timeout: float = 30):
        super().__init__(config, timeout)
        self.conn: Optional[aiomysql.Connection] = None

    async def _open(self):
        try:
            self.conn = await aiomysql.connect(
                host=self.config.host,
                port=self.config.port,
                user=self.config.username,
                password=self.config.password,
                db=self.config.database or None,
                autocommit=True,
                connect_timeout=self.timeout,
            )
        except (aiomysql.MySQLError, OSError) as e:
            raise BackendConnectionError(self.name, f"cannot connect to {self.config.host}:{self.config.port}: {e}")

    async def _close(self):
        self._close_now()

    def _close_now(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _translate(self, error: Exception) -> Exception:
        if isinstance(error, aiomysql.InterfaceError) or isinstance(error, OSError):
            return BackendConnectionError(self.name, str(error))
        if isinstance(error, UnicodeDecodeError):
            # the rest of the result is still unread on the wire
            self._close_now()
            return BackendConnectionError(self.name, f"undecodable result, connection dropped: {error}")
        code = error.args[0] if error.args and isinstance(error.args[0], int) else None
        message = str(error.args[1]) if len(error.args) > 1 else str(error)
        if code in MYSQL_CONNECTION_LOST:
            return BackendConnectionError(self.name, message)
        # ER_UNKNOWN_ERROR wraps the engine's own code
        engine_error = parse_engine_error(message)
        if engine_error:
            code, message = engine_error
        return ExecutionError(message, code)

    async def _statement(self, sql: str):
        try:
            async with self.conn.cursor() as cur:
                await cur.execute(sql)
        except (aiomysql.MySQLError, OSError, UnicodeDecodeError) as e:
            raise self._translate(e)

    async def _query(self, sql: str) -> List[RawRow]:
        try:
            async with self.conn.cursor() as cur:
                await cur.execute(sql)
                rows = await cur.fetchall()
        except (aiomysql.MySQLError, OSError, UnicodeDecodeError) as e:
            raise self._translate(e)
        return [tuple(row) for row in rows]


class HttpHandler(Handler):
    """Databend-style JSON query API over HTTP

    The server keeps no session; the `session` object it returns is sent
    back with every following request.
    """

    protocol = "http"
    bools = WORD_BOOLS
    wait_time_secs = 2

    def __init__(self, config: BackendConfig, timeout: float = 30):
        super().__init__(config, timeout)
        self.base_url = f"http://{config.host}:{config.port}"
        self.session: Optional[aiohttp.ClientSession] = None
        self.query_session: Dict[str, Any] = {}

    async def _open(self):
        self.session = aiohttp.ClientSession(
            auth=aiohttp.BasicAuth(self.config.username, self.config.password),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        self.query_session = {"database": self.config.database} if self.config.database else {}
        try:
            await self.health_check()
        except ExecutionError as e:
            await self.session.close()
            raise BackendConnectionError(self.name, f"health check failed: {e}")
        except (BackendConnectionError, asyncio.TimeoutError, asyncio.CancelledError):
            await self.session.close()
            raise

    async def _close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _execution_error(self, error: Any) -> ExecutionError:
        if isinstance(error, dict):
            return ExecutionError(str(error.get("message", error)), error.get("code"))
        return ExecutionError(str(error))

    async def _read(self, response: aiohttp.ClientResponse) -> Dict[str, Any]:
        text = await read_text(response)
        try:
            body = json.loads(text)
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            raise self._execution_error(body["error"])
        if response.status != 200:
            raise ExecutionError(text.strip() or str(response.reason), response.status)
        if not isinstance(body, dict):
            raise ExecutionError(f"Unexpected response from {self.name}: {text[:100]}")

        if body.get("session"):
            self.query_session = body["session"]
        return body

    async def _run(self, sql: str) -> List[RawRow]:
        payload = {
            "sql": sql,
            "session": self.query_session,
            "pagination": {"wait_time_secs": self.wait_time_secs},
        }
        try:
            async with self.session.post(f"{self.base_url}/v1/query", json=payload) as response:
                body = await self._read(response)
            rows = [tuple(row) for row in body.get("data") or []]

            while body.get("next_uri"):
                async with self.session.get(f"{self.base_url}{body['next_uri']}") as response:
                    body = await self._read(response)
                rows.extend(tuple(row) for row in body.get("data") or [])
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientConnectionError as e:
            raise BackendConnectionError(self.name, str(e))
        except aiohttp.ClientError as e:
            raise ExecutionError(f"malformed response from {self.name}: {e}")
        return rows

    async def _statement(self, sql: str):
        await self._run(sql)

    async def _query(self, sql: str) -> List[RawRow]:
        return await self._run(sql)


class ClickHouseHandler(Handler):
    """ClickHouse HTTP protocol handler, session kept server-side by session_id"""

    protocol = "clickhouse"
    bools = WORD_BOOLS

    def __init__(self, config: BackendConfig, timeout: float = 30):
        super().__init__(config, timeout)
        self.base_url = f"http://{config.host}:{config.port}"
        self.session: Optional[aiohttp.ClientSession] = None
        self.session_id = ""

    async def _open(self):
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        self.session_id = f"sqllogic-{uuid.uuid4().hex}"
        try:
            await self.health_check()
        except ExecutionError as e:
            await self.session.close()
            raise BackendConnectionError(self.name, f"health check failed: {e}")
        except (BackendConnectionError, asyncio.TimeoutError, asyncio.CancelledError):
            await self.session.close()
            raise

    async def _close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _params(self) -> Dict[str, str]:
        params = {"session_id": self.session_id}
        if self.config.database:
            params["database"] = self.config.database
        return params

    def _headers(self) -> Dict[str, str]:
        return {
            "X-ClickHouse-User": self.config.username,
            "X-ClickHouse-Key": self.config.password,
        }

    async def _request(self, sql: str) -> str:
        try:
            async with self.session.post(
                f"{self.base_url}/",
                params=self._params(),
                data=sql.encode("utf-8"),
                headers=self._headers(),
            ) as response:
                text = await read_text(response)
                status = response.status
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientConnectionError as e:
            raise BackendConnectionError(self.name, str(e))
        except aiohttp.ClientError as e:
            raise ExecutionError(f"malformed response from {self.name}: {e}")

        if status != 200:
            engine_error = parse_engine_error(text)
            if engine_error:
                raise ExecutionError(engine_error[1], engine_error[0])
            raise ExecutionError(text.strip(), status)
        return text

    async def _statement(self, sql: str):
        await self._request(sql)

    async def _query(self, sql: str) -> List[RawRow]:
        text = await self._request(f"{sql.rstrip().rstrip(';')} FORMAT JSONCompact")
        try:
            body = json.loads(text)
        except ValueError:
            raise ExecutionError(f"Unexpected response from {self.name}: {text[:100]}")
        data = body.get("data", []) if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise ExecutionError(f"Unexpected response from {self.name}: {text[:100]}")
        return [tuple(row) if isinstance(row, list) else (row,) for row in data]


HANDLERS: Dict[str, Type[Handler]] = {
    'mysql': MySQLHandler,
    'http': HttpHandler,
    'clickhouse': ClickHouseHandler,
}


def create_handler(config: BackendConfig, timeout: float = 30) -> Handler:
    """Build the handler for a backend's protocol"""
    try:
        handler_class = HANDLERS[config.protocol]
    except KeyError:
        raise ValueError(f"Unknown protocol {config.protocol!r} for backend {config.name}")
    return handler_class(config, timeout)
