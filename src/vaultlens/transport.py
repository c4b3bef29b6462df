"""
Stdio transport for MCP tool servers.

The tool server runs as a child process. We write JSON-RPC 2.0 requests to
its stdin and read responses from its stdout, one message per line. Requests
are correlated by id, so responses may arrive in any order; anything without
a matching pending id is a server notification and is only logged.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import json
import logging
import os
import re
import shlex
import time
from dataclasses import dataclass
from typing import Any, Optional

from vaultlens.config import CLIENT_NAME, CLIENT_VERSION, PROTOCOL_VERSION, ServerConfig
from vaultlens.errors import RequestTimeoutError, TransportError

__all__ = [
    "JsonRpcRequest",
    "JsonRpcResponse",
    "LineBuffer",
    "PendingRequest",
    "ServerToolResult",
    "StdioTransport",
    "extract_tool_result",
    "server_log_level",
]

logger = logging.getLogger(__name__)
server_logger = logging.getLogger(f"{__name__}.server")

_READ_CHUNK = 64 * 1024
_STDERR_LINE_LIMIT = 1024 * 1024

_LEVEL_PATTERN = re.compile(r'\blevel"?\s*[=:]\s*"?([A-Za-z]+)', re.IGNORECASE)
_SEVERITY: dict[str, int] = {
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.ERROR,
    "panic": logging.ERROR,
}


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""

    method: str
    params: dict[str, Any]
    id: int

    def to_json(self) -> str:
        return json.dumps(
            {
                "jsonrpc": "2.0",
                "id": self.id,
                "method": self.method,
                "params": self.params,
            }
        )


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""

    id: int | str | None
    result: Any = None
    error: Any = None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=message.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if isinstance(self.error, dict) and self.error.get("message"):
            return str(self.error["message"])
        if isinstance(self.error, str) and self.error:
            return self.error
        return "MCP tool call error"


@dataclass(frozen=True)
class ServerToolResult:
    """What a ``tools/call`` request produced on the server side."""

    success: bool
    result: Any = None
    error: str | None = None


def extract_tool_result(result: Any) -> Any:
    """Return the first text content block of an MCP result, else the raw result."""
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list):
            for block in content:
                if (
                    isinstance(block, dict)
                    and block.get("type") == "text"
                    and isinstance(block.get("text"), str)
                ):
                    return block["text"]
    return result


def server_log_level(line: str) -> int:
    """Map a server diagnostic line to a logging level; INFO when unknown."""
    match = _LEVEL_PATTERN.search(line)
    if match is None:
        return logging.INFO
    return _SEVERITY.get(match.group(1).lower(), logging.INFO)


class LineBuffer:
    """Reassembles newline-delimited text from arbitrarily split byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        # Incremental decoding keeps multi-byte characters split across chunks intact.
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        # Partial-line pieces, joined only once a newline arrives.
        self._parts: list[str] = []

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append *chunk* and return every complete, non-empty, trimmed line."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if "\n" not in chunk:
            if chunk:
                self._parts.append(chunk)
            return []

        self._parts.append(chunk)
        text = "".join(self._parts)
        *complete, rest = text.split("\n")
        self._parts = [rest] if rest else []
        return [line.strip() for line in complete if line.strip()]

    @property
    def remainder(self) -> str:
        return "".join(self._parts)


@dataclass
class PendingRequest:
    """An in-flight request; settled at most once."""

    id: int
    future: asyncio.Future
    deadline: Optional[asyncio.TimerHandle] = None

    def resolve(self, response: JsonRpcResponse) -> None:
        self._cancel_deadline()
        if not self.future.done():
            self.future.set_result(response)

    def reject(self, exc: BaseException) -> None:
        self._cancel_deadline()
        if not self.future.done():
            self.future.set_exception(exc)

    def _cancel_deadline(self) -> None:
        if self.deadline is not None:
            self.deadline.cancel()
            self.deadline = None


class StdioTransport:
    """
    JSON-RPC over stdin/stdout pipes to one long-lived subprocess.

    ``initialize()`` is lazy and idempotent; ``call_tool()`` triggers it. If
    the subprocess exits the transport is marked uninitialized and the next
    call spawns a fresh one. Requests still pending at that point are left
    to their own deadlines.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        logger: Optional[logging.Logger] = None,
        client_name: str = CLIENT_NAME,
        client_version: str = CLIENT_VERSION,
    ) -> None:
        self.config = config
        self.name = config.name
        self.timeout = config.timeout
        self.logger = logger or logging.getLogger(__name__)
        self.client_name = client_name
        self.client_version = client_version

        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._pending: dict[int, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # --- state ---------------------------------------------------------------
    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    # --- lifecycle -----------------------------------------------------------
    async def initialize(self) -> None:
        """Spawn the server and complete the MCP ``initialize`` handshake."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            await self._spawn()
            try:
                response = await self._request(
                    "initialize",
                    {
                        "protocolVersion": PROTOCOL_VERSION,
                        "capabilities": {},
                        "clientInfo": {
                            "name": self.client_name,
                            "version": self.client_version,
                        },
                    },
                )
            except BaseException:
                await self._stop_process()
                raise

            if response.is_error:
                await self._stop_process()
                raise TransportError(
                    f"{self.name} rejected initialize: {response.error_message}"
                )

            self._initialized = True
            self._log("Initialized")

    async def close(self) -> None:
        """Terminate the subprocess and reset state. Safe to call repeatedly."""
        had_process = self._process is not None
        await self._stop_process()

        pending, self._pending = self._pending, {}
        for request in pending.values():
            request.reject(TransportError(f"{self.name} closed"))

        if had_process:
            self._log("Stopped")

    async def __aenter__(self) -> "StdioTransport":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- tool calls ----------------------------------------------------------
    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> ServerToolResult:
        """
        Run one ``tools/call`` on the server.

        Raises:
            TransportError: the server could not be spawned or written to.
            RequestTimeoutError: no response within ``self.timeout`` seconds.
        """
        await self.initialize()

        started = time.perf_counter()
        self._log(f"Tool call start name={name}")
        self._log(f"Tool args name={name}: {arguments}", logging.DEBUG)
        response = await self._request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
        duration_ms = (time.perf_counter() - started) * 1000
        self._log(
            f"Tool call end id={response.id} name={name} duration_ms={duration_ms:.0f}"
        )

        if response.is_error:
            return ServerToolResult(success=False, error=response.error_message)
        return ServerToolResult(success=True, result=extract_tool_result(response.result))

    # --- internals -----------------------------------------------------------
    def _argv(self) -> list[str]:
        command = self.config.command
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise TransportError(f"No command configured for {self.name}")
        return argv

    async def _spawn(self) -> None:
        # A previous process may have exited on its own; drop its reader tasks.
        await self._stop_process()

        argv = self._argv()
        env = {**os.environ, **self.config.env}
        if self.config.env_provider is not None:
            env.update(await self.config.env_provider())

        self._log(f"Starting: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STDERR_LINE_LIMIT,
            )
        except OSError as exc:
            raise TransportError(f"Failed to start {self.name} ({argv[0]}): {exc}") from exc

        if process.stdin is None or process.stdout is None:
            process.kill()
            raise TransportError("Failed to create stdio pipes for MCP server")

        self._process = process
        self._tasks = [
            asyncio.create_task(self._read_stdout(process), name=f"{self.name}-stdout"),
            asyncio.create_task(self._read_stderr(process), name=f"{self.name}-stderr"),
            asyncio.create_task(self._watch_exit(process), name=f"{self.name}-exit"),
        ]

    async def _stop_process(self) -> None:
        process, self._process = self._process, None
        tasks, self._tasks = self._tasks, []
        self._initialized = False

        for task in tasks:
            task.cancel()

        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _request(
        self,
        method: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> JsonRpcResponse:
        process = self._process
        if process is None or process.stdin is None:
            raise TransportError("MCP server process not initialized")

        timeout = self.timeout if timeout is None else timeout
        request = JsonRpcRequest(method=method, params=params, id=next(self._ids))
        loop = asyncio.get_running_loop()
        pending = PendingRequest(id=request.id, future=loop.create_future())
        pending.deadline = loop.call_later(timeout, self._expire, request.id, timeout)
        self._pending[request.id] = pending

        try:
            try:
                process.stdin.write((request.to_json() + "\n").encode("utf-8"))
                await process.stdin.drain()
            except OSError as exc:
                raise TransportError(
                    f"Failed to write MCP request {request.id}: {exc}"
                ) from exc
            return await pending.future
        finally:
            self._discard(request.id)

    def _discard(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending._cancel_deadline()

    def _expire(self, request_id: int, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._log(f"Request {request_id} timed out after {timeout:g}s", logging.WARNING)
        pending.reject(RequestTimeoutError(request_id, timeout))

    def _handle_line(self, line: str) -> None:
        """Dispatch one complete stdout line; never raises."""
        try:
            message = json.loads(line)
        except (ValueError, RecursionError) as exc:
            self._log(f"Failed to parse message: {line[:200]!r} ({exc})", logging.ERROR)
            return

        if not isinstance(message, dict):
            self._log(f"Ignoring non-object message: {line[:200]!r}", logging.ERROR)
            return

        request_id = message.get("id")
        pending = None
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            pending = self._pending.pop(request_id, None)

        if pending is None:
            self._log(f"Received notification: {message}", logging.DEBUG)
            return

        pending.resolve(JsonRpcResponse.from_message(message))

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        buffer = LineBuffer()
        while True:
            chunk = await process.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                try:
                    self._handle_line(line)
                except Exception:
                    self.logger.exception(f"[{self.name}] Dropped stdout line {line[:200]!r}")

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            try:
                raw = await process.stderr.readline()
            except ValueError:
                self._log("Dropped oversized diagnostic line", logging.WARNING)
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                server_logger.log(server_log_level(line), f"[{self.name}] {line}")

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        if self._process is process:
            self._initialized = False
            self._log(f"Server exited with code {code}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")
