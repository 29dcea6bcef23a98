"""
Transport layer for talking to tool server subprocesses.

Implements:
  - StdioTransport: JSON-RPC 2.0 over stdin/stdout pipes (local)

One line = one message. Replies are read on a background thread and
handed to the waiting request through a queue, so every wait is bounded
by a timeout instead of blocking on readline() forever.
"""

from __future__ import annotations

import json
import logging
import queue
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Sentinel pushed onto the line queue when stdout hits EOF
_EOF = None


class TransportError(RuntimeError):
    """The transport could not deliver a request or read its reply."""


class TransportTimeout(TransportError):
    """No reply arrived within the transport timeout."""


class JsonRpcError(RuntimeError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, error: dict[str, Any]):
        self.code = error.get("code")
        self.error_message = error.get("message", "")
        self.data = error.get("data")
        super().__init__(f"JSON-RPC error {self.code}: {self.error_message}")


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any]
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_json(self) -> str:
        message: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
            "params": self.params,
        }
        if not self.is_notification:
            message["id"] = self.id
        return json.dumps(message)


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, parsed: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        return cls.from_dict(json.loads(data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """Return the result, raising JsonRpcError for error replies."""
        if self.is_error:
            error = self.error if isinstance(self.error, dict) else {"message": str(self.error)}
            raise JsonRpcError(error)
        return self.result


class Transport(ABC):
    """Abstract transport layer for MCP communication."""

    @abstractmethod
    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send a request and return the response."""
        ...

    @abstractmethod
    def notify(self, request: JsonRpcRequest) -> None:
        """Send a notification. No response is expected."""
        ...

    @abstractmethod
    def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the transport (e.g., terminate subprocess)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The tool server runs as
    a child process. We write JSON-RPC requests to its stdin and
    read responses from its stdout. Requests are serialized per
    transport; lines that are not the reply we wait for (server
    notifications, stale replies, log noise) are skipped.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            command: Command to launch the tool server process.
                     e.g., ["python", "-m", "mcp_pool.servers.echo"]
            env: Full environment for the subprocess (None inherits ours).
            timeout: Seconds to wait for each reply.
        """
        self.command = command
        self.env = env
        self.timeout = timeout
        self._process: subprocess.Popen | None = None
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._lock = threading.Lock()
        self._closed = False

    def start(self) -> None:
        """Launch the tool server subprocess.

        Raises:
            OSError: The command could not be executed.
        """
        if self._closed:
            raise TransportError("Transport was stopped and cannot be restarted")
        if self._process and self._process.poll() is None:
            logger.warning("Transport already running, stopping first")
            self._terminate()

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        self._process = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self.env,
            bufsize=1,  # Line-buffered
        )
        self._lines = queue.Queue()
        threading.Thread(
            target=self._read_stdout, args=(self._process,), daemon=True,
        ).start()
        threading.Thread(
            target=self._read_stderr, args=(self._process,), daemon=True,
        ).start()

    def stop(self) -> None:
        """Terminate the tool server subprocess. The transport cannot be reused."""
        self._closed = True
        self._terminate()

    def _terminate(self) -> None:
        if self._process:
            process, self._process = self._process, None
            try:
                if process.stdin:
                    process.stdin.close()
            except OSError:
                pass
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            logger.info("Stdio transport stopped")

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.poll() is None

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send JSON-RPC request via stdin, wait for the matching reply on stdout."""
        if request.is_notification:
            raise ValueError("send() needs a request id; use notify() for notifications")

        with self._lock:
            self._write(request)
            return self._wait_for(request.id)

    def notify(self, request: JsonRpcRequest) -> None:
        """Write a notification to the subprocess."""
        with self._lock:
            self._write(request)

    def _write(self, request: JsonRpcRequest) -> None:
        if not self.is_alive():
            raise TransportError(self._death_message("Transport not running"))
        try:
            self._process.stdin.write(request.to_json() + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            raise TransportError(self._death_message(f"Write failed: {e}")) from e

    def _wait_for(self, request_id: int | str) -> JsonRpcResponse:
        # One deadline for the whole request, however much else the server prints
        deadline = time.monotonic() + self.timeout
        timeout_message = f"No reply to request {request_id} within {self.timeout:g}s"
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeout(timeout_message)
            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                raise TransportTimeout(timeout_message) from None

            if line is _EOF:
                # Keep the sentinel visible to later callers
                self._lines.put(_EOF)
                raise TransportError(self._death_message("Tool server process died"))

            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON output from tool server: {line[:200]}")
                continue

            if not isinstance(parsed, dict) or "method" in parsed:
                # Server-side notification or request; we don't serve those
                logger.debug(f"Ignoring server message: {line[:200]}")
                continue

            if parsed.get("id") != request_id:
                logger.debug(f"Skipping reply for stale request {parsed.get('id')}")
                continue

            return JsonRpcResponse.from_dict(parsed)

    def _read_stdout(self, process: subprocess.Popen) -> None:
        for line in process.stdout:
            line = line.strip()
            if line:
                self._lines.put(line)
        self._lines.put(_EOF)

    def _read_stderr(self, process: subprocess.Popen) -> None:
        for line in process.stderr:
            line = line.rstrip()
            self._stderr_tail.append(line)
            logger.debug(f"[{self.command[0]}] {line}")

    def _death_message(self, prefix: str) -> str:
        stderr = "\n".join(self._stderr_tail)
        return f"{prefix}. stderr: {stderr[-500:]}" if stderr else prefix
