"""
ServerConnection — one live connection to a tool server subprocess.

Wraps a StdioTransport with the MCP client side of the protocol:

    conn = ServerConnection("echo", sys.executable, ["-m", "mcp_pool.servers.echo"])
    conn.connect()                      # spawn + initialize handshake
    conn.list_tools()                   # [{"name": "echo", ...}]
    conn.call_tool("echo", {"message": "hi"})
    conn.close()

Transport failures are translated into mcp_pool.errors types here, so
callers above this module never see TransportError or JsonRpcError.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

from mcp_pool.errors import ConnectionFailedError, ToolExecutionError, ToolListingError
from mcp_pool.transport import (
    DEFAULT_TIMEOUT,
    JsonRpcError,
    JsonRpcRequest,
    StdioTransport,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_VERSION = "1.0.0"


class ServerConnection:
    """
    Client for a single MCP tool server.

    A connection is owned by exactly one registry entry. Once closed it
    cannot be reused; every later request fails with a TransportError
    that surfaces as the caller's domain error.
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Transport | None = None,
    ):
        self.name = name
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.timeout = timeout
        self._transport = transport or StdioTransport(
            [command, *self.args], env=env, timeout=timeout,
        )
        self._ids = itertools.count(1)
        self.server_info: dict[str, Any] = {}

    @property
    def is_alive(self) -> bool:
        return self._transport.is_alive()

    def connect(self) -> None:
        """
        Start the subprocess and run the initialize handshake.

        Raises:
            ConnectionFailedError: The process could not be spawned, died,
                timed out, or rejected the handshake. The process is torn
                down before raising.
        """
        try:
            self._transport.start()
            result = self.request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": f"mcp-client-{self.name}", "version": CLIENT_VERSION},
            })
            self._transport.notify(JsonRpcRequest(method="notifications/initialized", params={}))
        except (OSError, TransportError, JsonRpcError) as e:
            self.close()
            raise ConnectionFailedError(f"Could not connect to server {self.name}: {e}") from e

        if isinstance(result, dict):
            info = result.get("serverInfo")
            self.server_info = info if isinstance(info, dict) else {}
        logger.info(
            f"Connected to {self.name} ({self.command} {' '.join(self.args)}): "
            f"{self.server_info.get('name', 'unnamed server')} {self.server_info.get('version', '')}".rstrip()
        )

    def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Send a JSON-RPC request and return its result.

        Raises:
            TransportError: The request could not be delivered or answered.
            JsonRpcError: The server replied with an error object.
        """
        request = JsonRpcRequest(method=method, params=params or {}, id=next(self._ids))
        return self._transport.send(request).unwrap()

    def list_tools(self) -> list[dict[str, Any]]:
        """
        Ask the server for its tools.

        Accepts both the MCP shape ({"tools": [...]}) and a bare list.

        Raises:
            ToolListingError: The request failed or returned something unusable.
        """
        try:
            result = self.request("tools/list")
        except (TransportError, JsonRpcError) as e:
            raise ToolListingError(f"tools/list failed on {self.name}: {e}") from e

        tools = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(tools, list):
            raise ToolListingError(f"Malformed tools/list result from {self.name}: {result!r:.200}")
        return [t for t in tools if isinstance(t, dict) and t.get("name")]

    def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """
        Invoke a tool on this server. The result is returned unvalidated.

        Raises:
            ToolExecutionError: Transport or JSON-RPC failure during the call.
        """
        try:
            return self.request("tools/call", {"name": tool_name, "arguments": arguments})
        except (TransportError, JsonRpcError) as e:
            raise ToolExecutionError(f"Tool call failed ({self.name}/{tool_name}): {e}") from e

    def close(self) -> None:
        """Terminate the subprocess. Safe to call more than once."""
        self._transport.stop()
