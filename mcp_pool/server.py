"""
MCP Tool Server base class.

Tool servers are what the pool launches. Each one is a standalone process
speaking line-delimited JSON-RPC on stdin/stdout, and answers the subset
of MCP the pool uses: initialize, ping, tools/list and tools/call.

Writing one:

    from mcp_pool.server import StdioToolServer, ToolHandler

    class Reverse(ToolHandler):
        name = "reverse"
        description = "Reverses a string"
        parameters = {"text": {"type": "string", "description": "Text to reverse"}}
        required = ["text"]

        def handle(self, params: dict) -> dict:
            return {"reversed": params["text"][::-1]}

    if __name__ == "__main__":
        server = StdioToolServer("reverse")
        server.register(Reverse())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable, TextIO

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcMethodError(Exception):
    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


class ToolHandler(ABC):
    """One tool exposed by a server. The server takes care of the protocol."""

    name: str = ""
    description: str = ""
    # property name -> JSON schema
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Run the tool.

        A string result is returned to the caller as is; anything else is
        JSON-encoded into a single text content block. Raising marks the
        call result as an error.
        """
        ...

    def get_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


def _text_result(text: str, is_error: bool = False) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class StdioToolServer:
    """
    Line-delimited JSON-RPC tool server.

    Messages without an ``id`` are notifications and are never answered.
    Tool failures are reported inside a successful tools/call result
    (``isError: true``); protocol failures are JSON-RPC errors.
    """

    def __init__(self, name: str = "stdio-tool-server", version: str = "1.0.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}
        self._methods: dict[str, Callable[[dict], Any]] = {
            "initialize": self._initialize,
            "ping": lambda params: {},
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def register(self, handler: ToolHandler) -> None:
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """Serve until stdin closes, which happens when the parent goes away."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"{self.name} serving {len(self._handlers)} tools: {list(self._handlers)}")

        for line in stdin:
            if not line.strip():
                continue
            response = self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response) + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> dict | None:
        """Answer one raw input line. Returns None for notifications."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            return _error(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(message, dict):
            return _error(None, PARSE_ERROR, "Request must be a JSON object")
        return self.handle_message(message)

    def handle_message(self, message: dict) -> dict | None:
        request_id = message.get("id")
        method = message.get("method", "")
        if request_id is None:
            logger.debug(f"Notification: {method}")
            return None

        handler = self._methods.get(method)
        if handler is None:
            return _error(request_id, METHOD_NOT_FOUND, f"Unknown method: '{method}'")
        try:
            return {"jsonrpc": "2.0", "id": request_id, "result": handler(message.get("params") or {})}
        except RpcMethodError as e:
            return _error(request_id, e.code, str(e))
        except Exception as e:
            logger.exception(f"{method} failed")
            return _error(request_id, INTERNAL_ERROR, str(e))

    # ── Methods ───────────────────────────────────────────

    def _initialize(self, params: dict) -> dict:
        return {
            "protocolVersion": params.get("protocolVersion", "2024-11-05"),
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    def _list_tools(self, params: dict) -> dict:
        return {"tools": [h.get_schema() for h in self._handlers.values()]}

    def _call_tool(self, params: dict) -> dict:
        tool_name = params.get("name", "")
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise RpcMethodError(
                INVALID_PARAMS, f"Unknown tool: '{tool_name}'. Available: {list(self._handlers)}",
            )

        arguments = params.get("arguments") or {}
        missing = [p for p in handler.required if p not in arguments]
        if missing:
            return _text_result(f"Missing required arguments: {missing}", is_error=True)

        try:
            result = handler.handle(arguments)
        except Exception as e:
            logger.error(f"Tool {tool_name} failed: {e}")
            return _text_result(str(e), is_error=True)
        return _text_result(result if isinstance(result, str) else json.dumps(result))


def _error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
