"""
Tool Dispatcher — executes one tool invocation requested by the model.

Built-in management tools run against the ServerRegistry directly and
return a small structured result. Every other name is looked up in the
catalog's owner index and forwarded to the owning server; its result is
passed back untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from mcp_pool.bridge import ToolUseBlock
from mcp_pool.catalog import ADD_SERVER_TOOL, LIST_SERVERS_TOOL, REMOVE_SERVER_TOOL, ToolCatalog
from mcp_pool.errors import InvalidToolInputError, ServerUnavailableError, UnknownToolError
from mcp_pool.manager import ServerRegistry

logger = logging.getLogger(__name__)


class AddServerInput(BaseModel):
    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None


class RemoveServerInput(BaseModel):
    name: str = Field(min_length=1)


def _parse(model: type[BaseModel], tool_name: str, payload: Any) -> Any:
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise InvalidToolInputError(f"Invalid input for {tool_name}: {e}") from e


class ToolDispatcher:
    """Routes model tool calls to the registry or to the owning server."""

    def __init__(self, registry: ServerRegistry):
        self.registry = registry
        self._builtins = {
            ADD_SERVER_TOOL: self._add_server,
            REMOVE_SERVER_TOOL: self._remove_server,
            LIST_SERVERS_TOOL: self._list_servers,
        }

    def dispatch(self, call: ToolUseBlock, catalog: ToolCatalog) -> Any:
        """
        Execute ``call`` and return its result.

        Args:
            call: The tool invocation returned by the model
            catalog: The catalog the model was offered this turn

        Raises:
            UnknownToolError: ``call.name`` is not in the owner index.
            ServerUnavailableError: The owning server was removed after the
                catalog was built.
            ToolExecutionError: The forwarded call failed in transport.
            InvalidToolInputError / ConflictError / NotFoundError /
            ConnectionFailedError: From built-in management tools.
        """
        logger.info(f"Processing tool call: {call.name}")

        builtin = self._builtins.get(call.name)
        if builtin:
            return builtin(call.input)

        owner = catalog.owner_of(call.name)
        if owner is None:
            raise UnknownToolError(call.name)

        connection = self.registry.get_connection(owner.server)
        if connection is None:
            raise ServerUnavailableError(owner.server)

        result = connection.call_tool(call.name, call.input)
        logger.debug(f"Tool execution result from {owner.server}: {result!r:.500}")
        return result

    def _add_server(self, payload: Any) -> dict[str, Any]:
        params = _parse(AddServerInput, ADD_SERVER_TOOL, payload)
        logger.info(f"Adding MCP server {params.name}: {params.command} {params.args}")
        self.registry.add(params.name, params.command, params.args, params.env)
        return {"success": True, "message": f"Added MCP server: {params.name}"}

    def _remove_server(self, payload: Any) -> dict[str, Any]:
        params = _parse(RemoveServerInput, REMOVE_SERVER_TOOL, payload)
        self.registry.remove(params.name)
        return {"success": True, "message": f"Removed MCP server: {params.name}"}

    def _list_servers(self, payload: Any) -> dict[str, Any]:
        return {"servers": self.registry.list()}
