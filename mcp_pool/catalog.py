"""
Tool Catalog Builder — merges every live server's tools into one catalog.

A catalog is rebuilt from scratch for every model turn; nothing is cached,
because servers can be added or removed between turns. Each build returns
both the LLM-facing schema list and the tool-name -> owner index used for
routing, so the two can never drift apart.

Ownership policy: when two servers advertise the same tool name, the server
registered later wins. There is no cross-server tool identity, so the
earlier descriptor is dropped and a warning is logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

ADD_SERVER_TOOL = "add_mcp_server"
REMOVE_SERVER_TOOL = "remove_mcp_server"
LIST_SERVERS_TOOL = "list_mcp_servers"

MANAGEMENT_TOOLS: list[dict[str, Any]] = [
    {
        "name": ADD_SERVER_TOOL,
        "description": "Add a new MCP server to the global server pool",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Unique name for the MCP server"},
                "command": {"type": "string", "description": "Command to start the server"},
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Command arguments",
                },
                "env": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Environment variables for the server",
                },
            },
            "required": ["name", "command"],
        },
    },
    {
        "name": REMOVE_SERVER_TOOL,
        "description": "Remove an MCP server from the global server pool",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Name of the MCP server to remove"},
            },
            "required": ["name"],
        },
    },
    {
        "name": LIST_SERVERS_TOOL,
        "description": "List all available MCP servers",
        "inputSchema": {
            "type": "object",
            "properties": {},
        },
    },
]

MANAGEMENT_TOOL_NAMES = frozenset(t["name"] for t in MANAGEMENT_TOOLS)


@dataclass
class ToolDescriptor:
    """One tool as presented to the model."""
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_llm_schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolOwner:
    """Routing entry: which server serves a tool, plus its raw descriptor."""
    server: str
    tool: dict[str, Any]


@dataclass
class ToolCatalog:
    """A per-turn snapshot of every tool the model may call."""
    tools: list[ToolDescriptor] = field(default_factory=list)
    owners: dict[str, ToolOwner] = field(default_factory=dict)

    def schemas(self) -> list[dict[str, Any]]:
        return [t.to_llm_schema() for t in self.tools]

    def names(self) -> set[str]:
        return {t.name for t in self.tools}

    def owner_of(self, tool_name: str) -> ToolOwner | None:
        return self.owners.get(tool_name)


def normalize_required(required: Any) -> list[str]:
    """A required list is always a list of strings, whatever the source declared."""
    if not isinstance(required, (list, tuple)):
        return []
    return [r for r in required if isinstance(r, str)]


def translate_property(schema: Any) -> dict[str, Any]:
    """
    Translate one parameter schema into the model-facing shape.

    Keeps type, description (default ""), enum, array items, and for
    objects the nested properties, required list and additionalProperties.
    Anything else the server declared is dropped.
    """
    if not isinstance(schema, dict):
        return {"type": "string", "description": ""}

    result: dict[str, Any] = {"description": schema.get("description") or ""}
    if "type" in schema:
        result["type"] = schema["type"]
    if isinstance(schema.get("items"), dict):
        result["items"] = translate_property(schema["items"])
    enum = schema.get("enum")
    if isinstance(enum, (list, tuple)) and enum:
        result["enum"] = list(enum)
    elif enum:
        logger.warning(f"Dropping non-list enum: {enum!r:.100}")
    if isinstance(schema.get("properties"), dict):
        result["properties"] = {
            key: translate_property(value) for key, value in schema["properties"].items()
        }
        result["required"] = normalize_required(schema.get("required"))
    if "additionalProperties" in schema:
        extra = schema["additionalProperties"]
        result["additionalProperties"] = translate_property(extra) if isinstance(extra, dict) else extra
    return result


def translate_tool(tool: dict[str, Any]) -> ToolDescriptor:
    """Translate a raw tools/list entry into a ToolDescriptor."""
    schema = tool.get("inputSchema") or tool.get("parameters") or {}
    properties = schema.get("properties") if isinstance(schema, dict) else None
    return ToolDescriptor(
        name=tool["name"],
        description=tool.get("description") or "",
        input_schema={
            "type": "object",
            "properties": {
                key: translate_property(value)
                for key, value in (properties or {}).items()
            },
            "required": normalize_required(schema.get("required") if isinstance(schema, dict) else None),
        },
    )


def build_catalog(registry) -> ToolCatalog:
    """
    Build a fresh catalog from every live connection in ``registry``.

    A server that fails to list its tools contributes nothing this turn;
    the failure is logged and the rest of the catalog is unaffected.
    """
    management = [translate_tool(t) for t in MANAGEMENT_TOOLS]
    server_tools: dict[str, ToolDescriptor] = {}
    owners: dict[str, ToolOwner] = {}

    for server_name, connection in registry.connections():
        try:
            listed = [(raw, translate_tool(raw)) for raw in connection.list_tools()]
        except Exception as e:
            logger.error(f"Error getting tools from server {server_name}: {e}")
            continue

        for raw, descriptor in listed:
            if descriptor.name in MANAGEMENT_TOOL_NAMES:
                logger.warning(
                    f"Server {server_name} advertises built-in tool {descriptor.name}, ignoring"
                )
                continue
            previous = owners.get(descriptor.name)
            if previous is not None:
                logger.warning(
                    f"Tool {descriptor.name} from {server_name} replaces the one from {previous.server}"
                )
                # Re-insert so the flat list follows the winning server's position
                del server_tools[descriptor.name]
            server_tools[descriptor.name] = descriptor
            owners[descriptor.name] = ToolOwner(server=server_name, tool=raw)

    catalog = ToolCatalog(tools=management + list(server_tools.values()), owners=owners)
    logger.debug(f"Built catalog with {len(catalog.tools)} tools: {sorted(catalog.names())}")
    return catalog
