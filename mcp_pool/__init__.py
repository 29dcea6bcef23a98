"""
MCP Pool — a self-extending chat agent backed by a pool of MCP tool servers.

Architecture:
    ┌──────────────┐   catalog   ┌────────────────┐    stdio     ┌───────────────┐
    │ Conversation │ ──────────> │ ServerRegistry │ ──────────── │  Tool Server  │
    │ Orchestrator │             │  (named pool)  │   JSON-RPC   │  (subprocess) │
    └──────────────┘             └────────────────┘              └───────────────┘
           │ tool calls                  ▲
           └────── ToolDispatcher ───────┘

The ServerRegistry owns every tool server connection, persists the set of
servers to disk and restores it on startup. Each model turn gets a fresh
ToolCatalog (all live servers' tools plus the built-in add/remove/list
management tools). The ToolDispatcher routes each tool call the model makes
either back into the registry or to the server that owns the tool.

The chat platform and the LLM are collaborators: the platform adapter
supplies ThreadHistory and MessageSink, and any LangChain chat model can be
wrapped in a ChatModelClient.
"""

from mcp_pool.catalog import ToolCatalog, ToolDescriptor, ToolOwner, build_catalog
from mcp_pool.client import ServerConnection
from mcp_pool.manager import ServerRegistry
from mcp_pool.storage import InMemoryServerStore, JsonFileServerStore, ServerSpec

# The conversation side needs langchain; import it lazily so tool servers
# (which only need mcp_pool.server) start without it
_LAZY = {
    "ChatModelClient": "mcp_pool.bridge",
    "ConversationTurn": "mcp_pool.bridge",
    "ModelClient": "mcp_pool.bridge",
    "TextBlock": "mcp_pool.bridge",
    "ToolUseBlock": "mcp_pool.bridge",
    "ConversationOrchestrator": "mcp_pool.conversation",
    "MessageEvent": "mcp_pool.conversation",
    "MessageSink": "mcp_pool.conversation",
    "ThreadHistory": "mcp_pool.conversation",
    "ThreadMessage": "mcp_pool.conversation",
    "ToolDispatcher": "mcp_pool.dispatcher",
}


def __getattr__(name):
    if name in _LAZY:
        import importlib
        return getattr(importlib.import_module(_LAZY[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ChatModelClient",
    "ConversationOrchestrator",
    "ConversationTurn",
    "InMemoryServerStore",
    "JsonFileServerStore",
    "MessageEvent",
    "MessageSink",
    "ModelClient",
    "ServerConnection",
    "ServerRegistry",
    "ServerSpec",
    "TextBlock",
    "ThreadHistory",
    "ThreadMessage",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolOwner",
    "ToolUseBlock",
    "build_catalog",
]
