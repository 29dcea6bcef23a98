"""
Error taxonomy for the server pool and the conversation loop.

Registry and dispatch errors are recovered by the ConversationOrchestrator
and turned into a user-facing apology. Nothing here should crash the process.
"""

from __future__ import annotations


class McpPoolError(Exception):
    """Base class for every error raised by mcp_pool."""

    # Short phrase used when apologising to the user
    user_message: str = "something went wrong"


class ConflictError(McpPoolError):
    """A server with this name is already registered."""

    user_message = "a server with that name already exists"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Server {name} already exists")


class NotFoundError(McpPoolError):
    """No server with this name is registered."""

    user_message = "no server with that name is registered"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Server {name} not found")


class ConnectionFailedError(McpPoolError):
    """The tool server could not be started or did not complete the handshake."""

    user_message = "the server could not be started"


class ToolListingError(McpPoolError):
    """A live server failed to answer a tools/list request."""

    user_message = "a server failed to list its tools"


class UnknownToolError(McpPoolError):
    """The requested tool is not in the current owner index."""

    user_message = "that tool is not available"

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"No server found for tool: {tool_name}")


class ServerUnavailableError(McpPoolError):
    """The tool's owning server disappeared after the catalog was built."""

    user_message = "the server for that tool is no longer available"

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(f"Server {server_name} is not available")


class InvalidToolInputError(McpPoolError):
    """Input for a built-in management tool failed validation."""

    user_message = "the tool input was invalid"


class ToolExecutionError(McpPoolError):
    """The transport failed while a forwarded tool call was in flight."""

    user_message = "the tool failed while running"


class ModelCallError(McpPoolError):
    """The language model call failed."""

    user_message = "the language model could not be reached"
