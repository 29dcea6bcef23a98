"""
Echo tool server — the smallest useful pool member.

Exposes one tool that returns its message, which is enough to exercise a
full add / list / call / remove cycle against a real subprocess.

    python -m mcp_pool.servers.echo

From chat:
    "Add a server called echo with command python and args -m mcp_pool.servers.echo"

ECHO_TOOL_NAME renames the tool, so two echo servers can be registered with
colliding or distinct tool names.
"""

import logging
import os
import sys

from mcp_pool.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = os.environ.get("ECHO_TOOL_NAME", "echo")
    description = "Returns the given message unchanged (or upper-cased)."
    parameters = {
        "message": {"type": "string", "description": "Text to send back"},
        "uppercase": {"type": "boolean", "description": "Upper-case the reply"},
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = str(params["message"])
        if params.get("uppercase"):
            message = message.upper()
        return {"echoed": message, "length": len(message)}


def main() -> None:
    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(level=os.environ.get("ECHO_LOG_LEVEL", "WARNING"), stream=sys.stderr)
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.run()


if __name__ == "__main__":
    main()
