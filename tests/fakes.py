"""Fakes for tool server connections, the model and the chat thread."""
import json
import os
import threading
from pathlib import Path

from mcp_pool.bridge import ModelClient, TextBlock, ToolUseBlock
from mcp_pool.conversation import MessageEvent, MessageSink, ThreadHistory, ThreadMessage
from mcp_pool.errors import ConnectionFailedError, ToolExecutionError, ToolListingError

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ECHO_ARGS = ["-m", "mcp_pool.servers.echo"]


def echo_env(**extra) -> dict:
    """Environment that lets a subprocess import mcp_pool from the checkout."""
    pythonpath = os.pathsep.join(p for p in [str(PROJECT_ROOT), os.environ.get("PYTHONPATH", "")] if p)
    return {"PYTHONPATH": pythonpath, **extra}


def make_tool(name, description="", properties=None, required=None) -> dict:
    """A tools/list entry in MCP shape."""
    schema = {"type": "object", "properties": properties or {}}
    if required is not None:
        schema["required"] = required
    return {"name": name, "description": description, "inputSchema": schema}


class FakeConnection:
    def __init__(self, factory, name, command, args, env):
        self.factory = factory
        self.name = name
        self.command = command
        self.args = args
        self.env = env
        self.connected = False
        self.closed = False
        self.calls = []

    def connect(self):
        gate = self.factory.connect_gates.get(self.name)
        if gate is not None:
            self.factory.connect_started.set()
            gate.wait(timeout=5)
        if self.command in self.factory.failing_commands:
            raise ConnectionFailedError(f"Could not connect to server {self.name}")
        self.connected = True

    def list_tools(self):
        if self.closed or self.command in self.factory.unlistable_commands:
            raise ToolListingError(f"tools/list failed on {self.name}")
        return [dict(t) for t in self.factory.tools_by_command.get(self.command, [])]

    def call_tool(self, tool_name, arguments):
        if self.closed or self.command in self.factory.failing_calls:
            raise ToolExecutionError(f"Tool call failed ({self.name}/{tool_name})")
        self.calls.append((tool_name, arguments))
        return {"content": [{"type": "text", "text": f"{tool_name}:{json.dumps(arguments)}"}]}

    def close(self):
        self.closed = True


class FakeServerFactory:
    """Connection factory for ServerRegistry; behaviour is keyed by command."""

    def __init__(self):
        self.tools_by_command = {}
        self.failing_commands = set()
        self.unlistable_commands = set()
        self.failing_calls = set()
        self.connect_gates = {}
        self.connect_started = threading.Event()
        self.created = []

    def __call__(self, name, command, args, env, timeout):
        conn = FakeConnection(self, name, command, args, env)
        self.created.append(conn)
        return conn


class ScriptedModel(ModelClient):
    """Returns queued responses in order and records every call."""

    def __init__(self, *responses):
        for response in responses:
            if not isinstance(response, (list, Exception)):
                raise TypeError(f"Scripted responses are block lists or exceptions, got {response!r}")
        self.responses = list(responses)
        self.calls = []

    def create(self, system, turns, tools, max_tokens):
        self.calls.append({
            "system": system,
            "turns": list(turns),
            "tools": tools,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            return [TextBlock("(no more scripted responses)")]
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingThread(ThreadHistory, MessageSink):
    def __init__(self, messages=None):
        self.messages = list(messages or [])
        self.fetches = []
        self.sent = []

    def fetch(self, event, thread_id, limit):
        self.fetches.append((thread_id, limit))
        return self.messages[-limit:]

    def send(self, event, thread_id, text):
        self.sent.append((thread_id, text))


def text(value):
    return TextBlock(value)


def tool_use(name, input=None, id="toolu_1"):
    return ToolUseBlock(name=name, input=input or {}, id=id)


def user_event(text, sender="U123", thread_id="T1", message_id="M1", channel_kind="im"):
    return MessageEvent(
        sender=sender,
        text=text,
        message_id=message_id,
        thread_id=thread_id,
        channel="C1",
        channel_kind=channel_kind,
    )


def thread_message(text, from_agent=False, subtype=None):
    return ThreadMessage(text=text, from_agent=from_agent, subtype=subtype)
