"""Tests for mcp_pool/server.py — the stdio tool server loop."""
import io
import json

import pytest

from mcp_pool.server import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    StdioToolServer,
    ToolHandler,
)


class AddTool(ToolHandler):
    name = "add"
    description = "Adds two numbers"
    parameters = {
        "a": {"type": "number", "description": "First"},
        "b": {"type": "number", "description": "Second"},
    }
    required = ["a", "b"]

    def handle(self, params):
        return {"sum": params["a"] + params["b"]}


class GreetTool(ToolHandler):
    name = "greet"
    description = "Returns plain text"

    def handle(self, params):
        return f"hello {params.get('who', 'world')}"


class FailingTool(ToolHandler):
    name = "explode"
    description = "Always fails"

    def handle(self, params):
        raise RuntimeError("kaboom")


def run_server(*lines, server=None):
    server = server or StdioToolServer("test-server", "2.0.0")
    server.register(AddTool())
    server.register(GreetTool())
    server.register(FailingTool())
    stdin = io.StringIO("".join(
        (line if isinstance(line, str) else json.dumps(line)) + "\n" for line in lines
    ))
    stdout = io.StringIO()
    server.run(stdin=stdin, stdout=stdout)
    return [json.loads(line) for line in stdout.getvalue().splitlines()]


def request(method, params=None, id=1):
    return {"jsonrpc": "2.0", "id": id, "method": method, "params": params or {}}


class TestProtocol:
    def test_initialize(self):
        [response] = run_server(request("initialize", {"protocolVersion": "2024-11-05"}))

        assert response["id"] == 1
        assert response["result"] == {
            "protocolVersion": "2024-11-05",
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "test-server", "version": "2.0.0"},
        }

    def test_notifications_get_no_reply(self):
        responses = run_server(
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            request("ping", id=7),
        )
        assert responses == [{"jsonrpc": "2.0", "id": 7, "result": {}}]

    def test_blank_lines_ignored(self):
        assert run_server("", "   ", request("ping")) == [{"jsonrpc": "2.0", "id": 1, "result": {}}]

    def test_parse_error(self):
        [response] = run_server("{not json")
        assert response["id"] is None
        assert response["error"]["code"] == PARSE_ERROR

    def test_non_object_request(self):
        [response] = run_server("[1, 2]")
        assert response["error"]["code"] == PARSE_ERROR

    def test_unknown_method(self):
        [response] = run_server(request("resources/list"))
        assert response["error"]["code"] == METHOD_NOT_FOUND


class TestTools:
    def test_list(self):
        [response] = run_server(request("tools/list"))

        tools = response["result"]["tools"]
        assert [t["name"] for t in tools] == ["add", "greet", "explode"]
        assert tools[0]["inputSchema"] == {
            "type": "object",
            "properties": AddTool.parameters,
            "required": ["a", "b"],
        }
        assert tools[1]["inputSchema"]["required"] == []

    def test_call_json_result(self):
        [response] = run_server(request("tools/call", {"name": "add", "arguments": {"a": 2, "b": 3}}))

        result = response["result"]
        assert result["isError"] is False
        assert json.loads(result["content"][0]["text"]) == {"sum": 5}

    def test_call_text_result(self):
        [response] = run_server(request("tools/call", {"name": "greet", "arguments": {"who": "pool"}}))
        assert response["result"]["content"] == [{"type": "text", "text": "hello pool"}]

    def test_call_missing_arguments(self):
        [response] = run_server(request("tools/call", {"name": "greet"}))
        assert response["result"]["content"][0]["text"] == "hello world"

    def test_missing_required_argument(self):
        [response] = run_server(request("tools/call", {"name": "add", "arguments": {"a": 1}}))

        result = response["result"]
        assert result["isError"] is True
        assert "'b'" in result["content"][0]["text"]

    def test_handler_failure_is_tool_error(self):
        [response] = run_server(request("tools/call", {"name": "explode", "arguments": {}}))

        assert response["result"] == {"content": [{"type": "text", "text": "kaboom"}], "isError": True}

    def test_unknown_tool(self):
        [response] = run_server(request("tools/call", {"name": "subtract", "arguments": {}}))

        assert response["error"]["code"] == INVALID_PARAMS
        assert "subtract" in response["error"]["message"]

    def test_server_keeps_running_after_errors(self):
        responses = run_server(
            "garbage",
            request("tools/call", {"name": "nope"}, id=2),
            request("tools/call", {"name": "add", "arguments": {"a": 1, "b": 1}}, id=3),
        )
        assert [r["id"] for r in responses] == [None, 2, 3]
        assert "result" in responses[2]


class TestRegistration:
    def test_nameless_handler_rejected(self):
        class Nameless(ToolHandler):
            def handle(self, params):
                return None

        with pytest.raises(ValueError):
            StdioToolServer().register(Nameless())


class TestHandleLine:
    def test_notification_returns_none(self):
        server = StdioToolServer()
        assert server.handle_line('{"jsonrpc": "2.0", "method": "notifications/initialized"}') is None

    def test_string_ids_echoed(self):
        server = StdioToolServer()
        assert server.handle_line('{"jsonrpc": "2.0", "id": "abc", "method": "ping"}') == {
            "jsonrpc": "2.0", "id": "abc", "result": {},
        }
