"""End-to-end tests against real echo server subprocesses."""
import json

from mcp_pool.bridge import ToolUseBlock
from mcp_pool.catalog import build_catalog
from mcp_pool.dispatcher import ToolDispatcher
from mcp_pool.manager import ServerRegistry
from mcp_pool.storage import JsonFileServerStore
from tests.fakes import ECHO_ARGS, echo_env


def open_registry(path, timeout=10.0):
    registry = ServerRegistry(JsonFileServerStore(path), timeout=timeout)
    registry.open()
    return registry


class TestEchoPool:
    def test_add_list_call_remove(self, tmp_path, python):
        path = tmp_path / "servers.json"
        registry = open_registry(path)
        try:
            registry.add("echo", python, ECHO_ARGS, echo_env())
            catalog = build_catalog(registry)

            assert catalog.owner_of("echo").server == "echo"
            schema = next(s for s in catalog.schemas() if s["name"] == "echo")
            assert schema["input_schema"]["required"] == ["message"]

            result = ToolDispatcher(registry).dispatch(
                ToolUseBlock(name="echo", input={"message": "hi"}, id="toolu_1"), catalog,
            )
            assert result["isError"] is False
            assert json.loads(result["content"][0]["text"]) == {"echoed": "hi", "length": 2}

            conn = registry.get_connection("echo")
            registry.remove("echo")
            assert not conn.is_alive
            assert json.loads(path.read_text()) == []
        finally:
            registry.close()

    def test_restart_restores_servers(self, tmp_path, python):
        path = tmp_path / "servers.json"
        first = open_registry(path)
        try:
            first.add("echo", python, ECHO_ARGS, echo_env())
        finally:
            first.close()

        persisted = json.loads(path.read_text())
        assert [(e["name"], e["command"], e["args"]) for e in persisted] == [("echo", python, ECHO_ARGS)]

        second = open_registry(path)
        try:
            assert second.list() == [{"name": "echo", "command": python, "args": ECHO_ARGS}]
            assert "echo" in build_catalog(second).names()
        finally:
            second.close()

    def test_restore_skips_dead_command(self, tmp_path, python):
        path = tmp_path / "servers.json"
        path.write_text(json.dumps([
            {"name": "ghost", "command": str(tmp_path / "no-such-binary"), "args": []},
            {"name": "echo", "command": python, "args": ECHO_ARGS, "env": echo_env()},
        ]))

        registry = open_registry(path)
        try:
            assert [s["name"] for s in registry.list()] == ["echo"]
            assert sorted(e["name"] for e in json.loads(path.read_text())) == ["echo", "ghost"]
        finally:
            registry.close()

    def test_same_tool_name_last_registered_wins(self, tmp_path, python):
        registry = open_registry(tmp_path / "servers.json")
        try:
            registry.add("first", python, ECHO_ARGS, echo_env(ECHO_TOOL_NAME="shout"))
            registry.add("second", python, ECHO_ARGS, echo_env(ECHO_TOOL_NAME="shout"))

            catalog = build_catalog(registry)

            assert [s["name"] for s in catalog.schemas()].count("shout") == 1
            assert catalog.owner_of("shout").server == "second"
        finally:
            registry.close()
