"""Tests for mcp_pool/dispatcher.py — built-in tools and forwarding."""
import pytest

from mcp_pool.bridge import ToolUseBlock
from mcp_pool.catalog import build_catalog
from mcp_pool.dispatcher import ToolDispatcher
from mcp_pool.errors import (
    ConflictError,
    ConnectionFailedError,
    InvalidToolInputError,
    NotFoundError,
    ServerUnavailableError,
    ToolExecutionError,
    UnknownToolError,
)
from tests.fakes import make_tool


@pytest.fixture
def dispatcher(registry):
    return ToolDispatcher(registry)


def call(tool_name, **arguments):
    return ToolUseBlock(name=tool_name, input=arguments, id="toolu_test")


class TestBuiltins:
    def test_list_servers(self, registry, dispatcher):
        registry.add("weather", "curl-weather-cli")

        result = dispatcher.dispatch(call("list_mcp_servers"), build_catalog(registry))

        assert result == {"servers": [{"name": "weather", "command": "curl-weather-cli", "args": []}]}

    def test_add_server(self, registry, dispatcher):
        result = dispatcher.dispatch(
            call("add_mcp_server", name="weather", command="curl-weather-cli", env={"UNITS": "metric"}),
            build_catalog(registry),
        )

        assert result == {"success": True, "message": "Added MCP server: weather"}
        assert registry.list() == [{"name": "weather", "command": "curl-weather-cli", "args": []}]

    def test_add_existing_server_conflicts(self, registry, dispatcher):
        registry.add("weather", "curl-weather-cli")
        with pytest.raises(ConflictError):
            dispatcher.dispatch(
                call("add_mcp_server", name="weather", command="curl-weather-cli"),
                build_catalog(registry),
            )

    def test_add_failing_server(self, registry, dispatcher, factory):
        factory.failing_commands.add("broken-cli")
        with pytest.raises(ConnectionFailedError):
            dispatcher.dispatch(call("add_mcp_server", name="b", command="broken-cli"), build_catalog(registry))
        assert registry.list() == []

    def test_add_requires_command(self, registry, dispatcher):
        with pytest.raises(InvalidToolInputError):
            dispatcher.dispatch(call("add_mcp_server", name="weather"), build_catalog(registry))

    def test_add_rejects_non_string_args(self, registry, dispatcher):
        with pytest.raises(InvalidToolInputError):
            dispatcher.dispatch(
                call("add_mcp_server", name="w", command="cli", args=[{"nested": True}]),
                build_catalog(registry),
            )

    def test_remove_server(self, registry, dispatcher):
        registry.add("weather", "curl-weather-cli")

        result = dispatcher.dispatch(call("remove_mcp_server", name="weather"), build_catalog(registry))

        assert result == {"success": True, "message": "Removed MCP server: weather"}
        assert registry.list() == []

    def test_remove_unknown(self, registry, dispatcher):
        with pytest.raises(NotFoundError):
            dispatcher.dispatch(call("remove_mcp_server", name="ghost"), build_catalog(registry))


class TestForwarding:
    def test_forwards_to_owner(self, registry, dispatcher, factory):
        factory.tools_by_command["curl-weather-cli"] = [make_tool("forecast")]
        registry.add("weather", "curl-weather-cli")

        result = dispatcher.dispatch(call("forecast", city="Oslo"), build_catalog(registry))

        assert result == {"content": [{"type": "text", "text": 'forecast:{"city": "Oslo"}'}]}
        assert registry.get_connection("weather").calls == [("forecast", {"city": "Oslo"})]

    def test_unknown_tool(self, registry, dispatcher):
        with pytest.raises(UnknownToolError):
            dispatcher.dispatch(call("teleport"), build_catalog(registry))

    def test_server_removed_after_catalog_build(self, registry, dispatcher, factory):
        factory.tools_by_command["curl-weather-cli"] = [make_tool("forecast")]
        registry.add("weather", "curl-weather-cli")
        catalog = build_catalog(registry)
        registry.remove("weather")

        with pytest.raises(ServerUnavailableError):
            dispatcher.dispatch(call("forecast"), catalog)

    def test_transport_failure(self, registry, dispatcher, factory):
        factory.tools_by_command["flaky-cli"] = [make_tool("flaky")]
        factory.failing_calls.add("flaky-cli")
        registry.add("flaky", "flaky-cli")

        with pytest.raises(ToolExecutionError):
            dispatcher.dispatch(call("flaky"), build_catalog(registry))

    def test_failure_on_one_server_does_not_affect_another(self, registry, dispatcher, factory):
        factory.tools_by_command["flaky-cli"] = [make_tool("flaky")]
        factory.tools_by_command["curl-weather-cli"] = [make_tool("forecast")]
        factory.failing_calls.add("flaky-cli")
        registry.add("flaky", "flaky-cli")
        registry.add("weather", "curl-weather-cli")
        catalog = build_catalog(registry)

        with pytest.raises(ToolExecutionError):
            dispatcher.dispatch(call("flaky"), catalog)
        assert dispatcher.dispatch(call("forecast"), catalog) is not None
