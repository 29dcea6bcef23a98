"""Shared fixtures."""
import sys

import pytest

from mcp_pool.manager import ServerRegistry
from mcp_pool.storage import InMemoryServerStore
from tests.fakes import FakeServerFactory


@pytest.fixture
def factory():
    return FakeServerFactory()


@pytest.fixture
def store():
    return InMemoryServerStore()


@pytest.fixture
def registry(store, factory):
    registry = ServerRegistry(store, connection_factory=factory)
    registry.open()
    yield registry
    registry.close()


@pytest.fixture
def python():
    return sys.executable
