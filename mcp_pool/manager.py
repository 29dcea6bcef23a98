"""
Server Registry — owns the pool of named tool server connections.

The registry is the only place connections are created and destroyed.
Every add/remove rewrites the persisted server set, and open() rebuilds
the live pool from that set through the same add() path used at runtime.

Usage:
    registry = ServerRegistry(JsonFileServerStore("data/servers.json"))

    with registry:                           # open() restores, close() tears down
        registry.add("echo", sys.executable, ["-m", "mcp_pool.servers.echo"])
        registry.list()                      # [{"name": "echo", ...}]
        conn = registry.get_connection("echo")
        registry.remove("echo")
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from mcp_pool.client import ServerConnection
from mcp_pool.errors import ConflictError, NotFoundError
from mcp_pool.storage import ServerSpec, ServerStore, StorageError
from mcp_pool.transport import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

# (name, command, args, full environment, timeout) -> unconnected connection
ConnectionFactory = Callable[[str, str, list[str], dict[str, str], float], Any]


def _default_connection_factory(
    name: str, command: str, args: list[str], env: dict[str, str], timeout: float,
) -> ServerConnection:
    return ServerConnection(name, command, args, env=env, timeout=timeout)


@dataclass
class ServerRecord:
    """A live registry entry. The connection belongs to this record alone."""
    name: str
    command: str
    args: list[str]
    env: dict[str, str] | None
    connection: Any = field(repr=False)

    def to_spec(self) -> ServerSpec:
        return ServerSpec(self.name, self.command, list(self.args), self.env)


class ServerRegistry:
    """
    Manages the lifecycle of MCP tool server connections.

    Responsibilities:
    - Launch tool servers (all-or-nothing: a failed handshake adds nothing)
    - Enforce unique names, also across concurrent adds
    - Persist the server set after every successful mutation
    - Restore persisted servers on open(), skipping ones that fail
    - Graceful shutdown
    """

    def __init__(
        self,
        store: ServerStore,
        connection_factory: ConnectionFactory | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._store = store
        self._connection_factory = connection_factory or _default_connection_factory
        self._timeout = timeout
        self._lock = threading.RLock()
        self._servers: dict[str, ServerRecord] = {}
        # Names reserved by an add() whose handshake is still running
        self._pending: set[str] = set()
        # Persisted entries that failed to reconnect; kept so a restart retries them
        self._unrestored: dict[str, ServerSpec] = {}
        # Set when open() could not read the store; saving would overwrite
        # entries we never saw
        self._store_unreadable = False
        self._opened = False

    # ── Lifecycle ─────────────────────────────────────────

    def open(self) -> list[str]:
        """
        Reconnect every persisted server, in file order.

        A server that fails to reconnect is logged and skipped; it stays in
        the persisted set. An unreadable store is logged and treated as empty,
        and nothing is saved back to it until the next open().

        Returns:
            Names of the servers that were restored.
        """
        if self._opened:
            return list(self._servers)
        self._opened = True
        self._store_unreadable = False

        try:
            specs = self._store.load()
        except StorageError as e:
            logger.error(f"Error loading servers, changes will not be saved this session: {e}")
            self._store_unreadable = True
            return []

        # Everything counts as unrestored until add() succeeds, so a persist
        # triggered mid-restore never drops entries not yet reached
        with self._lock:
            self._unrestored = {spec.name: spec for spec in specs}

        restored = []
        for spec in specs:
            try:
                self.add(spec.name, spec.command, spec.args, spec.env)
                restored.append(spec.name)
            except Exception as e:
                logger.error(f"Failed to restore server {spec.name}: {e}")

        logger.info(f"Loaded {len(restored)}/{len(specs)} servers from storage")
        return restored

    def close(self) -> None:
        """Stop every live server. Persisted state is left as is."""
        with self._lock:
            records = list(self._servers.values())
            self._servers.clear()
        for record in records:
            self._close_connection(record)
        self._opened = False

    def __enter__(self) -> "ServerRegistry":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Mutations ─────────────────────────────────────────

    def add(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """
        Launch a server and register it under ``name``.

        The subprocess gets our environment overridden by ``env``.

        Raises:
            ConflictError: ``name`` is already registered or being added.
            ConnectionFailedError: The server could not be started; nothing
                is registered.
        """
        args = list(args or [])
        with self._lock:
            if name in self._servers or name in self._pending:
                raise ConflictError(name)
            self._pending.add(name)

        try:
            # Handshake runs outside the lock so other names are not blocked
            combined_env = {**os.environ, **(env or {})}
            connection = self._connection_factory(name, command, args, combined_env, self._timeout)
            connection.connect()

            with self._lock:
                self._servers[name] = ServerRecord(name, command, args, env, connection)
                self._unrestored.pop(name, None)
                self._persist()
        finally:
            with self._lock:
                self._pending.discard(name)

        logger.info(f"Added server: {name} ({' '.join([command, *args])})")

    def remove(self, name: str) -> None:
        """
        Stop a server and drop it from the registry.

        Raises:
            NotFoundError: No server is registered under ``name``.
        """
        with self._lock:
            record = self._servers.pop(name, None)
            if record is None:
                if self._unrestored.pop(name, None) is None:
                    raise NotFoundError(name)
                logger.info(f"Dropped unrestored server: {name}")
            self._persist()

        if record is not None:
            self._close_connection(record)
            logger.info(f"Removed server: {name}")

    def _persist(self) -> None:
        """Rewrite the whole persisted set. Caller holds the lock."""
        if self._store_unreadable:
            logger.error("Not saving servers: the persisted set could not be read at startup")
            return
        specs = [r.to_spec() for r in self._servers.values()]
        specs.extend(s for n, s in self._unrestored.items() if n not in self._servers)
        try:
            self._store.save(specs)
        except StorageError as e:
            # The in-memory change stands; only durability is degraded
            logger.error(f"Error saving servers: {e}")

    def _close_connection(self, record: ServerRecord) -> None:
        try:
            record.connection.close()
        except Exception as e:
            logger.error(f"Error stopping server {record.name}: {e}")

    # ── Queries ───────────────────────────────────────────

    def list(self) -> list[dict[str, Any]]:
        """List live servers as {name, command, args}. env is not exposed."""
        with self._lock:
            return [
                {"name": r.name, "command": r.command, "args": list(r.args)}
                for r in self._servers.values()
            ]

    def get_connection(self, name: str) -> Any | None:
        """Return the live connection for ``name``, or None."""
        with self._lock:
            record = self._servers.get(name)
            return record.connection if record else None

    def connections(self) -> list[tuple[str, Any]]:
        """Snapshot of (name, connection) pairs in registration order."""
        with self._lock:
            return [(r.name, r.connection) for r in self._servers.values()]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._servers

    def __len__(self) -> int:
        with self._lock:
            return len(self._servers)
