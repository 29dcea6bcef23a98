"""Durable storage for the set of registered tool servers."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """The persisted server set could not be read or written."""


@dataclass
class ServerSpec:
    """Everything needed to relaunch a server: a ServerRecord minus its connection."""
    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "command": self.command, "args": list(self.args)}
        if self.env is not None:
            data["env"] = dict(self.env)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerSpec":
        if not isinstance(data, dict) or not data.get("name") or not data.get("command"):
            raise StorageError(f"Invalid server entry: {data!r:.200}")
        args = data.get("args") or []
        if not isinstance(args, (list, tuple)):
            raise StorageError(f"Server entry {data['name']!r} has non-list args: {args!r:.100}")
        env = data.get("env")
        return cls(
            name=str(data["name"]),
            command=str(data["command"]),
            args=[str(a) for a in args],
            env={str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else None,
        )


class ServerStore(ABC):
    @abstractmethod
    def load(self) -> list[ServerSpec]:
        """Return the persisted servers in their stored order.

        Raises:
            StorageError: The store exists but cannot be read.
        """
        pass

    @abstractmethod
    def save(self, servers: list[ServerSpec]) -> None:
        """Replace the persisted set with ``servers``.

        Raises:
            StorageError: The store could not be written.
        """
        pass


class JsonFileServerStore(ServerStore):
    """
    Keeps the server set in a single JSON file.

    The file holds an ordered list of {name, command, args, env}. It is
    rewritten wholesale on every save through a temp file + rename, so a
    crash mid-write leaves the previous version intact. A missing file
    is an empty set. Malformed entries are logged and skipped; only a file
    that cannot be read or parsed as a whole raises StorageError.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> list[ServerSpec]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No server file at {self.path}, starting empty")
            return []
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt server file {self.path}: {e}") from e

        if not isinstance(entries, list):
            raise StorageError(f"Server file {self.path} must contain a JSON list")

        specs = []
        for index, entry in enumerate(entries):
            try:
                specs.append(ServerSpec.from_dict(entry))
            except StorageError as e:
                logger.warning(f"Skipping entry {index} in {self.path}: {e}")
        return specs

    def save(self, servers: list[ServerSpec]) -> None:
        payload = json.dumps([s.to_dict() for s in servers], indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e
        logger.debug(f"Saved {len(servers)} servers to {self.path}")


class InMemoryServerStore(ServerStore):
    """In-memory implementation of the server store."""

    def __init__(self, servers: list[ServerSpec] | None = None) -> None:
        self._servers = [ServerSpec(**s.to_dict()) for s in servers or []]
        self.save_count = 0

    def load(self) -> list[ServerSpec]:
        return [ServerSpec(**s.to_dict()) for s in self._servers]

    def save(self, servers: list[ServerSpec]) -> None:
        self._servers = [ServerSpec(**s.to_dict()) for s in servers]
        self.save_count += 1
