"""Runtime settings, read from the environment."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    # Identity used to drop our own messages
    agent_id: str = os.getenv("AGENT_ID", "mcp-pool-agent")

    # Model
    model: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "1024"))

    # Server pool
    servers_file: str = os.getenv(
        "MCP_SERVERS_FILE", os.path.join(os.getcwd(), "data", "servers.json"),
    )
    request_timeout: float = float(os.getenv("MCP_REQUEST_TIMEOUT", "30"))

    # Conversation
    history_limit: int = int(os.getenv("HISTORY_LIMIT", "5"))


def load_settings(**overrides) -> Settings:
    """Settings from the environment, with non-None ``overrides`` applied."""
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    logger.debug(
        f"Config: model={settings.model}, servers_file={settings.servers_file}, "
        f"timeout={settings.request_timeout:g}s"
    )
    return settings
