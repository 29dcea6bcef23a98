"""
Conversation Orchestrator — turns one incoming message into one reply.

Per message:
    AwaitingMessage -> BuildingCatalog -> AwaitingModel
        -> (no tool calls) Responding
        -> (tool calls) DispatchingTools -> AwaitingFollowUp -> Responding
    any error -> Failed (an apology is still sent)

The only message that gets no reply is one sent by the agent itself.

The chat platform is reached through two small collaborators: a
ThreadHistory that returns recent messages of a thread, and a MessageSink
that posts a reply. Both are supplied by the platform adapter.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp_pool.bridge import ConversationTurn, ModelClient, ToolUseBlock, first_text
from mcp_pool.catalog import build_catalog
from mcp_pool.dispatcher import ToolDispatcher
from mcp_pool.errors import McpPoolError
from mcp_pool.manager import ServerRegistry

logger = logging.getLogger(__name__)

# Platform subtype of the notice posted when an assistant thread opens
THREAD_START_SUBTYPE = "assistant_app_thread"

HISTORY_FETCH_LIMIT = 10
DEFAULT_HISTORY_LIMIT = 5
DEFAULT_MAX_TOKENS = 1024

FALLBACK_REPLY = "Sorry, something went wrong!"
ERROR_REPLY = "Sorry, I encountered an error while processing your message."

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant working in a team chat workspace.
You can extend your own abilities by connecting MCP tool servers to a shared server pool.

When users ask about using a server:
1. First check if the server exists using list_mcp_servers
2. If it exists, check its available tools
3. Explain the tools' capabilities and how to use them
4. Do NOT try to add a server that already exists

You have access to all tools provided by connected MCP servers. When asked about using a server,
explain its capabilities rather than trying to add it again.

Some key points to remember:
- Keep the platform's special syntax like <@USER_ID> or <#CHANNEL_ID> intact in your responses
- Use any available tools without complaint
- You may generate session ids and anything else needed to use your tools to complete the user's request
- Do not include stage directions or actions, just respond to the user."""


class Stage(str, Enum):
    AWAITING_MESSAGE = "awaiting_message"
    BUILDING_CATALOG = "building_catalog"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    AWAITING_FOLLOW_UP = "awaiting_follow_up"
    RESPONDING = "responding"
    FAILED = "failed"


@dataclass(frozen=True)
class MessageEvent:
    """An inbound chat message, built once by the platform adapter."""
    sender: str
    text: str
    message_id: str
    thread_id: str | None = None
    channel: str = ""
    channel_kind: str = "im"  # "channel" | "im" | "mpim" | "group"

    @property
    def history_thread(self) -> str | None:
        """Thread to read history from. A channel mention starts its own thread."""
        if self.thread_id:
            return self.thread_id
        return self.message_id if self.channel_kind == "channel" else None

    @property
    def reply_thread(self) -> str:
        return self.thread_id or self.message_id


@dataclass(frozen=True)
class ThreadMessage:
    """A message already in the thread, as returned by ThreadHistory."""
    text: str
    from_agent: bool = False
    subtype: str | None = None


class ThreadHistory(ABC):
    @abstractmethod
    def fetch(self, event: MessageEvent, thread_id: str, limit: int) -> list[ThreadMessage]:
        """Return up to ``limit`` messages of ``thread_id``, oldest first."""
        ...


class MessageSink(ABC):
    @abstractmethod
    def send(self, event: MessageEvent, thread_id: str, text: str) -> None:
        """Post ``text`` as a reply in ``thread_id``."""
        ...


class ConversationOrchestrator:
    """Runs the model/tool loop for incoming messages."""

    def __init__(
        self,
        registry: ServerRegistry,
        model: ModelClient,
        history: ThreadHistory,
        sink: MessageSink,
        agent_id: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.registry = registry
        self.model = model
        self.history = history
        self.sink = sink
        self.agent_id = agent_id
        self.system_prompt = system_prompt
        self.history_limit = history_limit
        self.max_tokens = max_tokens
        self.dispatcher = ToolDispatcher(registry)

    def handle(self, event: MessageEvent) -> str | None:
        """
        Process one inbound message and send exactly one reply.

        Returns:
            The reply text that was sent, or None if the message was our own.
        """
        if event.sender == self.agent_id:
            logger.debug("Skipping our own message")
            return None

        logger.info(f"Message from {event.sender} in {event.reply_thread}: {event.text[:100]!r}")
        try:
            reply = self.respond(event)
        except McpPoolError as e:
            self._log_stage(Stage.FAILED, event)
            logger.error(f"Error handling message: {type(e).__name__}: {e}")
            reply = f"Sorry, I couldn't complete that: {e.user_message}."
        except Exception:
            self._log_stage(Stage.FAILED, event)
            logger.exception("Error in message handler")
            reply = ERROR_REPLY

        self.sink.send(event, event.reply_thread, reply)
        return reply

    def respond(self, event: MessageEvent) -> str:
        """Run the model/tool loop for ``event`` and return the reply text."""
        turns = self.build_turns(event)
        logger.debug(f"Prepared {len(turns)} turns for the model")

        self._log_stage(Stage.BUILDING_CATALOG, event)
        catalog = build_catalog(self.registry)
        tools = catalog.schemas()
        logger.info(f"Found {len(tools)} tools")

        self._log_stage(Stage.AWAITING_MODEL, event)
        blocks = self.model.create(self.system_prompt, turns, tools, self.max_tokens)
        answer = first_text(blocks)

        for block in blocks:
            if not isinstance(block, ToolUseBlock):
                continue
            self._log_stage(Stage.DISPATCHING_TOOLS, event)
            result = self.dispatcher.dispatch(block, catalog)
            if result is None:
                continue

            self._log_stage(Stage.AWAITING_FOLLOW_UP, event)
            follow_up = [*turns, ConversationTurn("user", self.tool_result_prompt(result))]
            answer = first_text(self.model.create(self.system_prompt, follow_up, tools, self.max_tokens))
            logger.debug(f"Follow-up response: {answer!r:.200}")

        self._log_stage(Stage.RESPONDING, event)
        return answer or FALLBACK_REPLY

    def build_turns(self, event: MessageEvent) -> list[ConversationTurn]:
        """
        Recent thread history plus the new message.

        Thread-start notices are dropped, at most ``history_limit`` turns
        are kept, and the new message is only appended when it differs from
        the last kept turn (the platform usually returns it as part of the
        thread already).
        """
        turns: list[ConversationTurn] = []
        thread_id = event.history_thread
        if thread_id:
            messages = self.history.fetch(event, thread_id, HISTORY_FETCH_LIMIT)
            kept = [m for m in messages if m.subtype != THREAD_START_SUBTYPE]
            kept = kept[-self.history_limit:] if self.history_limit > 0 else []
            turns = [
                ConversationTurn("assistant" if m.from_agent else "user", m.text)
                for m in kept
            ]

        if event.text and (not turns or turns[-1].content != event.text):
            turns.append(ConversationTurn("user", event.text))
        return turns

    @staticmethod
    def tool_result_prompt(result: Any) -> str:
        return (
            f"Tool results: {json.dumps(result, default=str)}. "
            "Please provide a user-friendly response based on these results."
        )

    def _log_stage(self, stage: Stage, event: MessageEvent) -> None:
        logger.debug(f"[{event.message_id}] {stage.value}")
