"""
Bridge between the conversation loop and LangChain chat models.

The orchestrator speaks in plain turns and content blocks; this module
turns those into LangChain messages, binds the tool catalog, and turns the
model's AIMessage back into an ordered list of TextBlock / ToolUseBlock.

Usage:
    from langchain_anthropic import ChatAnthropic

    model = ChatModelClient(ChatAnthropic(model="claude-3-5-sonnet-latest"))
    blocks = model.create(system, turns, catalog.schemas(), max_tokens=1024)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage

from mcp_pool.errors import ModelCallError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationTurn:
    """One role-tagged message in the history passed to the model."""
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the model."""
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    type: Literal["tool_use"] = "tool_use"


ContentBlock = Union[TextBlock, ToolUseBlock]


def first_text(blocks: list[ContentBlock]) -> str | None:
    """Text of the first text block, or None."""
    return next((b.text for b in blocks if isinstance(b, TextBlock)), None)


class ModelClient(ABC):
    """The LLM call contract used by the orchestrator."""

    @abstractmethod
    def create(
        self,
        system: str,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]],
        max_tokens: int,
    ) -> list[ContentBlock]:
        """
        Run one model call.

        Raises:
            ModelCallError: The model could not be called.
        """
        ...


class ChatModelClient(ModelClient):
    """ModelClient backed by any LangChain chat model that supports bind_tools()."""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    def create(
        self,
        system: str,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]],
        max_tokens: int,
    ) -> list[ContentBlock]:
        messages = to_langchain_messages(system, turns)
        try:
            runnable = self.chat_model.bind_tools(tools) if tools else self.chat_model
            response = runnable.invoke(messages, max_tokens=max_tokens)
        except Exception as e:
            raise ModelCallError(f"Model call failed: {e}") from e

        if not isinstance(response, (AIMessage, AIMessageChunk)):
            raise ModelCallError(f"Unexpected model response type: {type(response).__name__}")
        return to_content_blocks(response)


def to_langchain_messages(system: str, turns: list[ConversationTurn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = [SystemMessage(content=system)]
    for turn in turns:
        if turn.role == "assistant":
            messages.append(AIMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    return messages


def to_content_blocks(message: AIMessage) -> list[ContentBlock]:
    """
    Flatten an AIMessage into ordered content blocks.

    Anthropic-style list content keeps its order (text and tool_use
    interleaved). Tool calls only present in ``message.tool_calls``
    (e.g. from OpenAI-style models) are appended after the text.
    """
    blocks: list[ContentBlock] = []
    seen_ids: set[str] = set()

    content = message.content
    if isinstance(content, str):
        if content:
            blocks.append(TextBlock(content))
    else:
        for part in content:
            if isinstance(part, str):
                if part:
                    blocks.append(TextBlock(part))
            elif part.get("type") == "text" and part.get("text"):
                blocks.append(TextBlock(part["text"]))
            elif part.get("type") == "tool_use":
                call_id = part.get("id") or ""
                blocks.append(ToolUseBlock(
                    name=part["name"],
                    input=_tool_args(message, call_id, part.get("input")),
                    id=call_id,
                ))
                seen_ids.add(call_id)

    for call in message.tool_calls:
        call_id = call.get("id") or ""
        if call_id and call_id in seen_ids:
            continue
        blocks.append(ToolUseBlock(name=call["name"], input=dict(call.get("args") or {}), id=call_id))

    return blocks


def _tool_args(message: AIMessage, call_id: str, raw_input: Any) -> dict[str, Any]:
    # Parsed tool_calls hold the decoded args; raw content may hold a partial string
    for call in message.tool_calls:
        if call_id and call.get("id") == call_id:
            return dict(call.get("args") or {})
    return dict(raw_input) if isinstance(raw_input, dict) else {}
