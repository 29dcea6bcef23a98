"""
Run Agent — interactive console front end for the MCP pool agent.

This script wires the pieces together:
1. Loads settings (environment + flags)
2. Opens the ServerRegistry, reconnecting every persisted tool server
3. Wraps a LangChain Anthropic chat model as the ModelClient
4. Feeds each console line to the ConversationOrchestrator as a message
   in a single console thread and prints the reply

Usage:
    # Chat (servers can be added from the conversation itself)
    python run_agent.py

    # Show the persisted server pool and exit
    python run_agent.py --list

    # Use a different model or server file
    python run_agent.py --model claude-3-5-haiku-latest --servers-file ./servers.json
"""

from __future__ import annotations

import argparse
import itertools
import logging
import os
import signal
import sys

from mcp_pool.config import Settings, load_settings
from mcp_pool.conversation import (
    ConversationOrchestrator,
    MessageEvent,
    MessageSink,
    ThreadHistory,
    ThreadMessage,
)
from mcp_pool.manager import ServerRegistry
from mcp_pool.storage import JsonFileServerStore, StorageError

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

CONSOLE_USER = "console-user"
CONSOLE_THREAD = "console"


class ConsoleThread(ThreadHistory, MessageSink):
    """A single in-memory thread: history for the orchestrator, replies to stdout."""

    def __init__(self):
        self.messages: list[ThreadMessage] = []

    def fetch(self, event: MessageEvent, thread_id: str, limit: int) -> list[ThreadMessage]:
        return self.messages[-limit:]

    def send(self, event: MessageEvent, thread_id: str, text: str) -> None:
        self.messages.append(ThreadMessage(text=text, from_agent=True))
        print(f"\nagent> {text}\n")

    def post_user_message(self, text: str) -> None:
        self.messages.append(ThreadMessage(text=text))


def list_servers(settings: Settings) -> None:
    store = JsonFileServerStore(settings.servers_file)
    try:
        specs = store.load()
    except StorageError as e:
        print(f"Error: {e}")
        return

    print(f"\nPersisted servers ({len(specs)}) in {settings.servers_file}:\n")
    for spec in specs:
        print(f"  {spec.name:<20} {' '.join([spec.command, *spec.args])}")
    print()


def build_model(settings: Settings):
    """LangChain Anthropic chat model wrapped as a ModelClient."""
    from langchain_anthropic import ChatAnthropic

    from mcp_pool.bridge import ChatModelClient

    return ChatModelClient(ChatAnthropic(model=settings.model, max_tokens=settings.max_tokens))


def chat_loop(orchestrator: ConversationOrchestrator, thread: ConsoleThread) -> None:
    ids = itertools.count(1)
    while True:
        try:
            text = input("you> ").strip()
        except EOFError:
            return
        if not text:
            continue
        if text in ("/quit", "/exit"):
            return

        thread.post_user_message(text)
        event = MessageEvent(
            sender=CONSOLE_USER,
            text=text,
            message_id=f"console-{next(ids)}",
            thread_id=CONSOLE_THREAD,
            channel=CONSOLE_THREAD,
            channel_kind="im",
        )
        orchestrator.handle(event)


def main():
    parser = argparse.ArgumentParser(
        description="Chat with an agent that can add its own MCP tool servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_agent.py
  python run_agent.py --list
  python run_agent.py --servers-file ./data/servers.json --verbose
        """,
    )
    parser.add_argument("--list", action="store_true", help="List persisted servers and exit")
    parser.add_argument("--servers-file", type=str, default=None, help="Where the server pool is persisted")
    parser.add_argument("--model", "-m", type=str, default=None, help="Anthropic model name")
    parser.add_argument("--agent-id", type=str, default=None, help="Identity of this agent (its own messages are ignored)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = load_settings(
        servers_file=args.servers_file,
        model=args.model,
        agent_id=args.agent_id,
    )

    if args.list:
        list_servers(settings)
        return

    if not os.environ.get("ANTHROPIC_API_KEY"):
        print("\n⚠  ANTHROPIC_API_KEY not set. Cannot start the agent.")
        print("   Set it in the environment, then re-run.")
        print("   Use --list to inspect the persisted server pool.")
        return

    registry = ServerRegistry(JsonFileServerStore(settings.servers_file), timeout=settings.request_timeout)

    # Graceful shutdown on Ctrl+C
    def shutdown(sig, frame):
        print("\nShutting down MCP servers...")
        registry.close()
        sys.exit(0)
    signal.signal(signal.SIGINT, shutdown)

    print("Starting MCP tool servers...")
    restored = registry.open()
    print(f"Connected {len(restored)} servers: {restored}\n")

    thread = ConsoleThread()
    orchestrator = ConversationOrchestrator(
        registry=registry,
        model=build_model(settings),
        history=thread,
        sink=thread,
        agent_id=settings.agent_id,
        history_limit=settings.history_limit,
        max_tokens=settings.max_tokens,
    )

    try:
        chat_loop(orchestrator, thread)
    finally:
        registry.close()
        print("\nMCP servers stopped.")


if __name__ == "__main__":
    main()
