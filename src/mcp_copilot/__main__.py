"""CLI entry point for mcp-copilot."""

from __future__ import annotations

import argparse
import asyncio
import sys

from mcp_copilot.ai.client import OpenAIChatClient
from mcp_copilot.app import CopilotApp
from mcp_copilot.config import AppConfig, load_config
from mcp_copilot.core.errors import CopilotError
from mcp_copilot.log import setup_logging
from mcp_copilot.ui.console import ConsoleEvents

EXIT_COMMANDS = ("/exit", "/quit")


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mcp-copilot",
        description="ReAct chat assistant with MCP tool calling",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat")
    _add_config_args(chat_parser)
    chat_parser.add_argument(
        "--conversation", help="Resume the conversation with this id"
    )
    chat_parser.add_argument(
        "-y", "--yes", action="store_true", help="Run manual tools without asking"
    )

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)
    check_parser.add_argument(
        "--ping", action="store_true", help="Also send a test request to the chat API"
    )

    tools_parser = subparsers.add_parser("tools", help="Refresh and list the tool catalog")
    _add_config_args(tools_parser)

    conv_parser = subparsers.add_parser("conversations", help="List stored conversations")
    _add_config_args(conv_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "config.yaml"
        args.env = ".env"
        args.conversation = None
        args.yes = False

    if args.command == "config-check":
        config = _check_config(args.config, args.env)
        if args.ping:
            asyncio.run(_ping(config))
        return

    config = _load(args.config, args.env)
    setup_logging(config.log_level, config.log_format)

    if args.command == "tools":
        asyncio.run(_list_tools(config))
    elif args.command == "conversations":
        asyncio.run(_list_conversations(config))
    elif args.command == "chat":
        asyncio.run(_chat(config, args.conversation, args.yes))


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> AppConfig:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Chat API: {config.api.url} [{config.api.model}] (stream={config.api.stream})")
    print(f"  MCP services: {len(config.mcp.services)}")
    for service in config.mcp.services:
        state = "enabled" if service.enabled else "disabled"
        print(f"    - {service.id} ({service.name}) {service.url} [{state}]")
    loop = config.loop
    print(
        f"  Loop: depth={loop.max_recursion_depth} calls/turn={loop.max_tool_calls_per_turn} "
        f"history={loop.max_message_history} sufficiency={loop.sufficiency_check}"
    )
    print(f"  Storage: {config.storage.db_path}")
    return config


async def _ping(config: AppConfig) -> None:
    client = OpenAIChatClient(config.api)
    try:
        reply = await client.ping()
    except CopilotError as e:
        print(f"Chat API unreachable: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Chat API reachable ({config.api.model}): {reply or '(empty reply)'}")


async def _list_tools(config: AppConfig) -> None:
    app = CopilotApp(config)
    try:
        await app.start()
        tools = app.tool_registry.all_tools()
        if not tools:
            print("No tools available.")
        for tool in tools:
            mode = "auto" if tool.auto_execute else "manual"
            print(f"- {tool.name} ({tool.service_name}) [{mode}]")
            if tool.description:
                print(f"    {tool.description}")
    except CopilotError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await app.stop()


async def _list_conversations(config: AppConfig) -> None:
    app = CopilotApp(config)
    await app.start(refresh_tools=False)
    try:
        conversations = app.conversations.all()
        if not conversations:
            print("No conversations stored.")
        for conv in conversations:
            created = conv.created_at.strftime("%Y-%m-%d %H:%M")
            print(f"- {conv.id}  {created}  {conv.title} ({len(conv.messages)} messages)")
    finally:
        await app.stop()


async def _chat(config: AppConfig, conversation_id: str | None, assume_yes: bool) -> None:
    events = ConsoleEvents(out=sys.stdout, assume_yes=assume_yes)
    app = CopilotApp(config, events=events)
    events.bind(app.orchestrator, app.tool_registry)
    try:
        await app.start()
    except CopilotError as e:
        await app.stop()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if conversation_id and app.conversations.switch(conversation_id) is None:
        print(f"Unknown conversation: {conversation_id}", file=sys.stderr)
    conversation = app.conversations.current() or await app.conversations.create()
    print(f"Conversation {conversation.id}. Type /exit to quit.")

    try:
        while True:
            try:
                text = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            text = text.strip()
            if not text:
                continue
            if text in EXIT_COMMANDS:
                break
            await app.ask(text, conversation.id)
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
