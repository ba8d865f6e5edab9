"""CLI entry point for deal-assistant."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from deal_assistant.app import AssistantApp
from deal_assistant.chat.models import Message
from deal_assistant.config import AppConfig, load_config
from deal_assistant.core.types import ChatState, MessageRole
from deal_assistant.log import setup_logging

HELP_TEXT = "Commands: /retry, /clear, /load <conversation-id>, /quit"


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="deal-assistant",
        description="Terminal client for the deals AI assistant",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("chat", "Start an interactive chat session"),
        ("config-check", "Validate configuration"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args(argv)

    if args.command is None:
        args.command = "chat"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "chat":
        _run(args.config, args.env)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Configuration valid: {config_path}")
    print(f"  API: {config.api.base_url}")
    print(f"  Signed in: {'yes' if config.api.access_token else 'no (guest quota applies)'}")
    print(f"  Transport: {'streaming' if config.chat.streaming else 'request/response'}")
    print(f"  Guest limit: {config.quota.daily_limit}/day ({config.quota.storage_path})")


def format_message(message: Message) -> str:
    """Render one assistant message for the terminal."""
    lines = [message.content or "(no content)"]
    for deal in message.deals or []:
        title = deal.get("title") or deal.get("name") or deal.get("id")
        lines.append(f"  * deal: {title}")
    for coupon in message.coupons or []:
        code = coupon.get("code") or coupon.get("id")
        lines.append(f"  * coupon: {code}")
    return "\n".join(lines)


def _print_outcome(app: AssistantApp) -> None:
    session = app.session
    if session.state == ChatState.ERROR:
        print(f"! {session.error}")
        return
    last = session.messages[-1] if session.messages else None
    if last is not None and last.role == MessageRole.ASSISTANT:
        print(format_message(last))


async def _repl(config: AppConfig) -> None:
    app = AssistantApp(config)
    loop = asyncio.get_running_loop()

    def _interrupt() -> None:
        if app.session.busy:
            app.session.cancel()
            print("\n(cancelled)")

    try:
        loop.add_signal_handler(signal.SIGINT, _interrupt)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        pass

    print(HELP_TEXT)
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue

            if line == "/quit":
                break
            if line == "/clear":
                app.session.clear()
                print("(conversation cleared)")
                continue
            if line.startswith("/load "):
                await app.session.load_conversation(line[6:].strip())
                print(f"(loaded {len(app.session.messages)} messages)"
                      if app.session.state == ChatState.IDLE else f"! {app.session.error}")
                continue

            started = app.retry() if line == "/retry" else app.send(line)
            if not started:
                if not app.authenticated and app.quota.remaining == 0:
                    print("Daily guest limit reached. Sign in to keep chatting.")
                continue
            await app.session.wait()
            _print_outcome(app)
    finally:
        await app.stop()


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the interactive session."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_format)
    asyncio.run(_repl(config))


if __name__ == "__main__":
    main()
