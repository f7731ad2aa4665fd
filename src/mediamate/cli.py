from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TextIO

from .agent import Agent, AgentError
from .config import AppConfig, ConfigMissingError, ensure_config_exists, load_config, resolve_config_path
from .services import build_agent

LOGGER = logging.getLogger(__name__)

QUIT_COMMANDS = {"/quit", "/exit"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediamate",
        description="Conversational assistant for a personal media library.",
    )
    parser.add_argument(
        "--config",
        default="",
        help="Path to config.yaml (default: $MEDIAMATE_CONFIG or ./.mediamate/config.yaml).",
    )
    parser.add_argument(
        "--log-level",
        default="",
        help="Log level for stderr output (DEBUG, INFO, WARNING, ERROR). Defaults to app.log_level.",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("chat", help="Start an interactive conversation.")

    query = subcommands.add_parser("query", help="Ask a single question and print the answer.")
    query.add_argument("text", nargs="+", help="The question to ask.")

    config_cmd = subcommands.add_parser("config", help="Manage the configuration file.")
    config_actions = config_cmd.add_subparsers(dest="config_command", required=True)
    config_actions.add_parser("init", help="Write a default config file if none exists.")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config_path = Path(args.config).expanduser() if str(args.config).strip() else resolve_config_path()

    if args.command == "config":
        return _config_init(config_path)

    try:
        config = load_config(config_path)
    except ConfigMissingError as exc:
        print(f"{exc}. Run 'mediamate config init' to create one.", file=sys.stderr)
        return 1
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    _configure_logging(args.log_level or config.app.logging_level)

    try:
        if args.command == "query":
            return asyncio.run(run_query(config, " ".join(args.text)))
        return asyncio.run(run_chat(config))
    except KeyboardInterrupt:
        return 0


async def run_query(config: AppConfig, text: str, *, out: TextIO | None = None) -> int:
    out = out or sys.stdout
    agent = await build_agent(config)
    try:
        reply = await agent.handle_message(text)
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await agent.aclose()
    print(reply, file=out)
    return 0


async def run_chat(config: AppConfig, *, out: TextIO | None = None) -> int:
    out = out or sys.stdout
    agent = await build_agent(config)
    print("MediaMate chat. Type /reset to start over, /quit to exit.", file=out)
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if text in QUIT_COMMANDS:
                break
            if text == "/reset":
                agent.reset()
                print("Conversation reset.", file=out)
                continue
            await _chat_turn(agent, text, out)
    finally:
        await agent.aclose()
    return 0


async def _chat_turn(agent: Agent, text: str, out: TextIO) -> None:
    try:
        reply = await agent.handle_message(text)
    except AgentError as exc:
        LOGGER.debug("chat turn failed", exc_info=True)
        print(f"Error: {exc}", file=out)
        return
    print(reply, file=out)


def _config_init(config_path: Path) -> int:
    if ensure_config_exists(config_path):
        print(f"Config created at {config_path}. Fill in your API keys.")
    else:
        print(f"Config already exists at {config_path}.")
    return 0


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


if __name__ == "__main__":
    raise SystemExit(main())
