"""CLI entry point for the agent relay.

Usage:
    warelay "what's on my calendar today?"
    warelay --agent codex --cwd ~/src/app "why does the build fail?"
    warelay --config ./warelay.yaml -v "summarize notes.md"
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys

from rich.console import Console
from rich.markup import escape

from .agents.base import AgentKind
from .config import RelayConfig, load_config
from .errors import RelayError
from .logging_config import configure_logging
from .process.connection import get_connection_cache
from .relay import AgentReply, invoke_agent

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warelay",
        description="Relay a prompt to a command-line AI agent",
    )
    parser.add_argument("prompt", help="Message to send to the agent")
    parser.add_argument(
        "--agent",
        choices=[kind.value for kind in AgentKind],
        default=None,
        help="Agent kind (default: detected from the configured command)",
    )
    parser.add_argument(
        "--command",
        default=None,
        help="Command template, e.g. 'codex {{Body}}' (default: from config)",
    )
    parser.add_argument("--cwd", default=None, help="Working directory for the agent")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Timeout in seconds (default: 600)",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        default=None,
        help="Output format flag value passed to the agent (default: json)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: ~/.warelay/warelay.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging and print usage metadata",
    )
    return parser


def _apply_args(config: RelayConfig, args: argparse.Namespace) -> RelayConfig:
    if args.agent:
        config.agent = AgentKind(args.agent)
    if args.command:
        config.command = shlex.split(args.command)
    if args.cwd is not None:
        config.cwd = args.cwd
    if args.timeout is not None:
        config.timeout_seconds = args.timeout
    if args.output_format is not None:
        config.output_format = args.output_format
    return config


def _print_reply(reply: AgentReply, verbose: bool) -> None:
    if not reply.texts:
        err_console.print("[yellow]Agent returned no text.[/yellow]")
    for text in reply.texts:
        console.print(text, markup=False, highlight=False)
    if verbose and reply.meta is not None:
        meta = reply.meta
        if meta.usage is not None:
            u = meta.usage
            err_console.print(
                f"[cyan]usage[/cyan] input={u.input} output={u.output} "
                f"cache_read={u.cache_read} total={u.total}"
            )
        if meta.summary:
            err_console.print(f"[cyan]summary[/cyan] {escape(meta.summary)}")
        if meta.session_id:
            err_console.print(f"[cyan]session[/cyan] {meta.session_id}")


async def _run(config: RelayConfig, prompt: str) -> AgentReply:
    cache = get_connection_cache(idle_seconds=config.rpc_idle_seconds)
    try:
        return await invoke_agent(
            config.command,
            prompt,
            kind=config.agent,
            cwd=config.cwd,
            timeout_seconds=config.timeout_seconds,
            send_system_once=config.send_system_once,
            identity_prefix=config.identity_prefix,
            output_format=config.output_format,
            connections=cache,
        )
    finally:
        await cache.shutdown()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = _apply_args(load_config(args.config), args)
    except RelayError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    log_path = configure_logging(config.log_level, config.log_file, verbose=args.verbose)
    logger.debug("Logging to %s", log_path)

    try:
        reply = asyncio.run(_run(config, args.prompt))
    except RelayError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]")
        return 1
    except KeyboardInterrupt:
        err_console.print("\nInterrupted.")
        return 130

    _print_reply(reply, args.verbose)
    return 0


if __name__ == "__main__":
    sys.exit(main())
