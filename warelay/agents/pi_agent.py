"""pi coding agent spec.

pi is the only agent driven through a persistent process: with
``--mode rpc`` it reads prompt envelopes on stdin and streams
message_start / message_end / tool events on stdout, one JSON object
per line. ``--mode json -p`` prints the same events for a single
prompt and exits.
"""
from __future__ import annotations

import logging
from typing import Any

from .base import (
    AgentKind,
    AgentMeta,
    AgentParseResult,
    AgentSpec,
    AgentUsage,
    BuildArgsContext,
    as_int,
    has_flag,
    iter_json_objects,
    split_argv,
)

logger = logging.getLogger(__name__)

PI_BIN = "pi"
PI_RPC_MODE = "rpc"
PI_IDENTITY_PREFIX = (
    "You are pi, reached through warelay: the user is chatting with you "
    "from a phone. Keep replies short and in plain text."
)


def is_assistant_message_end(event: dict[str, Any]) -> bool:
    """True for the event that closes an assistant message."""
    message = event.get("message")
    return (
        event.get("type") == "message_end"
        and isinstance(message, dict)
        and message.get("role") == "assistant"
    )


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def _usage_from(message: dict[str, Any]) -> AgentUsage | None:
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None
    return AgentUsage.from_counters(
        input=as_int(usage.get("input")),
        output=as_int(usage.get("output")),
        cache_read=as_int(usage.get("cacheRead")),
        total=as_int(usage.get("totalTokens")),
    )


def parse_pi_json(raw: str) -> AgentParseResult:
    """Reply text comes from the last assistant message that has any."""
    text: str | None = None
    meta = AgentMeta()
    for event in iter_json_objects(raw):
        if not is_assistant_message_end(event):
            continue
        message = event["message"]
        message_text = _message_text(message).strip()
        if message_text:
            text = message_text
        usage = _usage_from(message)
        if usage is not None:
            meta.usage = meta.usage.merged(usage) if meta.usage else usage
        for attr, key in (
            ("model", "model"),
            ("provider", "provider"),
            ("stop_reason", "stopReason"),
        ):
            value = message.get(key)
            if isinstance(value, str) and value:
                setattr(meta, attr, value)
    return AgentParseResult(
        texts=[text] if text else None,
        meta=None if meta.is_empty() else meta,
    )


def _strip_mode(parts: list[str]) -> list[str]:
    out: list[str] = []
    skip_next = False
    for part in parts:
        if skip_next:
            skip_next = False
            continue
        if part == "--mode":
            skip_next = True
            continue
        if part.startswith("--mode=") or part in ("-p", "--print"):
            continue
        out.append(part)
    return out


class PiAgent(AgentSpec):
    """Spec for the ``pi`` CLI."""

    binary = PI_BIN
    identity_prefix = PI_IDENTITY_PREFIX

    @property
    def kind(self) -> AgentKind:
        return AgentKind.PI

    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        split = split_argv(ctx.argv, ctx.body_index)
        if not has_flag(split.options(), "--mode"):
            split.before.extend(["--mode", ctx.format or "json"])
        if not has_flag(split.options(), "-p", "--print"):
            split.before.append("-p")
        return split.join(self.body_with_identity(split.body, ctx))

    def build_rpc_args(self, ctx: BuildArgsContext) -> tuple[list[str], str]:
        """Return (argv, prompt) for the persistent RPC process.

        The body is moved out of argv into the prompt envelope, so the
        argv stays identical across turns of one conversation.
        """
        split = split_argv(ctx.argv, ctx.body_index)
        argv = _strip_mode(split.before) + ["--mode", PI_RPC_MODE]
        argv += _strip_mode(split.after)
        return argv, self.body_with_identity(split.body, ctx)

    def parse_output(self, raw: str) -> AgentParseResult:
        return parse_pi_json(raw)
