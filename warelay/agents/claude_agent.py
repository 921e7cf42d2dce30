"""Claude Code CLI agent spec.

Runs ``claude -p --output-format json <body>`` and reads the single
result document (or NDJSON when stream-json is requested).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .base import (
    AgentKind,
    AgentMeta,
    AgentParseResult,
    AgentSpec,
    AgentUsage,
    BuildArgsContext,
    as_float,
    as_int,
    has_flag,
    iter_json_objects,
    split_argv,
)

logger = logging.getLogger(__name__)

CLAUDE_BIN = "claude"
CLAUDE_IDENTITY_PREFIX = (
    "You are Claude, reached through warelay: the user is chatting with you "
    "from a phone (SMS, WhatsApp or Twitter). Keep replies short and plain "
    "text, since they are delivered as chat messages."
)


@dataclass
class ClaudeJsonParseResult:
    """Raw Claude JSON plus the text pulled out of it."""
    parsed: dict[str, Any] | None
    text: str | None
    valid: bool


def _extract_text(obj: dict[str, Any]) -> str | None:
    for key in ("result", "text"):
        value = obj.get(key)
        if isinstance(value, str):
            return value
    message = obj.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, list):
            parts = [
                block.get("text", "")
                for block in content
                if isinstance(block, dict)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            ]
            if parts:
                return "".join(parts)
    return None


def _looks_like_result(obj: dict[str, Any]) -> bool:
    return obj.get("type") == "result" or isinstance(obj.get("result"), str)


def parse_claude_json(raw: str) -> ClaudeJsonParseResult | None:
    """Parse Claude CLI output as one JSON document or as NDJSON.

    The last object carrying text wins. Returns None when the output
    holds no JSON object at all.
    """
    candidates: list[dict[str, Any]] = []
    stripped = raw.strip()
    if stripped.startswith("{"):
        try:
            whole = json.loads(stripped)
        except json.JSONDecodeError:
            whole = None
        if isinstance(whole, dict):
            candidates = [whole]
    if not candidates:
        candidates = list(iter_json_objects(raw))
    if not candidates:
        return None

    for obj in reversed(candidates):
        text = _extract_text(obj)
        if text is not None:
            return ClaudeJsonParseResult(
                parsed=obj, text=text, valid=_looks_like_result(obj),
            )
    last = candidates[-1]
    return ClaudeJsonParseResult(
        parsed=last, text=None, valid=_looks_like_result(last),
    )


def parse_claude_json_text(raw: str) -> str | None:
    parsed = parse_claude_json(raw)
    return parsed.text if parsed else None


def summarize_claude_metadata(payload: dict[str, Any]) -> str | None:
    """Human-readable one-liner of duration, cost, turns and tool use."""
    parts: list[str] = []
    duration = as_int(payload.get("duration_ms"))
    if duration is not None:
        parts.append(f"duration={duration}ms")
    cost = as_float(payload.get("total_cost_usd", payload.get("cost_usd")))
    if cost is not None:
        parts.append(f"cost=${cost:.4f}")
    turns = as_int(payload.get("num_turns"))
    if turns is not None:
        parts.append(f"turns={turns}")
    usage = payload.get("usage")
    if isinstance(usage, dict):
        server_tools = usage.get("server_tool_use")
        if isinstance(server_tools, dict):
            for name, count in server_tools.items():
                if as_int(count):
                    parts.append(f"tool_use={name}:{as_int(count)}")
    return ", ".join(parts) if parts else None


def _usage_from(payload: dict[str, Any]) -> AgentUsage | None:
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None
    return AgentUsage.from_counters(
        input=as_int(usage.get("input_tokens")),
        output=as_int(usage.get("output_tokens")),
        cache_read=as_int(usage.get("cache_read_input_tokens")),
    )


def _to_meta(parsed: ClaudeJsonParseResult | None) -> AgentMeta | None:
    if parsed is None or parsed.parsed is None:
        return None
    payload = parsed.parsed
    meta = AgentMeta()
    session_id = payload.get("session_id")
    if isinstance(session_id, str) and session_id:
        meta.session_id = session_id
    meta.usage = _usage_from(payload)
    summary = summarize_claude_metadata(payload)
    if summary:
        meta.extra = {"summary": summary}
    return None if meta.is_empty() else meta


class ClaudeAgent(AgentSpec):
    """Spec for the ``claude`` CLI (print mode)."""

    binary = CLAUDE_BIN
    identity_prefix = CLAUDE_IDENTITY_PREFIX

    @property
    def kind(self) -> AgentKind:
        return AgentKind.CLAUDE

    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        split = split_argv(ctx.argv, ctx.body_index)

        if isinstance(ctx.format, str):
            if not has_flag(split.options(), "--output-format"):
                split.before.extend(["--output-format", ctx.format or "json"])

        if not has_flag(split.options(), "-p", "--print"):
            split.before.append("-p")

        return split.join(self.body_with_identity(split.body, ctx))

    def parse_output(self, raw: str) -> AgentParseResult:
        parsed = parse_claude_json(raw)
        if parsed is None:
            # Plain-text output (e.g. --output-format text).
            text = raw.strip()
        else:
            text = (parsed.text or "").strip()
        return AgentParseResult(
            texts=[text] if text else None,
            meta=_to_meta(parsed),
        )
