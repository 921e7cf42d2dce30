"""OpenAI Codex CLI agent spec.

Runs ``codex exec --json`` non-interactively and reads its JSONL
event stream (thread.started / item.completed / turn.completed).
"""
from __future__ import annotations

import logging

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

CODEX_BIN = "codex"
CODEX_SUBCOMMAND = "exec"
CODEX_DEFAULT_SANDBOX = "read-only"
CODEX_IDENTITY_PREFIX = (
    "You are Codex, reached through warelay: the user is chatting with you "
    "from a phone. Answer briefly in plain text and do not modify files "
    "unless explicitly asked."
)


def parse_codex_json(raw: str) -> AgentParseResult:
    """Collect agent_message texts and the final turn usage."""
    texts: list[str] = []
    usage: AgentUsage | None = None
    session_id: str | None = None

    for event in iter_json_objects(raw):
        event_type = event.get("type")
        if event_type == "thread.started":
            thread_id = event.get("thread_id")
            if isinstance(thread_id, str) and thread_id:
                session_id = thread_id
        elif event_type == "item.completed":
            item = event.get("item")
            if (
                isinstance(item, dict)
                and item.get("type") == "agent_message"
                and isinstance(item.get("text"), str)
            ):
                texts.append(item["text"])
        elif event_type == "turn.completed":
            raw_usage = event.get("usage")
            if isinstance(raw_usage, dict):
                turn_usage = AgentUsage.from_counters(
                    input=as_int(raw_usage.get("input_tokens")),
                    output=as_int(raw_usage.get("output_tokens")),
                    cache_read=as_int(raw_usage.get("cached_input_tokens")),
                )
                usage = usage.merged(turn_usage) if usage else turn_usage

    meta = AgentMeta(session_id=session_id, usage=usage)
    final_texts = [t.strip() for t in texts] if texts else None
    return AgentParseResult(
        texts=final_texts,
        meta=None if meta.is_empty() else meta,
    )


class CodexAgent(AgentSpec):
    """Spec for the ``codex`` CLI (exec mode)."""

    binary = CODEX_BIN
    identity_prefix = CODEX_IDENTITY_PREFIX

    @property
    def kind(self) -> AgentKind:
        return AgentKind.CODEX

    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        split = split_argv(ctx.argv, ctx.body_index)

        # The sub-command must follow the binary directly.
        if split.before and split.before[1:2] != [CODEX_SUBCOMMAND]:
            split.before.insert(1, CODEX_SUBCOMMAND)

        if not has_flag(split.options(), "--json"):
            split.before.append("--json")
        if not has_flag(split.options(), "--skip-git-repo-check"):
            split.before.append("--skip-git-repo-check")
        if not has_flag(split.options(), "--sandbox", "-s"):
            split.before.extend(["--sandbox", CODEX_DEFAULT_SANDBOX])

        return split.join(self.body_with_identity(split.body, ctx))

    def parse_output(self, raw: str) -> AgentParseResult:
        return parse_codex_json(raw)
