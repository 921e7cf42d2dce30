"""opencode CLI agent spec.

``opencode run --format json`` streams step_start / text / step_finish
events. Text parts are concatenated; per-step cost, tokens and
timestamps are accumulated into a one-line summary.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .base import (
    AgentKind,
    AgentMeta,
    AgentParseResult,
    AgentSpec,
    BuildArgsContext,
    as_float,
    as_int,
    has_flag,
    iter_json_objects,
    split_argv,
)

logger = logging.getLogger(__name__)

OPENCODE_BIN = "opencode"
OPENCODE_IDENTITY_PREFIX = (
    "You are opencode, reached through warelay: the user is chatting with "
    "you from a phone. Reply briefly in plain text."
)


@dataclass
class OpencodeStepMeta:
    """Totals accumulated over every finished step."""
    duration_ms: int | None = None
    cost: float | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    steps: int = 0


@dataclass
class OpencodeParseResult:
    text: str | None
    meta: OpencodeStepMeta
    saw_json: bool


def _add(a: float | int | None, b: float | int | None):
    if b is None:
        return a
    return b if a is None else a + b


def parse_opencode_json(raw: str) -> OpencodeParseResult:
    chunks: list[str] = []
    meta = OpencodeStepMeta()
    first_start: int | None = None
    saw_json = False

    for event in iter_json_objects(raw):
        saw_json = True
        etype = event.get("type")
        part = event.get("part") if isinstance(event.get("part"), dict) else {}
        if etype == "step_start":
            ts = as_int(event.get("timestamp"))
            if first_start is None and ts is not None:
                first_start = ts
        elif etype == "text":
            text = part.get("text")
            if isinstance(text, str):
                chunks.append(text)
        elif etype == "step_finish":
            meta.steps += 1
            ts = as_int(event.get("timestamp"))
            if ts is not None and first_start is not None:
                meta.duration_ms = ts - first_start
            meta.cost = _add(meta.cost, as_float(part.get("cost")))
            tokens = part.get("tokens")
            if isinstance(tokens, dict):
                meta.input_tokens = _add(meta.input_tokens, as_int(tokens.get("input")))
                meta.output_tokens = _add(meta.output_tokens, as_int(tokens.get("output")))

    text = "".join(chunks)
    return OpencodeParseResult(
        text=text if text else None,
        meta=meta,
        saw_json=saw_json,
    )


def summarize_opencode_metadata(meta: OpencodeStepMeta) -> str | None:
    """``duration=<ms>ms, cost=$<4dp>, tokens=<in>+<out>``, when known."""
    if meta.steps == 0:
        return None
    parts: list[str] = []
    if meta.duration_ms is not None:
        parts.append(f"duration={meta.duration_ms}ms")
    if meta.cost is not None:
        parts.append(f"cost=${meta.cost:.4f}")
    if meta.input_tokens is not None or meta.output_tokens is not None:
        parts.append(f"tokens={meta.input_tokens or 0}+{meta.output_tokens or 0}")
    return ", ".join(parts) if parts else None


class OpencodeAgent(AgentSpec):
    """Spec for the ``opencode`` CLI."""

    binary = OPENCODE_BIN
    identity_prefix = OPENCODE_IDENTITY_PREFIX

    @property
    def kind(self) -> AgentKind:
        return AgentKind.OPENCODE

    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        split = split_argv(ctx.argv, ctx.body_index)
        if ctx.format == "json" and not has_flag(split.options(), "--format"):
            split.before.extend(["--format", "json"])
        return split.join(self.body_with_identity(split.body, ctx))

    def parse_output(self, raw: str) -> AgentParseResult:
        parsed = parse_opencode_json(raw)
        if parsed.text is not None:
            text = parsed.text.strip()
        elif not parsed.saw_json:
            text = raw.strip()
        else:
            text = ""
        summary = summarize_opencode_metadata(parsed.meta)
        return AgentParseResult(
            texts=[text] if text else None,
            meta=AgentMeta(extra={"summary": summary}) if summary else None,
        )
