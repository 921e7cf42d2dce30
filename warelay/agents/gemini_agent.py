"""Gemini CLI agent spec.

``--output-format json`` prints one document
(``{"session_id", "response", "stats"}``), possibly preceded by log
noise such as "Loaded cached credentials.". ``stream-json`` prints
init / message / tool_use / tool_result / result events instead;
both shapes are understood.
"""
from __future__ import annotations

import json
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

GEMINI_BIN = "gemini"
GEMINI_IDENTITY_PREFIX = (
    "You are Gemini, reached through warelay: the user is chatting with you "
    "from a phone. Keep answers concise and in plain text."
)


def _decode_document(raw: str) -> dict[str, Any] | None:
    """Decode the first JSON document in *raw*, skipping leading noise.

    Stream events carry a ``type`` key and are left to _parse_stream().
    """
    start = raw.find("{")
    decoder = json.JSONDecoder()
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(raw, start)
        except json.JSONDecodeError:
            start = raw.find("{", start + 1)
            continue
        if (
            isinstance(obj, dict)
            and "type" not in obj
            and ("response" in obj or "stats" in obj)
        ):
            return obj
        start = raw.find("{", start + 1)
    return None


def _usage_from_stats(stats: Any) -> AgentUsage | None:
    """Sum per-model token counters from ``stats.models``."""
    if not isinstance(stats, dict):
        return None
    models = stats.get("models")
    if isinstance(models, dict):
        totals: dict[str, int] = {}
        seen = False
        for model_stats in models.values():
            tokens = model_stats.get("tokens") if isinstance(model_stats, dict) else None
            if not isinstance(tokens, dict):
                continue
            for key in ("prompt", "candidates", "cached", "total"):
                value = as_int(tokens.get(key))
                if value is not None:
                    totals[key] = totals.get(key, 0) + value
                    seen = True
        if not seen:
            return None
        return AgentUsage.from_counters(
            input=totals.get("prompt"),
            output=totals.get("candidates"),
            cache_read=totals.get("cached"),
            total=totals.get("total"),
        )
    # stream-json result events report flat counters
    return AgentUsage.from_counters(
        input=as_int(stats.get("input_tokens")),
        output=as_int(stats.get("output_tokens")),
        cache_read=as_int(stats.get("cached_input_tokens")),
        total=as_int(stats.get("total_tokens")),
    )


def _parse_stream(raw: str) -> AgentParseResult:
    chunks: list[str] = []
    session_id: str | None = None
    usage: AgentUsage | None = None
    for event in iter_json_objects(raw):
        etype = event.get("type")
        if etype == "init":
            sid = event.get("session_id")
            if isinstance(sid, str) and sid:
                session_id = sid
        elif etype == "message" and event.get("role") == "assistant":
            content = event.get("content")
            if isinstance(content, str):
                chunks.append(content)
        elif etype == "result":
            event_usage = _usage_from_stats(event.get("stats"))
            usage = usage.merged(event_usage) if usage else event_usage
    text = "".join(chunks).strip()
    meta = AgentMeta(session_id=session_id, usage=usage)
    return AgentParseResult(
        texts=[text] if text else None,
        meta=None if meta.is_empty() else meta,
    )


def parse_gemini_json(raw: str) -> AgentParseResult:
    document = _decode_document(raw)
    if document is None:
        return _parse_stream(raw)

    response = document.get("response")
    text = response.strip() if isinstance(response, str) else ""
    meta = AgentMeta(usage=_usage_from_stats(document.get("stats")))
    session_id = document.get("session_id")
    if isinstance(session_id, str) and session_id:
        meta.session_id = session_id
    return AgentParseResult(
        texts=[text] if text else None,
        meta=None if meta.is_empty() else meta,
    )


class GeminiAgent(AgentSpec):
    """Spec for the ``gemini`` CLI."""

    binary = GEMINI_BIN
    identity_prefix = GEMINI_IDENTITY_PREFIX

    @property
    def kind(self) -> AgentKind:
        return AgentKind.GEMINI

    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        split = split_argv(ctx.argv, ctx.body_index)
        if not has_flag(split.options(), "--output-format", "-o"):
            split.before.extend(["--output-format", ctx.format or "json"])
        return split.join(self.body_with_identity(split.body, ctx))

    def parse_output(self, raw: str) -> AgentParseResult:
        return parse_gemini_json(raw)
