"""Tests for agent parse_output() and the per-agent JSON helpers."""
from __future__ import annotations

import json

import pytest

from warelay.agents.base import AgentKind, AgentUsage
from warelay.agents.claude_agent import (
    ClaudeAgent,
    parse_claude_json,
    parse_claude_json_text,
)
from warelay.agents.codex_agent import CodexAgent
from warelay.agents.gemini_agent import GeminiAgent
from warelay.agents.opencode_agent import OpencodeAgent
from warelay.agents.pi_agent import PiAgent
from warelay.agents.registry import get_agent_spec


# ── claude ───────────────────────────────────────────────────────


def test_claude_json_text_from_single_object() -> None:
    assert parse_claude_json_text('{"text":"hello"}') == "hello"


def test_claude_json_text_from_ndjson() -> None:
    assert parse_claude_json_text('{"irrelevant":1}\n{"text":"there"}') == "there"


def test_claude_json_invalid_input() -> None:
    assert parse_claude_json_text("not json") is None


def test_claude_result_field_preserves_metadata() -> None:
    sample = {
        "type": "result",
        "subtype": "success",
        "result": "hello from result field",
        "duration_ms": 1234,
        "usage": {"server_tool_use": {"tool_a": 2}},
    }
    parsed = parse_claude_json(json.dumps(sample))
    assert parsed is not None
    assert parsed.text == "hello from result field"
    assert parsed.parsed["duration_ms"] == 1234
    assert parsed.valid is True


def test_claude_unexpected_json_is_invalid() -> None:
    parsed = parse_claude_json('{"unexpected":1}')
    assert parsed is not None
    assert parsed.valid is False
    assert parsed.text is None


def test_claude_parse_output_meta() -> None:
    raw = json.dumps({
        "type": "result",
        "result": "  hi there  ",
        "session_id": "abc-123",
        "duration_ms": 1500,
        "total_cost_usd": 0.01234,
        "num_turns": 2,
        "usage": {
            "input_tokens": 7,
            "output_tokens": 3,
            "cache_read_input_tokens": 100,
        },
    })
    result = ClaudeAgent().parse_output(raw)

    assert result.texts == ["hi there"]
    assert result.meta is not None
    assert result.meta.session_id == "abc-123"
    assert result.meta.usage == AgentUsage(input=7, output=3, cache_read=100, total=110)
    assert result.meta.summary == "duration=1500ms, cost=$0.0123, turns=2"


def test_claude_plain_text_output_falls_back_to_raw() -> None:
    result = ClaudeAgent().parse_output("  just words\n")
    assert result.texts == ["just words"]
    assert result.meta is None


# ── codex ────────────────────────────────────────────────────────


def test_codex_usage_round_trip() -> None:
    raw = "\n".join([
        '{"type":"item.completed","item":{"type":"agent_message","text":"hi there"}}',
        '{"type":"turn.completed","usage":{"input_tokens":50,"output_tokens":10,"cached_input_tokens":5}}',
    ])
    result = CodexAgent().parse_output(raw)

    assert result.texts == ["hi there"]
    assert result.meta is not None
    assert result.meta.usage == AgentUsage(input=50, output=10, cache_read=5, total=65)


def test_codex_multiple_messages_keep_emission_order() -> None:
    raw = "\n".join([
        '{"type":"thread.started","thread_id":"th_1"}',
        '{"type":"item.completed","item":{"type":"reasoning","text":"thinking"}}',
        '{"type":"item.completed","item":{"type":"agent_message","text":"first"}}',
        '{"type":"item.completed","item":{"type":"command_execution","command":"ls"}}',
        '{"type":"item.completed","item":{"type":"agent_message","text":"second"}}',
    ])
    result = CodexAgent().parse_output(raw)

    assert result.texts == ["first", "second"]
    assert result.meta is not None
    assert result.meta.session_id == "th_1"
    assert result.meta.usage is None


def test_codex_last_usage_event_wins_per_field() -> None:
    raw = "\n".join([
        '{"type":"turn.completed","usage":{"input_tokens":1,"output_tokens":2,"cached_input_tokens":3}}',
        '{"type":"turn.completed","usage":{"input_tokens":40,"output_tokens":20}}',
    ])
    usage = CodexAgent().parse_output(raw).meta.usage

    assert usage.input == 40
    assert usage.output == 20
    assert usage.cache_read == 3
    assert usage.total == 63


def test_codex_message_with_unicode_line_separators() -> None:
    item = {"type": "agent_message", "text": "a\u2028b\u2029c\x85d"}
    raw = json.dumps(
        {"type": "item.completed", "item": item}, ensure_ascii=False,
    )
    assert CodexAgent().parse_output(raw).texts == ["a\u2028b\u2029c\x85d"]


# ── gemini ───────────────────────────────────────────────────────


def test_gemini_json_document_after_log_noise() -> None:
    raw = "Loaded cached credentials.\n" + json.dumps({
        "session_id": "g-1",
        "response": "Hello from Gemini!",
        "stats": {"models": {
            "gemini-2.5-pro": {"tokens": {"prompt": 30, "candidates": 5, "cached": 2, "total": 40}},
            "gemini-2.5-flash": {"tokens": {"prompt": 10, "candidates": 1, "total": 11}},
        }},
    }, indent=2)
    result = GeminiAgent().parse_output(raw)

    assert result.texts == ["Hello from Gemini!"]
    assert result.meta.session_id == "g-1"
    assert result.meta.usage == AgentUsage(input=40, output=6, cache_read=2, total=51)


def test_gemini_stream_json_events() -> None:
    raw = "\n".join([
        '{"type":"init","session_id":"g-2","model":"gemini-2.5-pro"}',
        '{"type":"message","role":"user","content":"hi"}',
        '{"type":"message","role":"assistant","content":"Hel","delta":true}',
        '{"type":"message","role":"assistant","content":"lo","delta":true}',
        '{"type":"result","status":"success","stats":{"input_tokens":12,"output_tokens":4,"total_tokens":16}}',
    ])
    result = GeminiAgent().parse_output(raw)

    assert result.texts == ["Hello"]
    assert result.meta.session_id == "g-2"
    assert result.meta.usage == AgentUsage(input=12, output=4, cache_read=None, total=16)


# ── opencode ─────────────────────────────────────────────────────


def test_opencode_streamed_events_summary() -> None:
    raw = "\n".join([
        '{"type":"step_start","timestamp":0}',
        '{"type":"text","part":{"text":"hi"}}',
        '{"type":"step_finish","timestamp":1200,"part":{"cost":0.002,"tokens":{"input":100,"output":20}}}',
    ])
    result = OpencodeAgent().parse_output(raw)

    assert result.texts == ["hi"]
    summary = result.meta.summary
    assert "duration=1200ms" in summary
    assert "cost=$0.0020" in summary
    assert "tokens=100+20" in summary


def test_opencode_accumulates_steps() -> None:
    raw = "\n".join([
        '{"type":"step_start","timestamp":1000}',
        '{"type":"text","part":{"text":"Hello, "}}',
        '{"type":"step_finish","timestamp":1500,"part":{"cost":0.001,"tokens":{"input":10,"output":2}}}',
        '{"type":"step_start","timestamp":1600}',
        '{"type":"text","part":{"text":"world"}}',
        '{"type":"step_finish","timestamp":2400,"part":{"cost":0.0025,"tokens":{"input":30,"output":8}}}',
    ])
    result = OpencodeAgent().parse_output(raw)

    assert result.texts == ["Hello, world"]
    assert result.meta.summary == "duration=1400ms, cost=$0.0035, tokens=40+10"


def test_opencode_no_summary_without_step_finish() -> None:
    raw = '{"type":"step_start","timestamp":0}\n{"type":"text","part":{"text":"partial"}}'
    result = OpencodeAgent().parse_output(raw)
    assert result.texts == ["partial"]
    assert result.meta is None


# ── pi ───────────────────────────────────────────────────────────


def test_pi_parses_final_assistant_message_and_meta() -> None:
    raw = "\n".join([
        '{"type":"message_start","message":{"role":"assistant"}}',
        '{"type":"message_end","message":{"role":"assistant","content":[{"type":"text","text":"hello world"}],"usage":{"input":10,"output":5},"model":"pi-1","provider":"inflection","stopReason":"end"}}',
    ])
    result = PiAgent().parse_output(raw)

    assert result.texts == ["hello world"]
    assert result.meta.provider == "inflection"
    assert result.meta.model == "pi-1"
    assert result.meta.stop_reason == "end"
    assert result.meta.usage == AgentUsage(input=10, output=5, cache_read=None, total=15)


def test_pi_ignores_user_messages_and_empty_assistant_messages() -> None:
    raw = "\n".join([
        '{"type":"message_end","message":{"role":"user","content":[{"type":"text","text":"question"}]}}',
        '{"type":"message_end","message":{"role":"assistant","content":[{"type":"text","text":"answer"}]}}',
        '{"type":"message_end","message":{"role":"assistant","content":[{"type":"toolCall","name":"bash"}]}}',
    ])
    assert PiAgent().parse_output(raw).texts == ["answer"]


def test_pi_message_with_next_line_character() -> None:
    event = {
        "type": "message_end",
        "message": {"role": "assistant", "content": [{"type": "text", "text": "a\x85b"}]},
    }
    raw = json.dumps(event, ensure_ascii=False) + "\n"
    assert PiAgent().parse_output(raw).texts == ["a\x85b"]


def test_pi_reported_total_wins_and_derived_total_is_recomputed() -> None:
    raw = "\n".join([
        '{"type":"message_end","message":{"role":"assistant","content":[],"usage":{"input":5,"output":1,"cacheRead":2,"totalTokens":99}}}',
        '{"type":"message_end","message":{"role":"assistant","content":[{"type":"text","text":"x"}],"usage":{"output":4}}}',
    ])
    usage = PiAgent().parse_output(raw).meta.usage
    assert usage == AgentUsage(input=5, output=4, cache_read=2, total=11)

    reported = raw + "\n" + (
        '{"type":"message_end","message":{"role":"assistant","content":[],"usage":{"totalTokens":50}}}'
    )
    assert PiAgent().parse_output(reported).meta.usage.total == 50


def test_pi_boundary_without_text_has_no_texts() -> None:
    raw = '{"type":"message_end","message":{"role":"assistant","content":[]}}'
    result = PiAgent().parse_output(raw)
    assert result.texts is None
    assert not result.has_text


# ── properties shared by every spec ──────────────────────────────


GARBAGE = "\n".join([
    "",
    "not json at all",
    "{broken json",
    "[1, 2, 3]",
    '{"type": 42, "item": "nope", "message": []}',
    '{"type":"message_end","message":{"role":"assistant","content":"x","usage":"bad"}}',
    '{"type":"turn.completed","usage":[1]}',
    '{"type":"step_finish","part":{"cost":"free","tokens":null}}',
    # Python's json accepts out-of-range and non-finite numbers.
    '{"type":"turn.completed","usage":{"input_tokens":1e400,"output_tokens":NaN}}',
    '{"type":"message_end","message":{"role":"assistant","content":[],"usage":{"input":-Infinity,"totalTokens":1e400}}}',
    '{"type":"step_start","timestamp":NaN}',
    '{"type":"step_finish","timestamp":1e400,"part":{"cost":1e400,"tokens":{"input":NaN}}}',
    '{"type":"result","duration_ms":1e400,"total_cost_usd":NaN,"num_turns":Infinity,"result":"ok"}',
    '{"response":"ok","stats":{"models":{"m":{"tokens":{"prompt":1e400}}}}}',
    '{"type":"result","stats":{"input_tokens":NaN}}',
])


@pytest.mark.parametrize("kind", list(AgentKind))
def test_parse_output_never_raises_on_malformed_input(kind: AgentKind) -> None:
    get_agent_spec(kind).parse_output(GARBAGE)
    get_agent_spec(kind).parse_output("")


@pytest.mark.parametrize("kind", list(AgentKind))
def test_parse_output_is_idempotent(kind: AgentKind) -> None:
    raw = "\n".join([
        '{"type":"item.completed","item":{"type":"agent_message","text":"a"}}',
        '{"type":"message_end","message":{"role":"assistant","content":[{"type":"text","text":"b"}]}}',
        '{"type":"text","part":{"text":"c"}}',
        '{"result":"d","session_id":"s"}',
    ])
    spec = get_agent_spec(kind)
    assert spec.parse_output(raw) == spec.parse_output(raw)
