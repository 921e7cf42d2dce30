"""Agent specs: per-CLI argv builders and output parsers."""
from .base import (
    AgentKind,
    AgentMeta,
    AgentParseResult,
    AgentSpec,
    AgentUsage,
    BuildArgsContext,
)
from .registry import (
    AgentRegistry,
    build_agent_registry,
    get_agent_registry,
    get_agent_spec,
)
from .claude_agent import ClaudeAgent
from .codex_agent import CodexAgent
from .gemini_agent import GeminiAgent
from .opencode_agent import OpencodeAgent
from .pi_agent import PiAgent

__all__ = [
    "AgentKind",
    "AgentMeta",
    "AgentParseResult",
    "AgentSpec",
    "AgentUsage",
    "BuildArgsContext",
    "AgentRegistry",
    "build_agent_registry",
    "get_agent_registry",
    "get_agent_spec",
    "ClaudeAgent",
    "CodexAgent",
    "GeminiAgent",
    "OpencodeAgent",
    "PiAgent",
]
