"""Agent registry: maps every AgentKind to its AgentSpec."""
from __future__ import annotations

import logging

from .base import AgentKind, AgentSpec

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Registry of agent specs keyed by AgentKind.

    Built once at startup. Lookups for a declared kind never fail;
    build_agent_registry() refuses to return an incomplete registry.
    """

    def __init__(self) -> None:
        self._specs: dict[AgentKind, AgentSpec] = {}

    def register(self, spec: AgentSpec) -> None:
        """Register a spec under its own kind."""
        self._specs[spec.kind] = spec
        logger.debug("Agent spec registered: %s", spec.kind.value)

    def get(self, kind: AgentKind | str) -> AgentSpec:
        """Return the spec for *kind*.

        A string is accepted and converted to AgentKind, which raises
        ValueError for an unknown agent name.
        """
        return self._specs[AgentKind(kind)]

    def detect(self, argv: list[str]) -> AgentSpec | None:
        """Return the spec whose binary starts *argv*, if any."""
        for spec in self._specs.values():
            if spec.is_invocation(argv):
                return spec
        return None

    def missing_kinds(self) -> list[AgentKind]:
        return [kind for kind in AgentKind if kind not in self._specs]

    def list_kinds(self) -> list[AgentKind]:
        return list(self._specs.keys())

    def __contains__(self, kind: object) -> bool:
        return kind in self._specs

    def __len__(self) -> int:
        return len(self._specs)


def build_agent_registry() -> AgentRegistry:
    """Build the registry with one spec per AgentKind."""
    from .claude_agent import ClaudeAgent
    from .codex_agent import CodexAgent
    from .gemini_agent import GeminiAgent
    from .opencode_agent import OpencodeAgent
    from .pi_agent import PiAgent

    registry = AgentRegistry()
    for spec in (
        ClaudeAgent(),
        CodexAgent(),
        GeminiAgent(),
        OpencodeAgent(),
        PiAgent(),
    ):
        registry.register(spec)

    missing = registry.missing_kinds()
    if missing:
        raise RuntimeError(
            "Agent registry is incomplete; no spec for: "
            + ", ".join(kind.value for kind in missing)
        )
    return registry


_default_registry: AgentRegistry | None = None


def get_agent_registry() -> AgentRegistry:
    """Return the process-wide registry, building it on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_agent_registry()
    return _default_registry


def get_agent_spec(kind: AgentKind | str) -> AgentSpec:
    return get_agent_registry().get(kind)
