"""Abstract base and shared data model for agent specs.

Each spec wraps one agent CLI (claude, codex, gemini, opencode, pi).
A spec is stateless: it recognises an invocation of its binary,
rewrites a raw command line into the final argv, and turns the
agent's stdout into an AgentParseResult. Specs are shared across
calls and never touch processes themselves.
"""
from __future__ import annotations

import abc
import json
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

logger = logging.getLogger(__name__)

IDENTITY_SEPARATOR = "\n\n"


class AgentKind(str, Enum):
    """Supported agent binaries."""
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    OPENCODE = "opencode"
    PI = "pi"


@dataclass
class BuildArgsContext:
    """Inputs to AgentSpec.build_args().

    ``body_index`` points at the prompt body inside ``argv``. The body
    is not necessarily the last token (templated commands can carry
    flags after it).
    """
    argv: list[str]
    body_index: int
    is_new_session: bool = True
    session_id: str = ""
    send_system_once: bool = False
    system_sent: bool = False
    identity_prefix: str | None = None
    format: str | None = None


@dataclass
class AgentUsage:
    """Normalized token usage."""
    input: int | None = None
    output: int | None = None
    cache_read: int | None = None
    total: int | None = None
    # True when the source reported ``total`` itself rather than us summing.
    total_reported: bool = field(default=False, compare=False, repr=False)

    @classmethod
    def from_counters(
        cls,
        input: int | None,
        output: int | None,
        cache_read: int | None,
        total: int | None = None,
    ) -> AgentUsage | None:
        """Build usage from separate counters.

        ``total`` defaults to the sum of the three components when the
        source does not report one. Returns None when nothing was reported.
        """
        if input is None and output is None and cache_read is None:
            if total is None:
                return None
        reported = total is not None
        if total is None:
            total = _component_sum(input, output, cache_read)
        return cls(
            input=input, output=output, cache_read=cache_read, total=total,
            total_reported=reported,
        )

    def merged(self, newer: AgentUsage | None) -> AgentUsage:
        """Overlay *newer* on top of this usage, field by field.

        A reported total from *newer* wins; otherwise the total is
        recomputed from the merged components.
        """
        if newer is None:
            return self
        input = newer.input if newer.input is not None else self.input
        output = newer.output if newer.output is not None else self.output
        cache_read = (
            newer.cache_read if newer.cache_read is not None else self.cache_read
        )
        if newer.total_reported:
            return AgentUsage(input, output, cache_read, newer.total, True)
        return AgentUsage(
            input, output, cache_read, _component_sum(input, output, cache_read),
        )


def _component_sum(*counters: int | None) -> int:
    return sum(c or 0 for c in counters)


@dataclass
class AgentMeta:
    """Metadata extracted alongside the reply text."""
    session_id: str | None = None
    usage: AgentUsage | None = None
    extra: dict[str, str] | None = None
    model: str | None = None
    provider: str | None = None
    stop_reason: str | None = None

    def is_empty(self) -> bool:
        return not any((
            self.session_id, self.usage, self.extra,
            self.model, self.provider, self.stop_reason,
        ))

    @property
    def summary(self) -> str | None:
        if self.extra:
            return self.extra.get("summary")
        return None


@dataclass
class AgentParseResult:
    """Normalized output of one agent run."""
    texts: list[str] | None = None
    meta: AgentMeta | None = None

    @property
    def has_text(self) -> bool:
        return bool(self.texts) and any(t.strip() for t in self.texts or [])


@dataclass
class SplitArgv:
    """An argv split around its prompt body."""
    before: list[str]
    body: str
    after: list[str]
    has_body: bool = True

    def options(self) -> list[str]:
        """Every non-body token."""
        return [*self.before, *self.after]

    def join(self, body: str | None = None) -> list[str]:
        argv = list(self.before)
        if self.has_body:
            argv.append(self.body if body is None else body)
        return argv + self.after


def split_argv(argv: list[str], body_index: int) -> SplitArgv:
    """Split *argv* into before-body / body / after-body."""
    if 0 <= body_index < len(argv):
        return SplitArgv(
            before=list(argv[:body_index]),
            body=argv[body_index],
            after=list(argv[body_index + 1:]),
        )
    return SplitArgv(before=list(argv), body="", after=[], has_body=False)


def has_flag(parts: list[str], *names: str) -> bool:
    """True when any of *names* appears as ``--flag`` or ``--flag=value``."""
    for part in parts:
        for name in names:
            if part == name or part.startswith(f"{name}="):
                return True
    return False


def iter_json_objects(raw: str) -> Iterator[dict[str, Any]]:
    """Yield every line of *raw* that decodes to a JSON object.

    Anything else (log noise, partial lines, arrays) is skipped.
    """
    for line in raw.split("\n"):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def as_int(value: Any) -> int | None:
    """Coerce a JSON number to int; other types and inf/NaN yield None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        result = float(value)
    except OverflowError:
        return None
    return result if math.isfinite(result) else None


class AgentSpec(abc.ABC):
    """Abstract agent capability.

    Subclasses set ``binary`` and ``identity_prefix`` and implement
    build_args() and parse_output().
    """

    binary: str = ""
    identity_prefix: str = ""

    @property
    @abc.abstractmethod
    def kind(self) -> AgentKind:
        """Which agent this spec drives."""

    def is_invocation(self, argv: list[str]) -> bool:
        """True when argv starts with this agent's binary (path stripped)."""
        return bool(argv) and os.path.basename(argv[0]) == self.binary

    @abc.abstractmethod
    def build_args(self, ctx: BuildArgsContext) -> list[str]:
        """Return the final argv for one invocation."""

    @abc.abstractmethod
    def parse_output(self, raw: str) -> AgentParseResult:
        """Parse agent stdout. Must never raise."""

    def body_with_identity(self, body: str, ctx: BuildArgsContext) -> str:
        """Prepend the identity prefix to a non-empty body.

        Skipped when the identity should only be sent once and already
        was. An empty body stays empty.
        """
        if not body:
            return body
        if ctx.send_system_once and ctx.system_sent:
            return body
        prefix = (
            ctx.identity_prefix
            if ctx.identity_prefix is not None
            else self.identity_prefix
        )
        return IDENTITY_SEPARATOR.join(p for p in (prefix, body) if p)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value}>"
