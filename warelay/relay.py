"""Relay facade: one inbound message in, normalized agent reply out.

Renders the configured command template, picks the agent spec, builds
the final argv and runs the agent, either as a one-shot process or,
for pi, through the persistent RPC connection.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .agents.base import AgentKind, AgentMeta, AgentSpec, BuildArgsContext
from .agents.pi_agent import PiAgent
from .agents.registry import AgentRegistry, get_agent_registry
from .errors import AgentCommandError, AgentTimeoutError, UnknownAgentError
from .process.connection import ConnectionCache, get_connection_cache
from .process.exec import run_command
from .templating import build_template_context, render_command

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Per-conversation bookkeeping owned by the caller."""
    session_id: str = ""
    is_new_session: bool = True
    system_sent: bool = False


@dataclass
class AgentReply:
    """Normalized reply plus the raw process output."""
    kind: AgentKind
    argv: list[str]
    texts: list[str] = field(default_factory=list)
    meta: AgentMeta | None = None
    stdout: str = ""
    stderr: str = ""
    code: int | None = 0

    @property
    def text(self) -> str:
        return "\n\n".join(self.texts)


def resolve_agent(
    argv: list[str],
    kind: AgentKind | str | None = None,
    registry: AgentRegistry | None = None,
) -> AgentSpec:
    """Explicit *kind* wins; otherwise detect from the binary name."""
    registry = registry or get_agent_registry()
    if kind is not None:
        return registry.get(kind)
    spec = registry.detect(argv)
    if spec is None:
        raise UnknownAgentError(os.path.basename(argv[0]) if argv else "")
    return spec


async def invoke_agent(
    command: list[str],
    body: str,
    *,
    kind: AgentKind | str | None = None,
    cwd: str | None = None,
    timeout_seconds: float = 600.0,
    session: SessionState | None = None,
    send_system_once: bool = False,
    identity_prefix: str | None = None,
    output_format: str | None = "json",
    template_context: dict[str, Any] | None = None,
    registry: AgentRegistry | None = None,
    connections: ConnectionCache | None = None,
) -> AgentReply:
    """Run one prompt through the configured agent.

    *session* is updated in place: after a successful reply it is no
    longer new, the identity counts as sent, and a session id reported
    by the agent is recorded.
    """
    session = session if session is not None else SessionState()
    context = build_template_context(
        body,
        session_id=session.session_id or None,
        is_new_session=session.is_new_session,
        **(template_context or {}),
    )
    argv, body_index = render_command(command, context)
    spec = resolve_agent(argv, kind, registry)
    ctx = BuildArgsContext(
        argv=argv,
        body_index=body_index,
        is_new_session=session.is_new_session,
        session_id=session.session_id,
        send_system_once=send_system_once,
        system_sent=session.system_sent,
        identity_prefix=identity_prefix,
        format=output_format,
    )

    if isinstance(spec, PiAgent):
        rpc_argv, prompt = spec.build_rpc_args(ctx)
        cache = connections or get_connection_cache()
        logger.info("invoke_agent: pi rpc turn (%d chars)", len(prompt))
        rpc = await cache.run_prompt(
            rpc_argv, prompt, cwd=cwd, timeout_seconds=timeout_seconds,
        )
        final_argv, stdout, stderr, code = rpc_argv, rpc.stdout, rpc.stderr, rpc.code
    else:
        final_argv = spec.build_args(ctx)
        logger.info("invoke_agent: running %s one-shot", spec.kind.value)
        result = await run_command(
            final_argv, cwd=cwd, timeout_seconds=timeout_seconds,
        )
        if result.killed:
            raise AgentTimeoutError(final_argv, timeout_seconds)
        if result.code != 0:
            raise AgentCommandError(final_argv, result.code, result.stderr)
        stdout, stderr, code = result.stdout, result.stderr, result.code

    parsed = spec.parse_output(stdout)
    texts = [t for t in (parsed.texts or []) if t]
    if not texts:
        logger.warning("invoke_agent: %s returned no reply text", spec.kind.value)

    session.is_new_session = False
    session.system_sent = True
    if parsed.meta is not None and parsed.meta.session_id:
        session.session_id = parsed.meta.session_id

    return AgentReply(
        kind=spec.kind,
        argv=final_argv,
        texts=texts,
        meta=parsed.meta,
        stdout=stdout,
        stderr=stderr,
        code=code,
    )
