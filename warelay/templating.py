"""``{{Placeholder}}`` interpolation for agent command templates.

A configured command such as ``["claude", "--model", "opus", "{{Body}}"]``
is rendered per inbound message; the token holding ``{{Body}}`` is the
prompt body the agent specs build around.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

_PLACEHOLDER_RE = re.compile(r"{{\s*(\w+)\s*}}")
BODY_PLACEHOLDER = "Body"


def apply_template(text: str, context: Mapping[str, Any]) -> str:
    """Replace ``{{Key}}`` with ``context[Key]``; unknown keys become ""."""
    def _sub(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, text)


def find_body_index(command: list[str]) -> int:
    """Index of the first token that references ``{{Body}}``, or -1."""
    for index, token in enumerate(command):
        for match in _PLACEHOLDER_RE.finditer(token):
            if match.group(1) == BODY_PLACEHOLDER:
                return index
    return -1


def build_template_context(
    body: str,
    *,
    session_id: str | None = None,
    is_new_session: bool | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Template variables for one inbound message.

    Extra keyword arguments (``From``, ``To``, ``MediaPath`` ...) are
    passed through unchanged.
    """
    context: dict[str, Any] = {
        "Body": body,
        "BodyStripped": body.strip(),
    }
    if session_id is not None:
        context["SessionId"] = session_id
    if is_new_session is not None:
        context["IsNewSession"] = "true" if is_new_session else "false"
    context.update(extra)
    return context


def render_command(
    command: list[str], context: Mapping[str, Any],
) -> tuple[list[str], int]:
    """Render every token of *command*; return (argv, body_index).

    Without a ``{{Body}}`` token the body is appended as the last
    argument.
    """
    body_index = find_body_index(command)
    argv = [apply_template(token, context) for token in command]
    if body_index == -1:
        argv.append(str(context.get(BODY_PLACEHOLDER) or ""))
        body_index = len(argv) - 1
    return argv, body_index
