"""Relay configuration.

Settings come from a YAML file (``~/.warelay/warelay.yaml`` by
default) with WARELAY_* environment variables layered on top. Every
setting has a default, so running without a file works.

Example YAML:
    agent:
      command: ["pi", "--model", "sonnet", "{{Body}}"]
      kind: pi              # optional; detected from the binary name
      cwd: ~/projects/notes
      timeout_seconds: 600
      rpc_idle_ms: 120
      output_format: json

    session:
      send_system_once: true
      identity_prefix: "You are my pocket assistant."

    logging:
      level: info
      file: /tmp/warelay/warelay.log
"""
from __future__ import annotations

import logging
import math
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .agents.base import AgentKind
from .errors import ConfigError

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    return Path.home() / ".warelay" / "warelay.yaml"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class RelayConfig:
    """Agent relay configuration."""

    # Command template; the token holding {{Body}} carries the prompt.
    command: list[str] = field(default_factory=lambda: ["claude", "{{Body}}"])
    # Explicit agent kind; None means detect from command[0].
    agent: AgentKind | None = None
    cwd: str | None = None
    timeout_seconds: float = 600.0
    # Quiet period after an assistant message_end before a pi turn resolves.
    rpc_idle_ms: int = 120
    output_format: str | None = "json"

    send_system_once: bool = False
    identity_prefix: str | None = None

    log_level: str = "INFO"
    log_file: str | None = None

    @property
    def rpc_idle_seconds(self) -> float:
        return self.rpc_idle_ms / 1000.0

    def apply_env(self, environ: dict[str, str] | None = None) -> RelayConfig:
        """Overlay WARELAY_* environment variables onto this config."""
        env = os.environ if environ is None else environ
        overrides = sorted(k for k in env if k.startswith("WARELAY_"))
        if overrides:
            logger.info(
                "RelayConfig: WARELAY_* env overrides: %s", ", ".join(overrides),
            )

        if env.get("WARELAY_COMMAND"):
            self.command = shlex.split(env["WARELAY_COMMAND"])
        if env.get("WARELAY_AGENT"):
            self.agent = _parse_agent(env["WARELAY_AGENT"], "WARELAY_AGENT")
        if env.get("WARELAY_CWD"):
            self.cwd = env["WARELAY_CWD"]
        if env.get("WARELAY_TIMEOUT"):
            self.timeout_seconds = _parse_number(
                env["WARELAY_TIMEOUT"], float, "environment", "WARELAY_TIMEOUT",
            )
        if env.get("WARELAY_RPC_IDLE_MS"):
            self.rpc_idle_ms = _parse_number(
                env["WARELAY_RPC_IDLE_MS"], int, "environment", "WARELAY_RPC_IDLE_MS",
            )
        if env.get("WARELAY_OUTPUT_FORMAT"):
            self.output_format = env["WARELAY_OUTPUT_FORMAT"]
        if env.get("WARELAY_SEND_SYSTEM_ONCE"):
            self.send_system_once = _parse_bool(env["WARELAY_SEND_SYSTEM_ONCE"])
        if env.get("WARELAY_IDENTITY_PREFIX"):
            self.identity_prefix = env["WARELAY_IDENTITY_PREFIX"]
        if env.get("WARELAY_LOG_LEVEL"):
            self.log_level = env["WARELAY_LOG_LEVEL"]
        if env.get("WARELAY_LOG_FILE"):
            self.log_file = env["WARELAY_LOG_FILE"]
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> RelayConfig:
        """Defaults plus WARELAY_* environment variables."""
        return cls().apply_env(environ)


def _parse_number(value: Any, convert: type, where: str, name: str):
    if isinstance(value, bool):
        raise ConfigError(where, f"{name} must be a number, got {value!r}")
    try:
        result = convert(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(where, f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(result) or result < 0:
        raise ConfigError(where, f"{name} must be a finite, non-negative number, got {value!r}")
    return result


def _parse_agent(value: str, where: str) -> AgentKind:
    try:
        return AgentKind(value.strip().lower())
    except ValueError as exc:
        known = ", ".join(kind.value for kind in AgentKind)
        raise ConfigError(where, f"unknown agent '{value}' (known: {known})") from exc


def _section(raw: dict[str, Any], name: str, path: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(path, f"section '{name}' must be a mapping")
    return value


def config_from_dict(raw: dict[str, Any], path: str = "<dict>") -> RelayConfig:
    """Build a RelayConfig from parsed YAML."""
    config = RelayConfig()
    agent = _section(raw, "agent", path)
    session = _section(raw, "session", path)
    logging_cfg = _section(raw, "logging", path)

    command = agent.get("command")
    if command is not None:
        if isinstance(command, str):
            command = shlex.split(command)
        if not isinstance(command, list) or not command:
            raise ConfigError(path, "agent.command must be a non-empty list")
        config.command = [str(token) for token in command]
    if agent.get("kind"):
        config.agent = _parse_agent(str(agent["kind"]), path)
    if agent.get("cwd"):
        config.cwd = os.path.expanduser(str(agent["cwd"]))
    if agent.get("timeout_seconds") is not None:
        config.timeout_seconds = _parse_number(
            agent["timeout_seconds"], float, path, "agent.timeout_seconds",
        )
    if agent.get("rpc_idle_ms") is not None:
        config.rpc_idle_ms = _parse_number(
            agent["rpc_idle_ms"], int, path, "agent.rpc_idle_ms",
        )
    if "output_format" in agent:
        config.output_format = agent["output_format"] or None

    if session.get("send_system_once") is not None:
        config.send_system_once = bool(session["send_system_once"])
    if session.get("identity_prefix") is not None:
        config.identity_prefix = str(session["identity_prefix"])

    if logging_cfg.get("level"):
        config.log_level = str(logging_cfg["level"]).upper()
    if logging_cfg.get("file"):
        config.log_file = str(logging_cfg["file"])
    return config


def load_config(
    path: str | Path | None = None,
    *,
    environ: dict[str, str] | None = None,
) -> RelayConfig:
    """Load YAML config and overlay WARELAY_* env vars.

    A missing file at the default location is not an error; an
    explicitly given path must exist.
    """
    explicit = path is not None
    config_path = Path(path) if path is not None else default_config_path()

    if not config_path.is_file():
        if explicit:
            raise ConfigError(str(config_path), "file not found")
        logger.debug("load_config: no config at %s, using defaults", config_path)
        return RelayConfig().apply_env(environ)

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.error("load_config: YAML parse error in %s: %s", config_path, exc)
        raise ConfigError(str(config_path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(config_path), "top level must be a mapping")
    logger.info(
        "load_config: loaded %s (sections: %s)",
        config_path, ", ".join(sorted(raw)) or "empty",
    )
    return config_from_dict(raw, str(config_path)).apply_env(environ)
