"""Exception hierarchy for the agent relay.

One exception per failure mode so callers can tell a timed-out
conversation from a crashed agent or a misuse of the client.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay errors."""


class AgentSpawnError(RelayError):
    """The agent binary could not be started."""
    def __init__(self, argv: list[str], reason: str):
        self.argv = list(argv)
        self.reason = reason
        binary = argv[0] if argv else "<empty>"
        super().__init__(f"Failed to start agent {binary}: {reason}")


class AgentCommandError(RelayError):
    """A one-shot agent invocation exited with a non-zero code."""
    def __init__(self, argv: list[str], code: int | None, stderr: str):
        self.argv = list(argv)
        self.code = code
        self.stderr = stderr
        binary = argv[0] if argv else "<empty>"
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        super().__init__(
            f"Agent {binary} exited with code {code}"
            + (f": {detail}" if detail else "")
        )


class AgentTimeoutError(RelayError):
    """A one-shot agent invocation exceeded its time budget."""
    def __init__(self, argv: list[str], timeout_seconds: float | None):
        self.argv = list(argv)
        self.timeout_seconds = timeout_seconds
        binary = argv[0] if argv else "<empty>"
        super().__init__(f"Agent {binary} timed out after {timeout_seconds}s")


class UnknownAgentError(RelayError):
    """The command does not start with a supported agent binary."""
    def __init__(self, binary: str):
        self.binary = binary
        super().__init__(f"No agent spec recognises command '{binary}'")


class RpcError(RelayError):
    """Base exception for streaming RPC client failures."""


class RpcTimeoutError(RpcError):
    """The pending prompt did not complete within its time budget."""
    def __init__(self, elapsed_seconds: float):
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"rpc prompt timed out after {elapsed_seconds * 1000:.0f}ms"
        )


class RpcProcessExitError(RpcError):
    """The agent process exited while a prompt was pending."""
    def __init__(self, code: int | None, signal: str | None):
        self.code = code
        self.signal = signal
        super().__init__(f"rpc process exited (code={code}, signal={signal})")


class RpcOutputError(RpcError):
    """The agent wrote output the client cannot frame into lines."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"rpc output unreadable: {reason}")


class RpcConcurrentRequestError(RpcError):
    """A prompt was issued while another one is still pending."""
    def __init__(self) -> None:
        super().__init__("rpc client is already handling a request")


class RpcClientClosedError(RpcError):
    """The client was disposed while a prompt was pending."""
    def __init__(self) -> None:
        super().__init__("rpc client was disposed before the turn completed")


class ConfigError(RelayError):
    """The relay configuration file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
