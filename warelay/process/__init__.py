"""Agent process management: one-shot runs and persistent RPC clients."""
from .connection import (
    ConnectionCache,
    connection_key,
    get_connection_cache,
    reset_connection_cache,
    run_prompt,
)
from .exec import CommandResult, run_command
from .rpc_client import DEFAULT_IDLE_SECONDS, RpcResult, StreamingRpcClient

__all__ = [
    "ConnectionCache",
    "connection_key",
    "get_connection_cache",
    "reset_connection_cache",
    "run_prompt",
    "CommandResult",
    "run_command",
    "DEFAULT_IDLE_SECONDS",
    "RpcResult",
    "StreamingRpcClient",
]
