"""warelay: relay chat messages to command-line AI agents."""
from .agents import AgentKind, AgentParseResult, get_agent_spec
from .process import StreamingRpcClient, reset_connection_cache, run_prompt
from .relay import AgentReply, SessionState, invoke_agent

__version__ = "0.2.0"

__all__ = [
    "AgentKind",
    "AgentParseResult",
    "get_agent_spec",
    "StreamingRpcClient",
    "reset_connection_cache",
    "run_prompt",
    "AgentReply",
    "SessionState",
    "invoke_agent",
]
