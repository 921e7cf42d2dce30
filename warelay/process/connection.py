"""Process-wide single-slot cache of streaming RPC clients.

Only one agent conversation is live at a time. The slot is keyed by
working directory plus argv: the same key reuses the running process
(and whatever conversation state the agent keeps in memory); a new
key disposes the old client before the new one is created.
"""
from __future__ import annotations

import logging
import shlex
from typing import Callable

from .rpc_client import DEFAULT_IDLE_SECONDS, RpcResult, StreamingRpcClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., StreamingRpcClient]


def connection_key(argv: list[str], cwd: str | None = None) -> str:
    """Deterministic cache key for (cwd, argv)."""
    return f"{cwd or ''}|{shlex.join(argv)}"


class ConnectionCache:
    """Holds at most one (key, client) pair."""

    def __init__(
        self,
        client_factory: ClientFactory = StreamingRpcClient,
        *,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
    ) -> None:
        self._client_factory = client_factory
        self._idle_seconds = idle_seconds
        self._key: str | None = None
        self._client: StreamingRpcClient | None = None

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def client(self) -> StreamingRpcClient | None:
        return self._client

    def get_client(
        self, argv: list[str], cwd: str | None = None,
    ) -> StreamingRpcClient:
        """Return the client for (argv, cwd), replacing the slot if needed."""
        key = connection_key(argv, cwd)
        if self._client is not None and self._key == key:
            if not self._client.is_closed:
                return self._client
            logger.info("rpc client for %s was closed; reconnecting", key)
        elif self._client is not None:
            logger.info(
                "rpc connection key changed (%s -> %s); disposing old client",
                self._key, key,
            )

        self._dispose_current()
        client = self._client_factory(argv, cwd, idle_seconds=self._idle_seconds)
        self._key = key
        self._client = client
        return client

    async def run_prompt(
        self,
        argv: list[str],
        prompt: str,
        *,
        cwd: str | None = None,
        timeout_seconds: float,
    ) -> RpcResult:
        client = self.get_client(argv, cwd)
        return await client.prompt(prompt, timeout_seconds)

    def reset(self) -> None:
        """Dispose the current client and clear the slot."""
        self._dispose_current()

    async def shutdown(self) -> None:
        client = self._client
        self._client = None
        self._key = None
        if client is not None:
            await client.shutdown()

    def _dispose_current(self) -> None:
        client = self._client
        self._client = None
        self._key = None
        if client is not None:
            client.dispose()


_cache: ConnectionCache | None = None


def get_connection_cache(
    *, idle_seconds: float = DEFAULT_IDLE_SECONDS,
) -> ConnectionCache:
    """Return the process-wide cache, creating it on first use.

    *idle_seconds* only applies when the cache is created.
    """
    global _cache
    if _cache is None:
        _cache = ConnectionCache(idle_seconds=idle_seconds)
    return _cache


def reset_connection_cache() -> None:
    """Dispose the live client (if any) and forget the cache."""
    global _cache
    if _cache is not None:
        _cache.reset()
    _cache = None


async def run_prompt(
    argv: list[str],
    prompt: str,
    *,
    cwd: str | None = None,
    timeout_seconds: float,
) -> RpcResult:
    """Send *prompt* to the persistent agent process for (argv, cwd)."""
    return await get_connection_cache().run_prompt(
        argv, prompt, cwd=cwd, timeout_seconds=timeout_seconds,
    )
