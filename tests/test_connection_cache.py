"""Tests for the single-slot RPC connection cache."""
from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

import pytest

from warelay.process import connection as connection_module
from warelay.process import rpc_client as rpc_module
from warelay.process.connection import (
    ConnectionCache,
    connection_key,
    get_connection_cache,
    reset_connection_cache,
)
from warelay.process.rpc_client import RpcResult

FAKE_AGENT = Path(__file__).parent / "fake_rpc_agent.py"


class FakeClient:
    """Records lifecycle calls into a shared event log."""

    def __init__(self, argv, cwd=None, *, idle_seconds=0.12, events=None):
        self.argv = argv
        self.cwd = cwd
        self.idle_seconds = idle_seconds
        self.is_closed = False
        self.prompts: list[str] = []
        self._events = events if events is not None else []
        self._events.append(("create", cwd, tuple(argv)))

    def dispose(self) -> None:
        if not self.is_closed:
            self._events.append(("dispose", self.cwd, tuple(self.argv)))
        self.is_closed = True

    async def shutdown(self) -> None:
        self.dispose()

    async def prompt(self, prompt: str, timeout_seconds: float) -> RpcResult:
        self.prompts.append(prompt)
        return RpcResult(stdout=f"reply to {prompt}", stderr="", code=0)


@pytest.fixture
def events() -> list[tuple]:
    return []


@pytest.fixture
def cache(events) -> ConnectionCache:
    def _factory(argv, cwd=None, *, idle_seconds):
        return FakeClient(argv, cwd, idle_seconds=idle_seconds, events=events)

    return ConnectionCache(_factory, idle_seconds=0.2)


def test_connection_key_includes_cwd_and_quoted_argv() -> None:
    assert connection_key(["pi", "--mode", "rpc"], "/work") == "/work|pi --mode rpc"
    assert connection_key(["pi", "a b"]) == "|pi 'a b'"


def test_same_key_reuses_client(cache, events) -> None:
    first = cache.get_client(["pi", "--mode", "rpc"], "/a")
    second = cache.get_client(["pi", "--mode", "rpc"], "/a")

    assert first is second
    assert events == [("create", "/a", ("pi", "--mode", "rpc"))]
    assert first.idle_seconds == 0.2


def test_key_change_disposes_before_creating(cache, events) -> None:
    cache.get_client(["pi", "--mode", "rpc"], "/a")
    cache.get_client(["pi", "--mode", "rpc"], "/b")

    assert [e[0] for e in events] == ["create", "dispose", "create"]
    assert events[1][1] == "/a"
    assert events[2][1] == "/b"
    assert cache.key == connection_key(["pi", "--mode", "rpc"], "/b")


def test_argv_change_replaces_client(cache, events) -> None:
    a = cache.get_client(["pi", "--mode", "rpc"])
    b = cache.get_client(["pi", "--model", "opus", "--mode", "rpc"])

    assert a is not b
    assert a.is_closed
    assert not b.is_closed


def test_closed_client_is_replaced_for_same_key(cache, events) -> None:
    first = cache.get_client(["pi", "--mode", "rpc"])
    first.dispose()
    second = cache.get_client(["pi", "--mode", "rpc"])

    assert second is not first
    assert [e[0] for e in events] == ["create", "dispose", "create"]


def test_reset_disposes_and_clears_slot(cache, events) -> None:
    client = cache.get_client(["pi", "--mode", "rpc"])
    cache.reset()

    assert client.is_closed
    assert cache.client is None
    assert cache.key is None
    cache.reset()


@pytest.mark.asyncio
async def test_run_prompt_goes_through_cached_client(cache) -> None:
    result = await cache.run_prompt(
        ["pi", "--mode", "rpc"], "hello", timeout_seconds=5,
    )
    assert result.stdout == "reply to hello"
    assert cache.client.prompts == ["hello"]


@pytest.mark.asyncio
async def test_shutdown_clears_slot(cache) -> None:
    client = cache.get_client(["pi", "--mode", "rpc"])
    await cache.shutdown()
    assert client.is_closed
    assert cache.client is None


def test_module_level_cache_lifecycle() -> None:
    reset_connection_cache()
    try:
        cache = get_connection_cache(idle_seconds=0.3)
        assert get_connection_cache() is cache
    finally:
        reset_connection_cache()
    assert connection_module._cache is None


@pytest.mark.asyncio
async def test_key_change_kills_previous_process(monkeypatch) -> None:
    procs: list[asyncio.subprocess.Process] = []
    real_exec = asyncio.create_subprocess_exec

    async def _capture(*args, **kwargs):
        proc = await real_exec(*args, **kwargs)
        procs.append(proc)
        return proc

    monkeypatch.setattr(rpc_module.asyncio, "create_subprocess_exec", _capture)

    cache = ConnectionCache(idle_seconds=0.05)
    argv_a = [sys.executable, "-u", str(FAKE_AGENT), "reply"]
    argv_b = [sys.executable, "-u", str(FAKE_AGENT), "counter"]
    try:
        first = await cache.run_prompt(argv_a, "hi", timeout_seconds=10)
        second = await cache.run_prompt(argv_b, "hi", timeout_seconds=10)
    finally:
        cache.reset()

    assert "echo: hi" in first.stdout
    assert "turn 1" in second.stdout
    assert len(procs) == 2
    returncode = await asyncio.wait_for(procs[0].wait(), timeout=5)
    assert returncode == -signal.SIGKILL
