"""Streaming RPC client for a long-lived agent process.

The agent reads one JSON prompt envelope per stdin line and streams
JSON events on stdout. Nothing in the protocol says "turn over", so
completion is inferred: once an assistant ``message_end`` event has
been seen, the turn is considered finished after the output has been
quiet for a short idle window, provided the accumulated output already
contains reply text. Trailing events (tool calls, a second assistant
message) that arrive inside the window keep extending it.

One client owns exactly one process and serves at most one prompt
at a time.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass
from typing import Callable

from ..agents.base import AgentParseResult
from ..agents.pi_agent import is_assistant_message_end
from ..errors import (
    AgentSpawnError,
    RpcClientClosedError,
    RpcConcurrentRequestError,
    RpcOutputError,
    RpcProcessExitError,
    RpcTimeoutError,
)
from .exec import STREAM_LIMIT, describe_returncode

logger = logging.getLogger(__name__)

DEFAULT_IDLE_SECONDS = 0.12

OutputParser = Callable[[str], AgentParseResult]


@dataclass
class RpcResult:
    """Output of one completed turn."""
    stdout: str
    stderr: str
    code: int | None
    signal: str | None = None
    killed: bool = False


@dataclass
class _PendingRequest:
    future: asyncio.Future
    started_at: float
    timer: asyncio.TimerHandle | None = None


def prompt_envelope(prompt: str) -> str:
    """Serialize *prompt* as one newline-terminated wire line."""
    envelope = {
        "type": "prompt",
        "message": {
            "role": "user",
            "content": [{"type": "text", "text": prompt}],
        },
    }
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False) + "\n"


def is_turn_boundary(line: str) -> bool:
    """True when *line* is an assistant message_end event."""
    if '"message_end"' not in line:
        return False
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return False
    return isinstance(event, dict) and is_assistant_message_end(event)


def _default_parser(raw: str) -> AgentParseResult:
    from ..agents.base import AgentKind
    from ..agents.registry import get_agent_spec

    return get_agent_spec(AgentKind.PI).parse_output(raw)


class StreamingRpcClient:
    """Client for one persistent agent process speaking NDJSON.

    The process is spawned lazily by the first prompt(). After a
    timeout, an unexpected exit or dispose() the client is closed and
    a new one must be constructed.
    """

    def __init__(
        self,
        argv: list[str],
        cwd: str | None = None,
        *,
        parser: OutputParser | None = None,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
        env: dict[str, str] | None = None,
    ) -> None:
        if not argv:
            raise ValueError("StreamingRpcClient needs a non-empty argv")
        self._argv = list(argv)
        self._cwd = cwd
        self._env = env
        self._parser = parser or _default_parser
        self._idle_seconds = idle_seconds

        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._exit_task: asyncio.Task | None = None

        self._buffer: list[str] = []
        self._stderr_chunks: list[str] = []
        self._idle_handle: asyncio.TimerHandle | None = None
        self._turn_complete = False
        self._pending: _PendingRequest | None = None
        self._closed = False

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def cwd(self) -> str | None:
        return self._cwd

    @property
    def idle_seconds(self) -> float:
        return self._idle_seconds

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def prompt(self, prompt: str, timeout_seconds: float) -> RpcResult:
        """Send *prompt* and wait for the turn it starts to complete.

        Raises RpcConcurrentRequestError before any I/O when a prompt is
        already pending, RpcTimeoutError when the turn does not finish
        within *timeout_seconds* (the process is killed), and
        RpcProcessExitError when the process dies mid-turn.
        """
        if self._pending is not None:
            raise RpcConcurrentRequestError()
        if self._closed:
            raise RpcClientClosedError()

        loop = asyncio.get_running_loop()
        pending = _PendingRequest(
            future=loop.create_future(), started_at=loop.time(),
        )
        self._pending = pending
        pending.timer = loop.call_later(
            timeout_seconds, self._on_timeout, pending,
        )
        self._reset_turn()

        try:
            proc = await self._ensure_process()
            await self._write(proc, prompt_envelope(prompt))
        except asyncio.CancelledError:
            self._release(pending)
            if not pending.future.done():
                logger.warning("rpc: prompt cancelled during start-up; disposing client")
                self.dispose()
            raise
        except Exception:
            self._release(pending)
            if pending.future.done():
                # Timed out or disposed mid-write: that is the real failure.
                return await pending.future
            raise

        try:
            return await pending.future
        except asyncio.CancelledError:
            if self._pending is pending:
                logger.warning("rpc: prompt cancelled by caller; disposing client")
                self._release(pending)
                self.dispose()
            raise

    async def _ensure_process(self) -> asyncio.subprocess.Process:
        if self._process is not None:
            return self._process
        try:
            # create_subprocess_exec passes args as array, no shell
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            logger.error(
                "rpc: failed to start %s: %s", shlex.join(self._argv), exc,
            )
            raise AgentSpawnError(self._argv, str(exc)) from exc

        if self._closed:
            # Timed out or disposed while the spawn was in flight.
            logger.info("rpc: client closed during start-up; killing pid %d", proc.pid)
            proc.kill()
            await proc.wait()
            raise RpcClientClosedError()

        self._process = proc
        logger.info(
            "rpc process started (pid=%d): %s", proc.pid, shlex.join(self._argv),
        )
        self._stdout_task = asyncio.create_task(self._read_stdout(proc))
        self._stderr_task = asyncio.create_task(self._read_stderr(proc))
        self._exit_task = asyncio.create_task(self._watch_exit(proc))
        return proc

    async def _write(self, proc: asyncio.subprocess.Process, data: str) -> None:
        if proc.stdin is None:
            raise RpcProcessExitError(proc.returncode, None)
        try:
            proc.stdin.write(data.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            code, sig = describe_returncode(proc.returncode)
            raise RpcProcessExitError(code, sig) from exc

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            try:
                line = await proc.stdout.readline()
            except ValueError as exc:
                # readline() reports an over-long line as ValueError.
                if proc is self._process:
                    self._fail(RpcOutputError(str(exc)))
                return
            if not line:
                break
            if proc is not self._process:
                break
            self._handle_line(line.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                break
            if proc is not self._process:
                break
            self._stderr_chunks.append(chunk.decode("utf-8", errors="replace"))

    async def _watch_exit(self, proc: asyncio.subprocess.Process) -> None:
        returncode = await proc.wait()
        if proc is not self._process:
            return
        code, sig = describe_returncode(returncode)
        self._exit_task = None
        pending = self._pending
        if pending is not None and not pending.future.done():
            logger.warning(
                "rpc process %d exited mid-turn (code=%s, signal=%s)",
                proc.pid, code, sig,
            )
            self._release(pending)
            pending.future.set_exception(RpcProcessExitError(code, sig))
        else:
            logger.info(
                "rpc process %d exited (code=%s, signal=%s)", proc.pid, code, sig,
            )
        self.dispose()

    def _handle_line(self, line: str) -> None:
        if self._pending is None:
            # Nobody is waiting; late events of a finished turn.
            return
        self._buffer.append(line)
        if not self._turn_complete and is_turn_boundary(line):
            self._turn_complete = True
        if self._turn_complete:
            self._restart_idle_timer()

    def _restart_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_seconds, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_handle = None
        pending = self._pending
        if pending is None or pending.future.done():
            return
        output = "\n".join(self._buffer)
        parsed = self._parser(output)
        if not parsed.has_text:
            # Boundary without reply text yet; keep accumulating.
            logger.debug("rpc: turn boundary seen but no text yet; waiting")
            return
        self._reset_turn()
        self._release(pending)
        pending.future.set_result(RpcResult(
            stdout=output,
            stderr="".join(self._stderr_chunks),
            code=0,
        ))

    def _on_timeout(self, pending: _PendingRequest) -> None:
        if self._pending is not pending or pending.future.done():
            return
        elapsed = asyncio.get_running_loop().time() - pending.started_at
        logger.warning(
            "rpc prompt timed out after %.0fms; killing pid %s",
            elapsed * 1000, self.pid,
        )
        self._release(pending)
        pending.future.set_exception(RpcTimeoutError(elapsed))
        self.dispose()

    def _fail(self, exc: Exception) -> None:
        """Reject the pending request with *exc* and dispose."""
        logger.error("rpc: %s; disposing client", exc)
        pending = self._pending
        if pending is not None and not pending.future.done():
            self._release(pending)
            pending.future.set_exception(exc)
        self.dispose()

    def _release(self, pending: _PendingRequest) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None
        if self._pending is pending:
            self._pending = None

    def _reset_turn(self) -> None:
        self._buffer = []
        self._turn_complete = False
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def dispose(self) -> None:
        """Kill the process and drop all state. Safe to call repeatedly."""
        self._closed = True
        self._reset_turn()
        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        self._stdout_task = None
        self._stderr_task = None

        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            logger.info("rpc process %d killed", proc.pid)

        pending = self._pending
        if pending is not None:
            self._release(pending)
            if not pending.future.done():
                pending.future.set_exception(RpcClientClosedError())
        self._stderr_chunks = []

    async def shutdown(self) -> None:
        """Dispose and wait for the killed process to be reaped."""
        exit_task = self._exit_task
        self.dispose()
        if exit_task is not None and not exit_task.done():
            try:
                await asyncio.wait_for(exit_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("rpc: process did not exit within 5s of kill")

    def __repr__(self) -> str:
        return (
            f"<StreamingRpcClient argv={shlex.join(self._argv)!r} "
            f"pid={self.pid} closed={self._closed}>"
        )
