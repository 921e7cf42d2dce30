"""One-shot agent invocation.

Spawns the agent, feeds optional stdin, collects stdout/stderr
concurrently and enforces a wall-clock timeout with a hard kill.
"""
from __future__ import annotations

import asyncio
import logging
import shlex
import signal as _signal
from dataclasses import dataclass

from ..errors import AgentSpawnError

logger = logging.getLogger(__name__)

# Agent CLIs can print a whole reply as one JSON line.
STREAM_LIMIT = 16 * 1024 * 1024


@dataclass
class CommandResult:
    """Outcome of a finished (or killed) process."""
    stdout: str
    stderr: str
    code: int | None
    signal: str | None = None
    killed: bool = False

    @property
    def ok(self) -> bool:
        return self.code == 0 and not self.killed


def describe_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into (exit code, signal name).

    Negative return codes mean the process died from a signal.
    """
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, _signal.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


async def _read_all(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    chunks: list[str] = []
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        chunks.append(chunk.decode("utf-8", errors="replace"))
    return "".join(chunks)


async def run_command(
    argv: list[str],
    *,
    cwd: str | None = None,
    timeout_seconds: float | None = None,
    stdin: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run *argv* to completion and capture its output.

    A timeout kills the process (SIGKILL) and returns the partial
    output with ``killed=True`` instead of raising. Spawn failures
    raise AgentSpawnError.
    """
    if not argv:
        raise AgentSpawnError(argv, "empty command")
    logger.debug("run_command: %s (cwd=%s)", shlex.join(argv), cwd)
    try:
        # create_subprocess_exec passes args as array, no shell
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=(
                asyncio.subprocess.PIPE if stdin is not None
                else asyncio.subprocess.DEVNULL
            ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            limit=STREAM_LIMIT,
        )
    except OSError as exc:
        raise AgentSpawnError(argv, str(exc)) from exc

    stdout_task = asyncio.create_task(_read_all(proc.stdout))
    stderr_task = asyncio.create_task(_read_all(proc.stderr))

    killed = False
    try:
        if stdin is not None and proc.stdin is not None:
            try:
                proc.stdin.write(stdin.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("run_command: stdin closed early by %s", argv[0])
            finally:
                proc.stdin.close()
        await asyncio.wait_for(proc.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        killed = True
        logger.warning(
            "run_command: %s timed out after %ss; killing pid %d",
            argv[0], timeout_seconds, proc.pid,
        )
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        raise

    stdout, stderr = await asyncio.gather(stdout_task, stderr_task)
    code, sig = describe_returncode(proc.returncode)
    logger.debug(
        "run_command: %s finished code=%s signal=%s stdout=%d chars",
        argv[0], code, sig, len(stdout),
    )
    return CommandResult(
        stdout=stdout, stderr=stderr, code=code, signal=sig, killed=killed,
    )
