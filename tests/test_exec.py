"""Tests for one-shot run_command()."""
from __future__ import annotations

import sys

import pytest

from warelay.errors import AgentSpawnError
from warelay.process.exec import describe_returncode, run_command


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


@pytest.mark.asyncio
async def test_run_command_captures_output() -> None:
    result = await run_command(
        _py("import sys; print('out'); print('err', file=sys.stderr)"),
        timeout_seconds=10,
    )
    assert result.ok
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.signal is None


@pytest.mark.asyncio
async def test_run_command_reports_exit_code() -> None:
    result = await run_command(_py("raise SystemExit(4)"), timeout_seconds=10)
    assert not result.ok
    assert result.code == 4
    assert not result.killed


@pytest.mark.asyncio
async def test_run_command_feeds_stdin() -> None:
    result = await run_command(
        _py("import sys; print(sys.stdin.read().upper())"),
        stdin="hello",
        timeout_seconds=10,
    )
    assert result.stdout.strip() == "HELLO"


@pytest.mark.asyncio
async def test_run_command_honours_cwd(tmp_path) -> None:
    result = await run_command(
        _py("import os; print(os.getcwd())"),
        cwd=str(tmp_path),
        timeout_seconds=10,
    )
    assert result.stdout.strip() == str(tmp_path.resolve())


@pytest.mark.asyncio
async def test_run_command_kills_on_timeout() -> None:
    result = await run_command(
        _py("import sys, time; print('partial', flush=True); time.sleep(30)"),
        timeout_seconds=0.5,
    )
    assert result.killed
    assert result.signal == "SIGKILL"
    assert result.code is None
    assert "partial" in result.stdout


@pytest.mark.asyncio
async def test_run_command_spawn_failure() -> None:
    with pytest.raises(AgentSpawnError) as exc_info:
        await run_command(["/nonexistent/warelay-binary", "hi"])
    assert "warelay-binary" in str(exc_info.value)


def test_describe_returncode() -> None:
    assert describe_returncode(0) == (0, None)
    assert describe_returncode(2) == (2, None)
    assert describe_returncode(-9) == (None, "SIGKILL")
    assert describe_returncode(None) == (None, None)
