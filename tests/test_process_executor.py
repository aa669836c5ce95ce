from __future__ import annotations

import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

from gocars_batch.execution import run_job
from gocars_batch.executors import ExecutionContext, SubprocessExecutor
from gocars_batch.models import BatchCommand, BatchJob, CommandExecutionError


def _context(tmp_path: Path, **env: str) -> ExecutionContext:
    return ExecutionContext(env={**os.environ, **env}, cwd=tmp_path)


def test_subprocess_executor_captures_output_env_and_cwd(tmp_path: Path) -> None:
    script = "import os, sys; print(os.environ['GREETING'], os.getcwd()); sys.exit(3)"
    outcome = asyncio.run(
        SubprocessExecutor().run(
            [sys.executable, "-c", script], _context(tmp_path, GREETING="hello")
        )
    )
    assert outcome.exit_code == 3
    assert outcome.success is False
    greeting, cwd = outcome.output.split()
    assert greeting == "hello"
    assert Path(cwd).resolve() == tmp_path.resolve()


def test_subprocess_executor_merges_stderr(tmp_path: Path) -> None:
    script = "import sys; sys.stderr.write('oops\\n')"
    outcome = asyncio.run(
        SubprocessExecutor().run([sys.executable, "-c", script], _context(tmp_path))
    )
    assert outcome.exit_code == 0
    assert "oops" in outcome.output


def test_subprocess_executor_truncates_long_output(tmp_path: Path) -> None:
    script = "print('x' * 500)"
    outcome = asyncio.run(
        SubprocessExecutor(output_limit=100).run(
            [sys.executable, "-c", script], _context(tmp_path)
        )
    )
    assert outcome.output.startswith("x" * 100)
    assert "truncated" in outcome.output


def test_subprocess_executor_raises_for_missing_program(tmp_path: Path) -> None:
    with pytest.raises(CommandExecutionError, match="failed to spawn"):
        asyncio.run(
            SubprocessExecutor().run(
                ["definitely-not-a-real-program-gocars"], _context(tmp_path)
            )
        )


def test_missing_program_becomes_failed_result(tmp_path: Path) -> None:
    job = BatchJob(
        id="missing",
        name="Missing Program",
        commands=(BatchCommand(name="ghost", command="definitely-not-a-real-program-gocars"),),
    )
    result = run_job(job, SubprocessExecutor(), context=_context(tmp_path), retry_delay_sec=0)
    command = result.commands[0]
    assert command.success is False
    assert command.exit_code == 1
    assert "failed to spawn" in (command.error or "")


def test_timeout_kills_real_process(tmp_path: Path) -> None:
    marker = tmp_path / "finished.txt"
    script = (
        "import time, pathlib; time.sleep(5); "
        f"pathlib.Path({str(marker)!r}).write_text('done')"
    )
    job = BatchJob(
        id="slow",
        name="Slow",
        commands=(
            BatchCommand(
                name="sleep",
                command=sys.executable,
                args=("-c", script),
                timeout=300,
            ),
        ),
    )

    started = time.perf_counter()
    result = run_job(job, SubprocessExecutor(), context=_context(tmp_path), retry_delay_sec=0)

    assert time.perf_counter() - started < 4
    assert result.commands[0].exit_code == 124
    assert not marker.exists()


def test_sequential_job_with_real_processes(tmp_path: Path) -> None:
    job = BatchJob(
        id="real",
        name="Real",
        environment={"STAGE": "job"},
        commands=(
            BatchCommand(
                name="write",
                command=sys.executable,
                args=("-c", "import os; open('out.txt', 'w').write(os.environ['STAGE'])"),
            ),
            BatchCommand(
                name="fail",
                command=sys.executable,
                args=("-c", "raise SystemExit(2)"),
            ),
            BatchCommand(name="never", command=sys.executable, args=("-c", "pass")),
        ),
    )

    result = run_job(job, SubprocessExecutor(), context=_context(tmp_path), retry_delay_sec=0)

    assert (tmp_path / "out.txt").read_text() == "job"
    assert [item.exit_code for item in result.commands] == [0, 2, -1]
    assert result.summary.to_json() == {"total": 3, "passed": 1, "failed": 1, "skipped": 1}
