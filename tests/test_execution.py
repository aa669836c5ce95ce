from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Any, Sequence

import pytest

from gocars_batch.execution import BatchEngine, run_job
from gocars_batch.executors import CommandOutcome, ExecutionContext
from gocars_batch.models import (
    BatchCommand,
    BatchJob,
    CommandExecutionError,
    JobSetupError,
)


class _ScriptedExecutor:
    """Executor double: exit codes come from a script keyed by executable."""

    name = "scripted"

    def __init__(
        self,
        script: dict[str, list[int]] | None = None,
        *,
        delay_sec: float = 0.0,
    ):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.delay_sec = delay_sec
        self.calls: list[tuple[list[str], ExecutionContext]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, argv: Sequence[str], context: ExecutionContext) -> CommandOutcome:
        self.calls.append((list(argv), context))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            codes = self.script.get(argv[0], [0])
            code = codes.pop(0) if len(codes) > 1 else codes[0]
            return CommandOutcome(exit_code=code, output=f"ran {argv[0]}")
        finally:
            self.in_flight -= 1


def _cmd(name: str, **kwargs: Any) -> BatchCommand:
    return BatchCommand(name=name, command=kwargs.pop("command", name), **kwargs)


def _job(*commands: BatchCommand, **kwargs: Any) -> BatchJob:
    return BatchJob(id="job-1", name="Job One", commands=tuple(commands), **kwargs)


def _run(job: BatchJob, executor: Any, **kwargs: Any):
    kwargs.setdefault("retry_delay_sec", 0)
    kwargs.setdefault("context", ExecutionContext(env={}, cwd=Path.cwd()))
    return run_job(job, executor, **kwargs)


def test_sequential_failure_stops_job_and_skips_remaining() -> None:
    executor = _ScriptedExecutor({"fail": [1]})
    job = _job(_cmd("A", command="noop"), _cmd("B", command="fail"), _cmd("C", command="noop"))

    result = _run(job, executor)

    assert result.success is False
    assert result.summary.to_json() == {"total": 3, "passed": 1, "failed": 1, "skipped": 1}
    assert result.aborted_after == "B"
    assert [argv for argv, _ in executor.calls] == [["noop"], ["fail"]]
    skipped = result.commands[2]
    assert skipped.name == "C"
    assert skipped.skipped is True
    assert skipped.success is False
    assert skipped.exit_code == -1
    assert skipped.duration_ms == 0


def test_continue_on_error_at_job_or_command_level() -> None:
    job_level = _job(_cmd("A", command="fail"), _cmd("B"), continue_on_error=True)
    executor = _ScriptedExecutor({"fail": [2]})
    result = _run(job_level, executor)
    assert len(executor.calls) == 2
    assert result.summary.failed == 1
    assert result.summary.passed == 1
    assert result.aborted_after is None
    assert result.success is False

    command_level = _job(_cmd("A", command="fail", continue_on_error=True), _cmd("B"))
    executor = _ScriptedExecutor({"fail": [2]})
    result = _run(command_level, executor)
    assert len(executor.calls) == 2
    assert result.commands[1].success is True


def test_parallel_runs_all_commands_and_keeps_declaration_order() -> None:
    executor = _ScriptedExecutor({"fail": [1]}, delay_sec=0.05)
    job = _job(
        _cmd("first"),
        _cmd("second", command="fail"),
        _cmd("third"),
        parallel=True,
    )

    started = time.perf_counter()
    result = _run(job, executor)
    elapsed = time.perf_counter() - started

    assert [item.name for item in result.commands] == ["first", "second", "third"]
    assert result.summary.to_json() == {"total": 3, "passed": 2, "failed": 1, "skipped": 0}
    assert executor.max_in_flight == 3
    assert elapsed < 0.5


def test_parallel_respects_max_concurrency() -> None:
    executor = _ScriptedExecutor(delay_sec=0.02)
    job = _job(*(_cmd(f"c{index}") for index in range(5)), parallel=True)

    result = _run(job, executor, max_concurrency=2)

    assert result.summary.passed == 5
    assert executor.max_in_flight == 2


def test_retry_until_success_records_attempt_index() -> None:
    executor = _ScriptedExecutor({"flaky": [1, 1, 0]})
    job = _job(_cmd("flaky", retry_attempts=3))

    result = _run(job, executor)

    command = result.commands[0]
    assert command.success is True
    assert command.retry_count == 2
    assert len(executor.calls) == 3


def test_retry_exhaustion_returns_last_failure_and_uses_job_default() -> None:
    executor = _ScriptedExecutor({"broken": [3, 4, 5]})
    job = _job(_cmd("broken"), retry_attempts=2)

    result = _run(job, executor)

    command = result.commands[0]
    assert command.success is False
    assert command.exit_code == 5
    assert command.retry_count == 2
    assert len(executor.calls) == 3


def test_command_retry_attempts_override_job_default() -> None:
    executor = _ScriptedExecutor({"broken": [1]})
    job = _job(_cmd("broken", retry_attempts=0), retry_attempts=5)

    _run(job, executor)

    assert len(executor.calls) == 1


def test_negative_retry_attempts_still_run_once() -> None:
    executor = _ScriptedExecutor({"broken": [2]})
    job = _job(_cmd("broken"), retry_attempts=-1)

    result = _run(job, executor)

    assert result.commands[0].exit_code == 2
    assert result.commands[0].retry_count == 0
    assert len(executor.calls) == 1


def test_retry_waits_fixed_delay_between_attempts() -> None:
    executor = _ScriptedExecutor({"broken": [1]})
    job = _job(_cmd("broken", retry_attempts=2))

    started = time.perf_counter()
    _run(job, executor, retry_delay_sec=0.05)
    elapsed = time.perf_counter() - started

    assert elapsed >= 0.09


def test_condition_false_skips_without_launching() -> None:
    executor = _ScriptedExecutor()
    job = _job(
        _cmd("ui", condition='${RUN_UI_TESTS} == "true"'),
        _cmd("api"),
    )

    result = _run(job, executor)

    ui = result.commands[0]
    assert ui.skipped is True
    assert ui.success is True
    assert ui.exit_code == 0
    assert ui.duration_ms == 0
    assert [argv for argv, _ in executor.calls] == [["api"]]
    assert result.success is True
    assert result.summary.skipped == 1


def test_condition_reads_job_environment() -> None:
    executor = _ScriptedExecutor()
    job = _job(
        _cmd("ui", condition='${RUN_UI_TESTS} == "true"'),
        environment={"RUN_UI_TESTS": "true"},
    )

    result = _run(job, executor)

    assert result.commands[0].skipped is False
    assert len(executor.calls) == 1


def test_quoted_placeholder_condition_runs_command() -> None:
    executor = _ScriptedExecutor()
    job = _job(
        _cmd("deploy-check", condition='"${TARGET_ENV}" == "staging"'),
        environment={"TARGET_ENV": "staging"},
    )

    result = _run(job, executor)

    assert result.commands[0].skipped is False
    assert [argv for argv, _ in executor.calls] == [["deploy-check"]]


def test_malformed_condition_is_treated_as_false(caplog: pytest.LogCaptureFixture) -> None:
    executor = _ScriptedExecutor()
    job = _job(_cmd("weird", condition="${A} === 'x'"))

    with caplog.at_level("WARNING", logger="gocars_batch"):
        result = _run(job, executor)

    assert result.commands[0].skipped is True
    assert executor.calls == []
    assert "condition_error" in caplog.text


def test_environment_layers_and_process_state_is_untouched(tmp_path: Path) -> None:
    workdir = tmp_path / "work"
    workdir.mkdir()
    executor = _ScriptedExecutor()
    job = _job(
        _cmd("a", environment={"LEVEL": "command"}),
        _cmd("b"),
        environment={"LEVEL": "job", "JOB_ONLY": "1"},
        working_directory="work",
    )
    env_before = dict(os.environ)
    cwd_before = Path.cwd()

    _run(job, executor, context=ExecutionContext(env={"BASE": "1"}, cwd=tmp_path))

    (_, first), (_, second) = executor.calls
    assert first.env == {"BASE": "1", "LEVEL": "command", "JOB_ONLY": "1"}
    assert second.env == {"BASE": "1", "LEVEL": "job", "JOB_ONLY": "1"}
    assert first.cwd == workdir.resolve()
    assert dict(os.environ) == env_before
    assert Path.cwd() == cwd_before


def test_missing_working_directory_is_a_setup_error(tmp_path: Path) -> None:
    executor = _ScriptedExecutor()
    job = _job(_cmd("a"), working_directory=str(tmp_path / "missing"))

    with pytest.raises(JobSetupError):
        _run(job, executor)
    assert executor.calls == []


def test_executor_exception_is_captured_and_retried() -> None:
    class _Exploding:
        name = "exploding"

        def __init__(self) -> None:
            self.attempts = 0

        async def run(self, argv: Sequence[str], context: ExecutionContext) -> CommandOutcome:
            self.attempts += 1
            if self.attempts == 1:
                raise CommandExecutionError("spawn failed")
            return CommandOutcome(exit_code=0)

    executor = _Exploding()
    failing = _run(_job(_cmd("a")), _Exploding())
    assert failing.commands[0].exit_code == 1
    assert failing.commands[0].error == "spawn failed"

    recovered = _run(_job(_cmd("a", retry_attempts=1)), executor)
    assert recovered.commands[0].success is True
    assert recovered.commands[0].retry_count == 1


def test_command_timeout_is_enforced() -> None:
    executor = _ScriptedExecutor(delay_sec=5)
    job = _job(_cmd("slow", timeout=50))

    started = time.perf_counter()
    result = _run(job, executor)

    assert time.perf_counter() - started < 2
    command = result.commands[0]
    assert command.exit_code == 124
    assert command.success is False
    assert "timed out" in (command.error or "")


def test_job_timeout_budget_fails_later_commands_without_launching() -> None:
    executor = _ScriptedExecutor({"slow": [0]}, delay_sec=0.2)
    job = _job(
        _cmd("slow"),
        _cmd("after", command="slow"),
        timeout=100,
        continue_on_error=True,
    )

    result = _run(job, executor)

    assert [item.exit_code for item in result.commands] == [124, 124]
    assert len(executor.calls) == 1
    assert "before the command could start" in (result.commands[1].error or "")


def test_progress_events_are_emitted_and_callback_errors_ignored() -> None:
    events: list[str] = []

    def _callback(event: dict[str, Any]) -> None:
        events.append(str(event["event"]))
        if event["event"] == "command_start":
            raise RuntimeError("printer broke")

    executor = _ScriptedExecutor({"flaky": [1, 0], "fail": [1]})
    job = _job(
        _cmd("skip-me", condition="false"),
        _cmd("flaky", retry_attempts=1),
        _cmd("fail"),
        _cmd("never"),
    )

    result = _run(job, executor, progress_callback=_callback)

    assert result.summary.to_json() == {"total": 4, "passed": 1, "failed": 1, "skipped": 2}
    assert events == [
        "job_start",
        "command_skipped",
        "command_start",
        "command_retry",
        "command_complete",
        "command_start",
        "command_complete",
        "job_aborted",
        "command_skipped",
        "job_end",
    ]


def test_result_counts_are_consistent() -> None:
    executor = _ScriptedExecutor({"fail": [1]})
    job = _job(
        _cmd("a"),
        _cmd("b", command="fail", continue_on_error=True),
        _cmd("c", condition="false"),
        _cmd("d", command="fail"),
        _cmd("e"),
    )

    result = asyncio.run(
        BatchEngine(executor, retry_delay_sec=0).execute_job(
            job, ExecutionContext(env={}, cwd=Path.cwd())
        )
    )

    summary = result.summary
    assert summary.total == len(job.commands) == len(result.commands)
    assert summary.passed + summary.failed + summary.skipped == summary.total
    assert result.success is (summary.failed == 0)
    assert all(item.duration_ms == 0 for item in result.commands if item.skipped)


def test_engine_rejects_invalid_settings() -> None:
    with pytest.raises(ValueError):
        BatchEngine(_ScriptedExecutor(), retry_delay_sec=-1)
    with pytest.raises(ValueError):
        BatchEngine(_ScriptedExecutor(), max_concurrency=0)
