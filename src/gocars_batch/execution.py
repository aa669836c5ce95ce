from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from gocars_batch.conditions import evaluate_condition
from gocars_batch.executors import (
    CommandOutcome,
    ExecutionContext,
    Executor,
    SubprocessExecutor,
)
from gocars_batch.models import (
    BatchCommand,
    BatchCommandResult,
    BatchJob,
    BatchResult,
    BatchSummary,
    ConditionEvaluationError,
    JobSetupError,
)
from gocars_batch.utils import elapsed_ms, utc_now_iso

_log = logging.getLogger("gocars_batch.execution")
ProgressEventCallback = Callable[[dict[str, Any]], None]

DEFAULT_RETRY_DELAY_SEC = 2.0
TIMEOUT_EXIT_CODE = 124
ABORTED_EXIT_CODE = -1


def _notify_progress_event(
    callback: ProgressEventCallback | None, event: dict[str, Any]
) -> None:
    if callback is None:
        return
    try:
        callback(event)
    except Exception as exc:
        _log.warning("Ignoring progress callback error: %s", exc)


def resolve_job_context(job: BatchJob, base: ExecutionContext) -> ExecutionContext:
    """Scope *base* to the job's working directory and environment.

    Raises :class:`JobSetupError` when the working directory is unusable.
    """
    context = base
    if job.working_directory:
        context = context.with_working_directory(job.working_directory)
        if not context.cwd.is_dir():
            raise JobSetupError(
                f"Working directory for job '{job.id}' does not exist or is not "
                f"a directory: {context.cwd}"
            )
    return context.with_environment(job.environment)


def _not_executed_result(
    command: BatchCommand,
    *,
    exit_code: int,
    success: bool,
    output: str,
) -> BatchCommandResult:
    now = utc_now_iso()
    return BatchCommandResult(
        name=command.name,
        command=command.command,
        args=command.args,
        start_time=now,
        end_time=now,
        duration_ms=0.0,
        exit_code=exit_code,
        success=success,
        output=output,
        skipped=True,
        retry_count=0,
    )


@dataclass(frozen=True)
class _JobRun:
    job: BatchJob
    context: ExecutionContext
    deadline: float | None


class BatchEngine:
    """Execute :class:`BatchJob` documents against an :class:`Executor`.

    Sequential jobs stop at the first unrecoverable failure and record the
    remaining commands as skipped. Parallel jobs launch every command at
    once and wait for all of them. Either way the result holds exactly one
    entry per declared command, in declaration order.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
        progress_callback: ProgressEventCallback | None = None,
        max_concurrency: int | None = None,
    ):
        if retry_delay_sec < 0:
            raise ValueError("retry_delay_sec must be >= 0")
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1 when provided")
        self.executor: Executor = executor or SubprocessExecutor()
        self.retry_delay_sec = retry_delay_sec
        self.progress_callback = progress_callback
        self.max_concurrency = max_concurrency

    def _emit(self, run: _JobRun, event: str, **fields: Any) -> None:
        payload = {"event": event, "time": utc_now_iso(), "job_id": run.job.id}
        payload.update(fields)
        _notify_progress_event(self.progress_callback, payload)

    async def execute_job(
        self, job: BatchJob, context: ExecutionContext | None = None
    ) -> BatchResult:
        base = context if context is not None else ExecutionContext.from_process()
        job_context = resolve_job_context(job, base)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + job.timeout / 1000.0 if job.timeout else None
        run = _JobRun(job=job, context=job_context, deadline=deadline)

        start_time = utc_now_iso()
        start_perf = time.perf_counter()
        _log.info(
            "job_start job_id=%s commands=%d parallel=%s cwd=%s",
            job.id,
            len(job.commands),
            job.parallel,
            job_context.cwd,
        )
        self._emit(
            run,
            "job_start",
            job_name=job.name,
            total=len(job.commands),
            parallel=job.parallel,
            working_directory=str(job_context.cwd),
        )

        aborted_after: str | None = None
        if job.parallel:
            results = await self._run_parallel(run)
        else:
            results, aborted_after = await self._run_sequential(run)

        summary = BatchSummary.from_results(results)
        end_perf = time.perf_counter()
        result = BatchResult(
            job_id=job.id,
            job_name=job.name,
            start_time=start_time,
            end_time=utc_now_iso(),
            duration_ms=elapsed_ms(start_perf, end_perf),
            success=summary.failed == 0,
            commands=tuple(results),
            summary=summary,
            aborted_after=aborted_after,
        )
        _log.info(
            "job_end job_id=%s success=%s passed=%d failed=%d skipped=%d duration_ms=%.3f",
            job.id,
            result.success,
            summary.passed,
            summary.failed,
            summary.skipped,
            result.duration_ms,
        )
        self._emit(
            run,
            "job_end",
            success=result.success,
            summary=summary.to_json(),
            duration_ms=result.duration_ms,
        )
        return result

    async def _run_sequential(
        self, run: _JobRun
    ) -> tuple[list[BatchCommandResult], str | None]:
        commands = run.job.commands
        results: list[BatchCommandResult] = []
        for index, command in enumerate(commands):
            result = await self._execute_command(run, command, index=index)
            results.append(result)
            if result.success or result.skipped:
                continue
            if run.job.continue_on_error or command.continue_on_error:
                continue

            remaining = commands[index + 1 :]
            _log.warning(
                "job_aborted job_id=%s failed_command=%s remaining=%d",
                run.job.id,
                command.name,
                len(remaining),
            )
            self._emit(
                run, "job_aborted", command=command.name, remaining=len(remaining)
            )
            for offset, pending in enumerate(remaining, start=index + 1):
                skipped = _not_executed_result(
                    pending,
                    exit_code=ABORTED_EXIT_CODE,
                    success=False,
                    output=f"Not executed: job stopped after '{command.name}' failed",
                )
                results.append(skipped)
                self._emit(
                    run,
                    "command_skipped",
                    index=offset,
                    command=pending.name,
                    reason="aborted",
                )
            return results, command.name
        return results, None

    async def _run_parallel(self, run: _JobRun) -> list[BatchCommandResult]:
        semaphore = (
            asyncio.Semaphore(self.max_concurrency)
            if self.max_concurrency is not None
            else None
        )

        async def _guarded(index: int, command: BatchCommand) -> BatchCommandResult:
            if semaphore is None:
                return await self._execute_command(run, command, index=index)
            async with semaphore:
                return await self._execute_command(run, command, index=index)

        gathered = await asyncio.gather(
            *(_guarded(index, command) for index, command in enumerate(run.job.commands))
        )
        return list(gathered)

    def _condition_allows(self, run: _JobRun, command: BatchCommand) -> bool:
        if command.condition is None:
            return True
        try:
            return evaluate_condition(command.condition, run.context.env)
        except ConditionEvaluationError as exc:
            _log.warning(
                "condition_error job_id=%s command=%s condition=%r error=%s",
                run.job.id,
                command.name,
                command.condition,
                exc,
            )
            return False

    async def _execute_command(
        self, run: _JobRun, command: BatchCommand, *, index: int
    ) -> BatchCommandResult:
        if not self._condition_allows(run, command):
            _log.info(
                "command_skipped job_id=%s command=%s reason=condition",
                run.job.id,
                command.name,
            )
            self._emit(
                run,
                "command_skipped",
                index=index,
                command=command.name,
                reason="condition",
                condition=command.condition,
            )
            return _not_executed_result(
                command,
                exit_code=0,
                success=True,
                output=f"Skipped due to condition: {command.condition}",
            )

        if command.retry_attempts is not None:
            max_retries = command.retry_attempts
        elif run.job.retry_attempts is not None:
            max_retries = run.job.retry_attempts
        else:
            max_retries = 0
        command_context = run.context.with_environment(command.environment)

        self._emit(
            run,
            "command_start",
            index=index,
            command=command.name,
            argv=command.argv,
        )
        attempt = 0
        result = await self._run_attempt(run, command, command_context, attempt)
        while not result.success and attempt < max_retries:
            _log.info(
                "retry_scheduled job_id=%s command=%s attempt=%d exit_code=%d delay_sec=%.1f",
                run.job.id,
                command.name,
                attempt,
                result.exit_code,
                self.retry_delay_sec,
            )
            await asyncio.sleep(self.retry_delay_sec)
            attempt += 1
            self._emit(
                run,
                "command_retry",
                index=index,
                command=command.name,
                attempt=attempt,
                max_retries=max_retries,
            )
            result = await self._run_attempt(run, command, command_context, attempt)

        self._emit(
            run,
            "command_complete",
            index=index,
            command=command.name,
            success=result.success,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            retry_count=result.retry_count,
            error=result.error,
        )
        return result

    def _attempt_timeout(self, run: _JobRun, command: BatchCommand) -> float | None:
        limits: list[float] = []
        if command.timeout:
            limits.append(command.timeout / 1000.0)
        if run.deadline is not None:
            limits.append(run.deadline - asyncio.get_running_loop().time())
        return min(limits) if limits else None

    async def _run_attempt(
        self,
        run: _JobRun,
        command: BatchCommand,
        context: ExecutionContext,
        attempt: int,
    ) -> BatchCommandResult:
        start_time = utc_now_iso()
        start_perf = time.perf_counter()
        timeout_sec = self._attempt_timeout(run, command)
        try:
            if timeout_sec is None:
                outcome = await self.executor.run(command.argv, context)
            elif timeout_sec <= 0:
                outcome = CommandOutcome(
                    exit_code=TIMEOUT_EXIT_CODE,
                    error="job timeout exceeded before the command could start",
                )
            else:
                outcome = await asyncio.wait_for(
                    self.executor.run(command.argv, context), timeout=timeout_sec
                )
        except asyncio.TimeoutError:
            outcome = CommandOutcome(
                exit_code=TIMEOUT_EXIT_CODE,
                error=f"timed out after {timeout_sec:.3f}s",
            )
        except Exception as exc:
            _log.warning(
                "command_error job_id=%s command=%s attempt=%d error=%s",
                run.job.id,
                command.name,
                attempt,
                exc,
            )
            outcome = CommandOutcome(exit_code=1, error=str(exc) or type(exc).__name__)
        end_perf = time.perf_counter()

        result = BatchCommandResult(
            name=command.name,
            command=command.command,
            args=command.args,
            start_time=start_time,
            end_time=utc_now_iso(),
            duration_ms=elapsed_ms(start_perf, end_perf),
            exit_code=outcome.exit_code,
            success=outcome.exit_code == 0,
            output=outcome.output,
            error=outcome.error,
            skipped=False,
            retry_count=attempt,
        )
        _log.debug(
            "attempt_end job_id=%s command=%s attempt=%d exit_code=%d duration_ms=%.3f",
            run.job.id,
            command.name,
            attempt,
            result.exit_code,
            result.duration_ms,
        )
        return result


def run_job(
    job: BatchJob,
    executor: Executor | None = None,
    *,
    context: ExecutionContext | None = None,
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
    progress_callback: ProgressEventCallback | None = None,
    max_concurrency: int | None = None,
) -> BatchResult:
    """Synchronous entry point: run *job* on a fresh event loop."""
    engine = BatchEngine(
        executor,
        retry_delay_sec=retry_delay_sec,
        progress_callback=progress_callback,
        max_concurrency=max_concurrency,
    )
    return asyncio.run(engine.execute_job(job, context=context))
