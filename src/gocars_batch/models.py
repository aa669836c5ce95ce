from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence


class BatchError(RuntimeError):
    """Base error for batch runner failures."""


class ConfigError(BatchError):
    """Raised when a config or job file is invalid."""


class JobValidationError(ConfigError):
    """Raised when a job document has structural problems.

    Every problem found is kept in ``errors`` so callers can report them all
    at once.
    """

    def __init__(self, errors: Sequence[str], *, source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        joined = "\n".join(f"  - {item}" for item in self.errors)
        super().__init__(f"Batch job validation failed{where}:\n{joined}")


class JobSetupError(BatchError):
    """Raised when a job cannot start, e.g. its working directory is unusable."""


class ConditionEvaluationError(BatchError):
    """Raised when a command condition cannot be parsed or evaluated."""


class CommandExecutionError(BatchError):
    """Raised by executors when a command cannot be launched at all."""


@dataclass(frozen=True)
class BatchCommand:
    name: str
    command: str
    args: tuple[str, ...] = ()
    timeout: int | None = None
    retry_attempts: int | None = None
    continue_on_error: bool | None = None
    condition: str | None = None
    environment: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
        }
        if self.timeout is not None:
            payload["timeout"] = self.timeout
        if self.retry_attempts is not None:
            payload["retryAttempts"] = self.retry_attempts
        if self.continue_on_error is not None:
            payload["continueOnError"] = self.continue_on_error
        if self.condition is not None:
            payload["condition"] = self.condition
        if self.environment:
            payload["environment"] = dict(self.environment)
        return payload


@dataclass(frozen=True)
class BatchJob:
    id: str
    name: str
    commands: tuple[BatchCommand, ...]
    description: str | None = None
    parallel: bool = False
    continue_on_error: bool = False
    timeout: int | None = None
    retry_attempts: int | None = None
    environment: dict[str, str] = field(default_factory=dict)
    working_directory: str | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
        }
        if self.description is not None:
            payload["description"] = self.description
        payload["parallel"] = self.parallel
        payload["continueOnError"] = self.continue_on_error
        if self.timeout is not None:
            payload["timeout"] = self.timeout
        if self.retry_attempts is not None:
            payload["retryAttempts"] = self.retry_attempts
        if self.environment:
            payload["environment"] = dict(self.environment)
        if self.working_directory is not None:
            payload["workingDirectory"] = self.working_directory
        payload["commands"] = [command.to_json() for command in self.commands]
        return payload


@dataclass(frozen=True)
class BatchCommandResult:
    name: str
    command: str
    args: tuple[str, ...]
    start_time: str
    end_time: str
    duration_ms: float
    exit_code: int
    success: bool
    output: str = ""
    error: str | None = None
    skipped: bool = False
    retry_count: int = 0

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration_ms,
            "exitCode": self.exit_code,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "skipped": self.skipped,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BatchCommandResult":
        error = payload.get("error")
        return cls(
            name=str(payload["name"]),
            command=str(payload["command"]),
            args=tuple(str(item) for item in payload.get("args", [])),
            start_time=str(payload["startTime"]),
            end_time=str(payload["endTime"]),
            duration_ms=float(payload.get("duration", 0)),
            exit_code=int(payload["exitCode"]),
            success=bool(payload["success"]),
            output=str(payload.get("output", "")),
            error=None if error is None else str(error),
            skipped=bool(payload.get("skipped", False)),
            retry_count=int(payload.get("retryCount", 0)),
        )


@dataclass(frozen=True)
class BatchSummary:
    total: int
    passed: int
    failed: int
    skipped: int

    @classmethod
    def from_results(cls, results: Iterable[BatchCommandResult]) -> "BatchSummary":
        items = list(results)
        return cls(
            total=len(items),
            passed=sum(1 for item in items if item.success and not item.skipped),
            failed=sum(1 for item in items if not item.success and not item.skipped),
            skipped=sum(1 for item in items if item.skipped),
        )

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.passed / self.total * 100.0

    def to_json(self) -> dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class BatchResult:
    job_id: str
    job_name: str
    start_time: str
    end_time: str
    duration_ms: float
    success: bool
    commands: tuple[BatchCommandResult, ...]
    summary: BatchSummary
    aborted_after: str | None = None

    @property
    def failed_commands(self) -> list[BatchCommandResult]:
        return [item for item in self.commands if not item.success and not item.skipped]

    def to_json(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "jobName": self.job_name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration_ms,
            "success": self.success,
            "abortedAfter": self.aborted_after,
            "commands": [item.to_json() for item in self.commands],
            "summary": self.summary.to_json(),
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BatchResult":
        commands = tuple(
            BatchCommandResult.from_json(item) for item in payload.get("commands", [])
        )
        aborted_after = payload.get("abortedAfter")
        return cls(
            job_id=str(payload["jobId"]),
            job_name=str(payload["jobName"]),
            start_time=str(payload["startTime"]),
            end_time=str(payload["endTime"]),
            duration_ms=float(payload.get("duration", 0)),
            success=bool(payload["success"]),
            commands=commands,
            summary=BatchSummary.from_results(commands),
            aborted_after=None if aborted_after is None else str(aborted_after),
        )
