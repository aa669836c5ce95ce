from __future__ import annotations

import dataclasses
import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping

import yaml

from gocars_batch.conditions import parse_condition
from gocars_batch.models import (
    BatchCommand,
    BatchJob,
    ConditionEvaluationError,
    JobValidationError,
)
from gocars_batch.utils import DOCUMENT_SUFFIXES, document_format, load_document

_log = logging.getLogger("gocars_batch.jobs")
_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_JOB_FILE_MARKERS = ("batch", "job", "pipeline", "workflow")
JOB_ALLOWED_KEYS = {
    "id",
    "name",
    "description",
    "commands",
    "parallel",
    "continueOnError",
    "timeout",
    "retryAttempts",
    "environment",
    "workingDirectory",
}
COMMAND_ALLOWED_KEYS = {
    "name",
    "command",
    "args",
    "timeout",
    "retryAttempts",
    "continueOnError",
    "condition",
    "environment",
}


class _Collector:
    """Accumulates validation problems instead of failing on the first."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def add(self, message: str) -> None:
        self.errors.append(message)

    def required_str(self, value: Any, *, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            self.add(f"{label} is required and must be a non-empty string")
            return ""
        return value.strip()

    def optional_str(self, value: Any, *, label: str) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            self.add(f"{label} must be a string")
            return None
        return value.strip() or None

    def optional_bool(self, value: Any, *, label: str) -> bool | None:
        if value is None:
            return None
        if not isinstance(value, bool):
            self.add(f"{label} must be a boolean")
            return None
        return value

    def optional_non_negative_int(self, value: Any, *, label: str) -> int | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            self.add(f"{label} must be an integer")
            return None
        if value < 0:
            self.add(f"{label} must be >= 0")
            return None
        return value

    def str_list(self, value: Any, *, label: str) -> tuple[str, ...]:
        if not isinstance(value, list):
            self.add(f"{label} must be an array")
            return ()
        out: list[str] = []
        for index, item in enumerate(value):
            if isinstance(item, bool):
                out.append("true" if item else "false")
            elif isinstance(item, (str, int, float)):
                out.append(str(item))
            else:
                self.add(f"{label}[{index}] must be a scalar value")
        return tuple(out)

    def env_map(self, value: Any, *, label: str) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            self.add(f"{label} must be a mapping")
            return {}
        env: dict[str, str] = {}
        for key, val in value.items():
            env_key = str(key)
            if not _ENV_NAME_RE.match(env_key):
                self.add(f"{label}.{env_key} is not a valid environment variable name")
                continue
            if isinstance(val, bool):
                env[env_key] = "true" if val else "false"
            elif isinstance(val, (str, int, float)):
                env[env_key] = str(val)
            else:
                self.add(f"{label}.{env_key} must be a scalar value (str/int/float/bool)")
        return env


def _warn_unknown_keys(data: Mapping[str, Any], allowed: set[str], *, label: str) -> None:
    unknown = sorted(str(key) for key in data.keys() if key not in allowed)
    if unknown:
        _log.warning("job_unknown_keys label=%s keys=%s", label, unknown)


def _parse_command(
    payload: Any, *, index: int, collector: _Collector
) -> BatchCommand | None:
    label = f"commands[{index}]"
    if not isinstance(payload, Mapping):
        collector.add(f"{label} must be a mapping")
        return None
    _warn_unknown_keys(payload, COMMAND_ALLOWED_KEYS, label=label)
    before = len(collector.errors)
    name = collector.required_str(payload.get("name"), label=f"{label}.name")
    command = collector.required_str(payload.get("command"), label=f"{label}.command")
    args = collector.str_list(payload.get("args"), label=f"{label}.args")
    timeout = collector.optional_non_negative_int(
        payload.get("timeout"), label=f"{label}.timeout"
    )
    retry_attempts = collector.optional_non_negative_int(
        payload.get("retryAttempts"), label=f"{label}.retryAttempts"
    )
    continue_on_error = collector.optional_bool(
        payload.get("continueOnError"), label=f"{label}.continueOnError"
    )
    condition = collector.optional_str(
        payload.get("condition"), label=f"{label}.condition"
    )
    environment = collector.env_map(
        payload.get("environment"), label=f"{label}.environment"
    )
    if len(collector.errors) != before:
        return None
    return BatchCommand(
        name=name,
        command=command,
        args=args,
        timeout=timeout,
        retry_attempts=retry_attempts,
        continue_on_error=continue_on_error,
        condition=condition,
        environment=environment,
    )


def validate_job(payload: Any, *, source: str | None = None) -> BatchJob:
    """Build a :class:`BatchJob` from a decoded document.

    All structural problems are collected and raised together as a
    :class:`JobValidationError`.
    """
    if not isinstance(payload, Mapping):
        raise JobValidationError(["job document root must be a mapping"], source=source)
    _warn_unknown_keys(payload, JOB_ALLOWED_KEYS, label="job")

    collector = _Collector()
    job_id = collector.required_str(payload.get("id"), label="id")
    name = collector.required_str(payload.get("name"), label="name")
    description = collector.optional_str(payload.get("description"), label="description")
    parallel = collector.optional_bool(payload.get("parallel"), label="parallel")
    continue_on_error = collector.optional_bool(
        payload.get("continueOnError"), label="continueOnError"
    )
    timeout = collector.optional_non_negative_int(payload.get("timeout"), label="timeout")
    retry_attempts = collector.optional_non_negative_int(
        payload.get("retryAttempts"), label="retryAttempts"
    )
    environment = collector.env_map(payload.get("environment"), label="environment")
    working_directory = collector.optional_str(
        payload.get("workingDirectory"), label="workingDirectory"
    )

    commands: list[BatchCommand] = []
    raw_commands = payload.get("commands")
    if not isinstance(raw_commands, list):
        collector.add("commands is required and must be an array")
    elif not raw_commands:
        collector.add("commands must contain at least one command")
    else:
        for index, item in enumerate(raw_commands):
            parsed = _parse_command(item, index=index, collector=collector)
            if parsed is not None:
                commands.append(parsed)

    if collector.errors:
        raise JobValidationError(collector.errors, source=source)

    return BatchJob(
        id=job_id,
        name=name,
        description=description,
        commands=tuple(commands),
        parallel=bool(parallel),
        continue_on_error=bool(continue_on_error),
        timeout=timeout,
        retry_attempts=retry_attempts,
        environment=environment,
        working_directory=working_directory,
    )


def load_job_file(path: str | Path) -> BatchJob:
    resolved = Path(path).expanduser()
    if not resolved.is_file():
        raise JobValidationError([f"batch job file not found: {resolved}"])
    try:
        document_format(resolved)
    except ValueError as exc:
        raise JobValidationError([str(exc)], source=str(resolved)) from exc
    try:
        payload = load_document(resolved)
    except (OSError, UnicodeDecodeError) as exc:
        raise JobValidationError(
            [f"could not read file: {exc}"], source=str(resolved)
        ) from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise JobValidationError(
            [f"could not parse file: {exc}"], source=str(resolved)
        ) from exc
    job = validate_job(payload, source=str(resolved))
    _log.debug(
        "job_loaded path=%s job_id=%s commands=%d", resolved, job.id, len(job.commands)
    )
    return job


def lint_conditions(job: BatchJob) -> list[str]:
    """Return warnings for conditions that will not parse.

    Bad conditions are not fatal at run time (the command is skipped), so
    they are reported separately from validation errors.
    """
    warnings: list[str] = []
    for index, command in enumerate(job.commands):
        if command.condition is None:
            continue
        try:
            parse_condition(command.condition)
        except ConditionEvaluationError as exc:
            warnings.append(f"commands[{index}].condition: {exc}")
    return warnings


def apply_overrides(
    job: BatchJob,
    *,
    parallel: bool | None = None,
    continue_on_error: bool | None = None,
    timeout: int | None = None,
    retry_attempts: int | None = None,
    working_directory: str | None = None,
    environment: Mapping[str, str] | None = None,
) -> BatchJob:
    """Return a copy of *job* with every non-``None`` override applied.

    ``environment`` is layered over the job's own environment and wins on
    conflicting keys. Raises :class:`JobValidationError` when *timeout* or
    *retry_attempts* is not a non-negative integer.
    """
    collector = _Collector()
    timeout = collector.optional_non_negative_int(timeout, label="timeout")
    retry_attempts = collector.optional_non_negative_int(retry_attempts, label="retryAttempts")
    if collector.errors:
        raise JobValidationError(collector.errors)

    changes: dict[str, Any] = {}
    if parallel is not None:
        changes["parallel"] = parallel
    if continue_on_error is not None:
        changes["continue_on_error"] = continue_on_error
    if timeout is not None:
        changes["timeout"] = timeout
    if retry_attempts is not None:
        changes["retry_attempts"] = retry_attempts
    if working_directory is not None:
        changes["working_directory"] = working_directory
    if environment:
        changes["environment"] = {**job.environment, **environment}
    if not changes:
        return job
    return dataclasses.replace(job, **changes)


def looks_like_job_file(path: Path) -> bool:
    if path.suffix.lower() not in DOCUMENT_SUFFIXES:
        return False
    lowered = path.name.lower()
    return any(marker in lowered for marker in _JOB_FILE_MARKERS)


def find_job_files(directory: str | Path, *, recursive: bool = False) -> list[Path]:
    root = Path(directory).expanduser()
    if not root.is_dir():
        return []
    candidates = root.rglob("*") if recursive else root.iterdir()
    return sorted(
        path for path in candidates if path.is_file() and looks_like_job_file(path)
    )
