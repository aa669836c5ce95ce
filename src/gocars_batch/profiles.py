from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from gocars_batch.jobs import apply_overrides
from gocars_batch.models import BatchJob, ConfigError
from gocars_batch.utils import (
    atomic_write_text,
    document_format,
    load_document,
    render_document,
)

_log = logging.getLogger("gocars_batch.profiles")

CONFIG_FILENAMES = (
    ".gocars-test.json",
    ".gocars-test.yaml",
    ".gocars-test.yml",
    "gocars-test.config.json",
    "gocars-test.config.yaml",
    "gocars-test.config.yml",
)
DEFAULT_CONFIG_FILE = ".gocars-test.json"
OUTPUT_FORMATS = ("console", "json", "junit", "html")
HOOK_TYPES = ("preTest", "postTest", "onFailure", "onSuccess")
PROFILE_ENVIRONMENT_VAR = "GOCARS_TEST_ENVIRONMENT"
DEFAULT_SETTINGS: dict[str, Any] = {
    "environment": "development",
    "parallel": 1,
    "timeout": 300_000,
    "retryAttempts": 0,
    "outputFormat": "console",
    "reportDir": "./test-reports",
}
_SETTING_KEYS = {
    "description",
    "environment",
    "parallel",
    "timeout",
    "retryAttempts",
    "outputFormat",
    "reportDir",
}


@dataclass(frozen=True)
class Profile:
    """Named run settings. Unset fields inherit from the config defaults."""

    name: str
    description: str | None = None
    environment: str | None = None
    parallel: int | None = None
    timeout: int | None = None
    retry_attempts: int | None = None
    output_format: str | None = None
    report_dir: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key, value in (
            ("description", self.description),
            ("environment", self.environment),
            ("parallel", self.parallel),
            ("timeout", self.timeout),
            ("retryAttempts", self.retry_attempts),
            ("outputFormat", self.output_format),
            ("reportDir", self.report_dir),
        ):
            if value is not None:
                payload[key] = value
        payload.update(self.extras)
        return payload


@dataclass(frozen=True)
class Alias:
    name: str
    command: str
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def to_json(self) -> dict[str, Any]:
        return {"command": self.command, "args": list(self.args)}


@dataclass(frozen=True)
class CliConfig:
    version: str
    defaults: Profile
    profiles: dict[str, Profile] = field(default_factory=dict)
    aliases: dict[str, Alias] = field(default_factory=dict)
    hooks: dict[str, tuple[str, ...]] = field(default_factory=dict)
    path: Path | None = None

    def to_json(self) -> dict[str, Any]:
        defaults = self.defaults.to_json()
        defaults.pop("description", None)
        return {
            "version": self.version,
            "defaults": defaults,
            "profiles": {name: item.to_json() for name, item in self.profiles.items()},
            "aliases": {name: item.to_json() for name, item in self.aliases.items()},
            "hooks": {name: list(cmds) for name, cmds in self.hooks.items()},
        }


def _optional_str(value: Any, *, label: str, errors: list[str]) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append(f"{label} must be a string")
        return None
    return value.strip() or None


def _optional_int(
    value: Any, *, label: str, errors: list[str], minimum: int
) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        kind = "a positive integer" if minimum > 0 else "a non-negative integer"
        errors.append(f"{label} must be {kind}")
        return None
    return value


def _parse_settings(
    name: str, payload: Any, *, label: str, errors: list[str]
) -> Profile:
    if not isinstance(payload, Mapping):
        errors.append(f"{label} must be a mapping")
        return Profile(name=name)
    data = {str(key): value for key, value in payload.items()}

    output_format = _optional_str(
        data.get("outputFormat"), label=f"{label}.outputFormat", errors=errors
    )
    if output_format is not None and output_format not in OUTPUT_FORMATS:
        errors.append(
            f"{label}.outputFormat '{output_format}' is invalid. "
            f"Allowed: {', '.join(OUTPUT_FORMATS)}"
        )
        output_format = None

    return Profile(
        name=name,
        description=_optional_str(
            data.get("description"), label=f"{label}.description", errors=errors
        ),
        environment=_optional_str(
            data.get("environment"), label=f"{label}.environment", errors=errors
        ),
        parallel=_optional_int(
            data.get("parallel"), label=f"{label}.parallel", errors=errors, minimum=1
        ),
        timeout=_optional_int(
            data.get("timeout"), label=f"{label}.timeout", errors=errors, minimum=0
        ),
        retry_attempts=_optional_int(
            data.get("retryAttempts"),
            label=f"{label}.retryAttempts",
            errors=errors,
            minimum=0,
        ),
        output_format=output_format,
        report_dir=_optional_str(
            data.get("reportDir"), label=f"{label}.reportDir", errors=errors
        ),
        extras={key: value for key, value in data.items() if key not in _SETTING_KEYS},
    )


def _parse_alias(name: str, payload: Any, *, errors: list[str]) -> Alias | None:
    label = f"aliases.{name}"
    if not isinstance(payload, Mapping):
        errors.append(f"{label} must be a mapping")
        return None
    command = payload.get("command")
    args = payload.get("args")
    valid = True
    if not isinstance(command, str) or not command.strip():
        errors.append(f"{label}.command is required and must be a string")
        valid = False
    if not isinstance(args, list) or not all(isinstance(item, str) for item in args):
        errors.append(f"{label}.args must be a list of strings")
        valid = False
    if not valid:
        return None
    return Alias(name=name, command=command.strip(), args=tuple(args))


def _parse_hooks(payload: Any, *, errors: list[str]) -> dict[str, tuple[str, ...]]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        errors.append("hooks must be a mapping")
        return {}
    hooks: dict[str, tuple[str, ...]] = {}
    for raw_name, commands in payload.items():
        name = str(raw_name)
        if name not in HOOK_TYPES:
            errors.append(
                f"hooks.{name} is not a known hook. Allowed: {', '.join(HOOK_TYPES)}"
            )
            continue
        if commands is None:
            continue
        if not isinstance(commands, list) or not all(
            isinstance(item, str) for item in commands
        ):
            errors.append(f"hooks.{name} must be a list of strings")
            continue
        hooks[name] = tuple(item for item in commands if item.strip())
    return hooks


def _section(raw: Mapping[str, Any], key: str, *, errors: list[str]) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        errors.append(f"{key} must be a mapping")
        return {}
    return {str(name): item for name, item in value.items()}


def normalize_config(raw: Any, *, path: Path | None = None) -> CliConfig:
    """Fill defaults into a decoded config document and validate it.

    Every problem is collected and raised together as one :class:`ConfigError`.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Config file root must be a mapping: {path or '<memory>'}")

    errors: list[str] = []
    version = raw.get("version") or "1.0"
    if not isinstance(version, (str, int, float)) or isinstance(version, bool):
        errors.append("version must be a string")
        version = "1.0"

    defaults_raw = _section(raw, "defaults", errors=errors)
    defaults = _parse_settings(
        "defaults", {**DEFAULT_SETTINGS, **defaults_raw}, label="defaults", errors=errors
    )
    profiles = {
        name: _parse_settings(name, payload, label=f"profiles.{name}", errors=errors)
        for name, payload in _section(raw, "profiles", errors=errors).items()
    }
    aliases: dict[str, Alias] = {}
    for name, payload in _section(raw, "aliases", errors=errors).items():
        alias = _parse_alias(name, payload, errors=errors)
        if alias is not None:
            aliases[name] = alias
    hooks = _parse_hooks(raw.get("hooks"), errors=errors)

    if errors:
        where = f" ({path})" if path else ""
        joined = "\n".join(f"  - {item}" for item in errors)
        raise ConfigError(f"Config validation failed{where}:\n{joined}")

    return CliConfig(
        version=str(version),
        defaults=defaults,
        profiles=profiles,
        aliases=aliases,
        hooks=hooks,
        path=path,
    )


def find_config_file(start_dir: str | Path | None = None) -> Path | None:
    """Search *start_dir* and its ancestors for a known config file name."""
    start = Path(start_dir).expanduser().resolve() if start_dir else Path.cwd()
    for directory in (start, *start.parents):
        for filename in CONFIG_FILENAMES:
            candidate = directory / filename
            if candidate.is_file():
                return candidate
    return None


def load_config(
    path: str | Path | None = None, *, start_dir: str | Path | None = None
) -> CliConfig | None:
    """Load and normalize a config file.

    An explicit *path* must exist. Without one the file is discovered from
    *start_dir*, and ``None`` is returned when nothing is found.
    """
    if path is not None:
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_file():
            raise ConfigError(f"Config file not found: {resolved}")
    else:
        found = find_config_file(start_dir)
        if found is None:
            return None
        resolved = found

    try:
        document_format(resolved)
    except ValueError as exc:
        raise ConfigError(f"Unsupported config file format: {resolved}") from exc
    try:
        raw = load_document(resolved)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config file {resolved}: {exc}") from exc
    config = normalize_config(raw, path=resolved)
    _log.debug(
        "config_loaded path=%s profiles=%d aliases=%d",
        resolved,
        len(config.profiles),
        len(config.aliases),
    )
    return config


def save_config(config: CliConfig, path: str | Path) -> Path:
    target = Path(path).expanduser()
    try:
        fmt = document_format(target)
    except ValueError as exc:
        raise ConfigError(f"Unsupported config file format: {target}") from exc
    atomic_write_text(target, render_document(config.to_json(), fmt))
    return target


_DEFAULT_CONFIG_DOCUMENT: dict[str, Any] = {
    "version": "1.0",
    "defaults": dict(DEFAULT_SETTINGS),
    "profiles": {
        "development": {
            "description": "Development environment settings",
            "environment": "development",
            "parallel": 1,
            "timeout": 300_000,
            "outputFormat": "console",
        },
        "staging": {
            "description": "Staging environment settings",
            "environment": "staging",
            "parallel": 2,
            "timeout": 600_000,
            "outputFormat": "json",
        },
        "production": {
            "description": "Production environment settings",
            "environment": "production",
            "parallel": 4,
            "timeout": 900_000,
            "outputFormat": "junit",
        },
        "ci": {
            "description": "Continuous Integration settings",
            "environment": "ci",
            "parallel": 8,
            "timeout": 1_800_000,
            "retryAttempts": 3,
            "outputFormat": "junit",
        },
        "smoke": {
            "description": "Smoke test profile",
            "parallel": 2,
            "timeout": 120_000,
            "outputFormat": "console",
        },
        "regression": {
            "description": "Full regression test profile",
            "parallel": 4,
            "timeout": 3_600_000,
            "outputFormat": "console",
        },
    },
    "aliases": {
        "quick": {
            "command": "batch",
            "args": ["run", "--file", "./batch-job.json", "--profile", "smoke"],
        },
        "full": {
            "command": "batch",
            "args": ["run", "--file", "./batch-job.json", "--profile", "regression"],
        },
        "ci-test": {
            "command": "batch",
            "args": [
                "run",
                "--file",
                "./batch-job.json",
                "--profile",
                "ci",
                "--output",
                "./test-reports/results.xml",
            ],
        },
    },
    "hooks": {
        "preTest": ['echo "Starting test execution..."'],
        "postTest": ['echo "Test execution completed"'],
        "onFailure": ['echo "Tests failed - check logs for details"'],
        "onSuccess": ['echo "All tests passed successfully!"'],
    },
}


def create_default_config() -> CliConfig:
    return normalize_config(json.loads(json.dumps(_DEFAULT_CONFIG_DOCUMENT)))


def get_profile(config: CliConfig, name: str) -> Profile:
    """Return profile *name* with unset fields taken from ``config.defaults``."""
    profile = config.profiles.get(name)
    if profile is None:
        available = ", ".join(sorted(config.profiles)) or "<none>"
        raise ConfigError(f"Unknown profile '{name}'. Available: {available}")
    defaults = config.defaults

    def pick(value: Any, fallback: Any) -> Any:
        return fallback if value is None else value

    return Profile(
        name=name,
        description=profile.description,
        environment=pick(profile.environment, defaults.environment),
        parallel=pick(profile.parallel, defaults.parallel),
        timeout=pick(profile.timeout, defaults.timeout),
        retry_attempts=pick(profile.retry_attempts, defaults.retry_attempts),
        output_format=pick(profile.output_format, defaults.output_format),
        report_dir=pick(profile.report_dir, defaults.report_dir),
        extras={**defaults.extras, **profile.extras},
    )


def merge_with_profile(
    profile: Profile, cli_options: Mapping[str, Any]
) -> dict[str, Any]:
    """Layer CLI options over profile settings; ``None`` CLI values are ignored."""
    merged = profile.to_json()
    merged.update({key: value for key, value in cli_options.items() if value is not None})
    return merged


def apply_profile(job: BatchJob, config: CliConfig, name: str) -> tuple[BatchJob, Profile]:
    """Apply profile *name* to *job*.

    Settings written on the profile itself override the job file. Values
    the profile inherits from the config defaults only fill gaps the job
    file leaves.
    """
    merged = get_profile(config, name)
    own = config.profiles[name]

    def layered(own_value: Any, job_value: Any, default: Any) -> Any:
        if own_value is not None:
            return own_value
        if job_value is not None:
            return None
        return default

    environment = {}
    if merged.environment:
        environment[PROFILE_ENVIRONMENT_VAR] = merged.environment
    updated = apply_overrides(
        job,
        parallel=True if (merged.parallel or 1) > 1 else None,
        timeout=layered(own.timeout, job.timeout, merged.timeout),
        retry_attempts=layered(own.retry_attempts, job.retry_attempts, merged.retry_attempts),
        environment=environment,
    )
    _log.info(
        "profile_applied profile=%s job_id=%s parallel=%s timeout=%s retry_attempts=%s",
        name,
        job.id,
        updated.parallel,
        updated.timeout,
        updated.retry_attempts,
    )
    return updated, merged


def expand_alias(config: CliConfig | None, argv: Sequence[str]) -> list[str]:
    """Replace a leading alias token with the alias command and arguments."""
    items = list(argv)
    if config is None or not items:
        return items
    alias = config.aliases.get(items[0])
    if alias is None:
        return items
    expanded = [*alias.argv, *items[1:]]
    _log.debug("alias_expanded alias=%s argv=%s", alias.name, expanded)
    return expanded


def list_profiles(config: CliConfig) -> list[Profile]:
    return list(config.profiles.values())


def list_aliases(config: CliConfig) -> list[Alias]:
    return list(config.aliases.values())


def execute_hooks(
    config: CliConfig | None,
    hook_type: str,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Run the shell commands registered for *hook_type*.

    A failing hook is logged as a warning and never stops the caller.
    Returns the number of hooks that failed.
    """
    if hook_type not in HOOK_TYPES:
        raise ValueError(f"Unknown hook type '{hook_type}'. Allowed: {', '.join(HOOK_TYPES)}")
    if config is None:
        return 0
    failures = 0
    for command in config.hooks.get(hook_type, ()):
        _log.info("hook_start hook=%s command=%s", hook_type, command)
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=None if cwd is None else str(cwd),
                env=None if env is None else dict(env),
                check=False,
            )
        except OSError as exc:
            failures += 1
            _log.warning("hook_failed hook=%s command=%s error=%s", hook_type, command, exc)
            continue
        if completed.returncode != 0:
            failures += 1
            _log.warning(
                "hook_failed hook=%s command=%s exit_code=%s",
                hook_type,
                command,
                completed.returncode,
            )
    return failures
