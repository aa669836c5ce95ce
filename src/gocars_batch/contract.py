from __future__ import annotations

import abc
import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from rich.console import RenderableType

from gocars_batch.report import console

if TYPE_CHECKING:
    from gocars_batch.parsing import ParsedInvocation
    from gocars_batch.profiles import CliConfig

_log = logging.getLogger("gocars_batch.contract")

PROG = "gocars-test"
VALUE_TYPES = ("string", "number", "boolean")
_BOOL_TEXT = {"true": True, "false": False}


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    description: str = ""
    required: bool = False
    type: str = "string"
    default: Any = None
    choices: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if self.type not in VALUE_TYPES:
            raise ValueError(f"{self.name}: type must be one of {VALUE_TYPES}")


@dataclass(frozen=True)
class OptionSpec(ArgumentSpec):
    alias: str | None = None


GLOBAL_OPTIONS = (
    OptionSpec("verbose", "Enable verbose output", type="boolean", alias="v"),
    OptionSpec("quiet", "Suppress non-error output", type="boolean", alias="q"),
    OptionSpec("config", "Path to a config file", alias="c"),
    OptionSpec("help", "Show help", type="boolean", alias="h"),
    OptionSpec("version", "Show version information", type="boolean"),
    OptionSpec("debug", "Log tracebacks for unexpected errors", type="boolean"),
)


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    usage: str | None = None
    arguments: tuple[ArgumentSpec, ...] = ()
    options: tuple[OptionSpec, ...] = ()
    subcommands: tuple["Command", ...] = ()
    examples: tuple[str, ...] = ()

    def subcommand(self, name: str) -> "Command | None":
        for item in self.subcommands:
            if item.name == name:
                return item
        return None

    def option_for_alias(self, alias: str) -> OptionSpec | None:
        for option in self.options:
            if option.alias == alias:
                return option
        return None

    def option(self, name: str) -> OptionSpec | None:
        for option in self.options:
            if option.name == name:
                return option
        return None


@dataclass(frozen=True)
class CliContext:
    """Everything a command needs to run, passed explicitly."""

    args: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    raw_args: tuple[str, ...] = ()
    positionals: tuple[str, ...] = ()
    working_directory: Path = field(default_factory=Path.cwd)
    environment: dict[str, str] = field(default_factory=dict)
    verbose: bool = False
    quiet: bool = False
    debug: bool = False
    config_file: str | None = None
    config: "CliConfig | None" = None

    @classmethod
    def from_invocation(
        cls,
        parsed: "ParsedInvocation",
        *,
        working_directory: Path | None = None,
        environment: Mapping[str, str] | None = None,
        config: "CliConfig | None" = None,
    ) -> "CliContext":
        options = dict(parsed.options)
        config_file = options.get("config")
        if config_file is None and config is not None and config.path is not None:
            config_file = str(config.path)
        return cls(
            args=dict(parsed.args),
            options=options,
            raw_args=tuple(parsed.raw_args),
            positionals=tuple(parsed.positionals),
            working_directory=working_directory or Path.cwd(),
            environment=dict(os.environ if environment is None else environment),
            verbose=options.get("verbose") is True,
            quiet=options.get("quiet") is True,
            debug=options.get("debug") is True,
            config_file=None if config_file is None else str(config_file),
            config=config,
        )

    def option(self, name: str, default: Any = None) -> Any:
        value = self.options.get(name)
        return default if value is None else value

    def resolve_path(self, value: str | Path) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.working_directory / path
        return path


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def _is_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, str) and value.lower() in _BOOL_TEXT


def _convert(value: Any, value_type: str) -> Any:
    if value_type == "number":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        number = float(value)
        return int(number) if number.is_integer() else number
    if value_type == "boolean":
        return value if isinstance(value, bool) else _BOOL_TEXT[str(value).lower()]
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _check_value(
    spec: ArgumentSpec, value: Any, *, label: str, errors: list[str]
) -> None:
    if spec.type == "number" and not _is_number(value):
        errors.append(f"{label} must be a number (got {value!r})")
        return
    if spec.type == "boolean" and not _is_boolean(value):
        errors.append(f"{label} must be true or false (got {value!r})")
        return
    if spec.type == "string" and not isinstance(value, (str, int, float, bool)):
        errors.append(f"{label} must be a string")
        return
    if spec.choices:
        allowed = [str(choice) for choice in spec.choices]
        if str(_convert(value, spec.type)) not in allowed:
            errors.append(f"{label} must be one of: {', '.join(allowed)}")


class Command(abc.ABC):
    """Base class for CLI commands.

    Subclasses provide a :class:`CommandSpec` and implement :meth:`execute`.
    Validation, coercion and help text are all derived from the command spec.
    """

    def __init__(self, spec: CommandSpec):
        self.spec = spec
        self.parent: Command | None = None
        for sub in spec.subcommands:
            sub.parent = self

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def command_path(self) -> str:
        if self.parent is None:
            return self.name
        return f"{self.parent.command_path} {self.name}"

    def options_in_scope(self) -> list[OptionSpec]:
        scoped = list(self.spec.options)
        if self.parent is not None:
            known = {option.name for option in scoped}
            scoped.extend(
                option for option in self.parent.options_in_scope() if option.name not in known
            )
        return scoped

    def validate_args(self, context: CliContext) -> list[str]:
        errors: list[str] = []
        for spec in self.spec.arguments:
            value = context.args.get(spec.name)
            if value is None:
                if spec.required:
                    errors.append(f"Missing required argument: {spec.name}")
                continue
            _check_value(spec, value, label=f"Argument {spec.name}", errors=errors)
        for spec in self.options_in_scope():
            value = context.options.get(spec.name)
            if value is None:
                if spec.required:
                    errors.append(f"Missing required option: --{spec.name}")
                continue
            _check_value(spec, value, label=f"Option --{spec.name}", errors=errors)
        return errors

    def coerce(self, context: CliContext) -> CliContext:
        """Fill declared defaults and convert values to their declared types.

        Call only after :meth:`validate_args` returned no errors.
        """
        args = dict(context.args)
        options = dict(context.options)
        specs: Iterable[tuple[dict[str, Any], ArgumentSpec]] = [
            *((args, spec) for spec in self.spec.arguments),
            *((options, spec) for spec in self.options_in_scope()),
        ]
        for target, spec in specs:
            value = target.get(spec.name)
            if value is None:
                if spec.default is not None:
                    target[spec.name] = spec.default
                continue
            target[spec.name] = _convert(value, spec.type)
        return dataclasses.replace(context, args=args, options=options)

    def get_usage(self) -> str:
        if self.spec.usage:
            return self.spec.usage
        parts = [PROG, self.command_path]
        if self.spec.subcommands:
            parts.append("<subcommand>")
        for spec in self.spec.arguments:
            parts.append(f"<{spec.name}>" if spec.required else f"[{spec.name}]")
        parts.append("[options]")
        return " ".join(parts)

    def get_help(self) -> str:
        lines = [f"{self.command_path} - {self.spec.description}", "", f"Usage: {self.get_usage()}"]
        if self.spec.arguments:
            lines += ["", "Arguments:"]
            for spec in self.spec.arguments:
                suffix = " (required)" if spec.required else ""
                lines.append(f"  {spec.name:<24} {spec.description}{suffix}")
        if self.spec.options:
            lines += ["", "Options:"]
            for spec in self.spec.options:
                flag = f"-{spec.alias}, --{spec.name}" if spec.alias else f"    --{spec.name}"
                if spec.type != "boolean":
                    flag += " <value>"
                details = spec.description
                if spec.choices:
                    details += f" [choices: {', '.join(str(item) for item in spec.choices)}]"
                if spec.default is not None:
                    details += f" [default: {spec.default}]"
                lines.append(f"  {flag:<32} {details}")
        if self.spec.subcommands:
            lines += ["", "Subcommands:"]
            for sub in self.spec.subcommands:
                lines.append(f"  {sub.name:<24} {sub.spec.description}")
        if self.spec.examples:
            lines += ["", "Examples:"]
            lines += [f"  {example}" for example in self.spec.examples]
        return "\n".join(lines)

    @abc.abstractmethod
    def execute(self, context: CliContext) -> int:
        raise NotImplementedError

    def log(self, message: str, context: CliContext) -> None:
        if not context.quiet:
            console().print(message, markup=False, soft_wrap=True)

    def log_verbose(self, message: str, context: CliContext) -> None:
        if context.verbose and not context.quiet:
            console().print(message, style="dim", markup=False, soft_wrap=True)

    def log_success(self, message: str, context: CliContext) -> None:
        if not context.quiet:
            console().print(message, style="green", markup=False, soft_wrap=True)

    def log_warning(self, message: str, context: CliContext) -> None:
        _log.warning("command_warning command=%s message=%s", self.command_path, message)
        if not context.quiet:
            console(stderr=True).print(
                f"Warning: {message}", style="yellow", markup=False, soft_wrap=True
            )

    def log_error(self, message: str, context: CliContext) -> None:
        console(stderr=True).print(
            f"Error: {message}", style="bold red", markup=False, soft_wrap=True
        )

    def render(self, renderable: RenderableType, context: CliContext) -> None:
        if not context.quiet:
            console().print(renderable)
