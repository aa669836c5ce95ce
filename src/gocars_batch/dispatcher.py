from __future__ import annotations

import logging
from typing import Iterable, Mapping

from gocars_batch.contract import GLOBAL_OPTIONS, PROG, CliContext, Command
from gocars_batch.parsing import ParsedInvocation
from gocars_batch.report import console

_log = logging.getLogger("gocars_batch.dispatcher")

_BUILTINS = (
    ("help", "Show help for a command"),
    ("version", "Show version information"),
)


class Dispatcher:
    """Resolve a parsed invocation to a command, validate it and run it."""

    def __init__(
        self,
        commands: Mapping[str, Command] | Iterable[Command],
        *,
        version: str,
        prog: str = PROG,
    ):
        if isinstance(commands, Mapping):
            self.commands = dict(commands)
        else:
            self.commands = {command.name: command for command in commands}
        self.version = version
        self.prog = prog

    def general_help(self) -> str:
        lines = [
            f"{self.prog} - batch job runner for test automation",
            "",
            f"Usage: {self.prog} <command> [subcommand] [options]",
            "",
            "Commands:",
        ]
        for name, command in self.commands.items():
            lines.append(f"  {name:<12} {command.spec.description}")
        for name, description in _BUILTINS:
            lines.append(f"  {name:<12} {description}")
        lines += ["", "Global options:"]
        for option in GLOBAL_OPTIONS:
            flag = f"-{option.alias}, --{option.name}" if option.alias else f"    --{option.name}"
            lines.append(f"  {flag:<18} {option.description}")
        lines += ["", f"Run '{self.prog} help <command>' for more information on a command."]
        return "\n".join(lines)

    def _print(self, text: str) -> None:
        console().print(text, markup=False, soft_wrap=True)

    def _error(self, text: str) -> None:
        console(stderr=True).print(text, style="bold red", markup=False, soft_wrap=True)

    def _resolve(self, names: list[str]) -> Command | None:
        if not names:
            return None
        command = self.commands.get(names[0])
        if command is None or len(names) == 1:
            return command
        return command.spec.subcommand(names[1])

    def _show_help(self, names: list[str]) -> int:
        if not names:
            self._print(self.general_help())
            return 0
        target = self._resolve(names)
        if target is None:
            self._error(f"Unknown command: {' '.join(names)}")
            self._print(f"Run '{self.prog} help' to see available commands.")
            return 1
        self._print(target.get_help())
        return 0

    def dispatch(self, parsed: ParsedInvocation, context: CliContext) -> int:
        try:
            return self._dispatch(parsed, context)
        except Exception as exc:
            _log.error(
                "dispatch_error command=%s subcommand=%s error=%s",
                parsed.command,
                parsed.subcommand,
                exc,
                exc_info=context.debug,
            )
            self._error(f"Error: {exc}")
            return 1

    def _dispatch(self, parsed: ParsedInvocation, context: CliContext) -> int:
        if parsed.command == "version" or parsed.options.get("version") is True:
            self._print(f"{self.prog} version {self.version}")
            return 0
        if parsed.command is None:
            self._print(self.general_help())
            return 0 if parsed.options.get("help") is True else 1
        if parsed.command == "help":
            return self._show_help(list(parsed.positionals[:2]))

        command = self.commands.get(parsed.command)
        if command is None:
            _log.info("unknown_command command=%s", parsed.command)
            self._error(f"Unknown command: {parsed.command}")
            self._print(f"Run '{self.prog} help' to see available commands.")
            return 1

        target = command
        if parsed.subcommand is not None:
            sub = command.spec.subcommand(parsed.subcommand)
            if sub is not None:
                target = sub

        if parsed.options.get("help") is True:
            self._print(target.get_help())
            return 0

        errors = target.validate_args(context)
        if errors:
            _log.info(
                "validation_failed command=%s errors=%d", target.command_path, len(errors)
            )
            for error in errors:
                self._error(f"Error: {error}")
            self._print(f"Usage: {target.get_usage()}")
            return 1

        _log.debug("command_execute command=%s", target.command_path)
        return int(target.execute(target.coerce(context)))
