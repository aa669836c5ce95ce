"""Turn raw argv into a :class:`ParsedInvocation`.

The parser only shapes tokens; it never decides whether a value is valid
for a command. That is left to :meth:`Command.validate_args`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from gocars_batch.contract import GLOBAL_OPTIONS, Command, CommandSpec, OptionSpec

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d*\.\d+$")


def infer_value(text: str) -> Any:
    """Convert an option value to int, float or bool when it looks like one."""
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return text


@dataclass(frozen=True)
class ParsedInvocation:
    command: str | None
    subcommand: str | None = None
    args: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    raw_args: tuple[str, ...] = ()
    positionals: tuple[str, ...] = ()


class _Scope:
    """Option lookup for the command/subcommand resolved so far."""

    def __init__(self) -> None:
        self.command: Command | None = None
        self.subcommand: Command | None = None

    def _specs(self) -> list[CommandSpec]:
        specs = []
        if self.subcommand is not None:
            specs.append(self.subcommand.spec)
        if self.command is not None:
            specs.append(self.command.spec)
        return specs

    def canonical(self, name: str) -> str:
        for spec in self._specs():
            option = spec.option_for_alias(name)
            if option is not None:
                return option.name
        for option in GLOBAL_OPTIONS:
            if option.alias == name:
                return option.name
        return name

    def find(self, name: str) -> OptionSpec | None:
        for spec in self._specs():
            option = spec.option(name)
            if option is not None:
                return option
        for option in GLOBAL_OPTIONS:
            if option.name == name:
                return option
        return None

    def is_boolean(self, name: str) -> bool:
        option = self.find(self.canonical(name))
        return option is not None and option.type == "boolean"


class ArgumentParser:
    """Parse argv against a registry of top-level commands."""

    def __init__(self, commands: Mapping[str, Command]):
        self.commands = dict(commands)

    def _takes_value(self, scope: _Scope, name: str, following: str | None) -> bool:
        if following is None or following.startswith("-"):
            return False
        if scope.is_boolean(name):
            return following.lower() in ("true", "false")
        return True

    def parse(self, argv: Sequence[str]) -> ParsedInvocation:
        tokens = [str(item) for item in argv]
        scope = _Scope()
        command_name: str | None = None
        subcommand_name: str | None = None
        raw_options: list[tuple[str, Any]] = []
        positionals: list[str] = []

        index = 0
        while index < len(tokens):
            token = tokens[index]
            following = tokens[index + 1] if index + 1 < len(tokens) else None

            if token == "--":
                positionals.extend(tokens[index + 1 :])
                break

            if token.startswith("--") and len(token) > 2:
                body = token[2:]
                if "=" in body:
                    name, _, value = body.partition("=")
                    raw_options.append((name, infer_value(value)))
                elif self._takes_value(scope, body, following):
                    raw_options.append((body, infer_value(following or "")))
                    index += 1
                else:
                    raw_options.append((body, True))
            elif token.startswith("-") and len(token) > 1 and not _INT_RE.match(token):
                letters = token[1:]
                if len(letters) == 1 and self._takes_value(scope, letters, following):
                    raw_options.append((letters, infer_value(following or "")))
                    index += 1
                else:
                    raw_options.extend((letter, True) for letter in letters)
            elif command_name is None:
                command_name = token
                scope.command = self.commands.get(token)
            elif (
                subcommand_name is None
                and not positionals
                and scope.command is not None
                and scope.command.spec.subcommand(token) is not None
            ):
                subcommand_name = token
                scope.subcommand = scope.command.spec.subcommand(token)
            else:
                positionals.append(token)
            index += 1

        options: dict[str, Any] = {}
        for name, value in raw_options:
            options[scope.canonical(name)] = value

        target = scope.subcommand or scope.command
        args: dict[str, Any] = {}
        if target is not None:
            for spec, value in zip(target.spec.arguments, positionals):
                args[spec.name] = value

        return ParsedInvocation(
            command=command_name,
            subcommand=subcommand_name,
            args=args,
            options=options,
            raw_args=tuple(tokens),
            positionals=tuple(positionals),
        )
