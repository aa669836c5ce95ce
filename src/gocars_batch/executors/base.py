from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol, Sequence


@dataclass(frozen=True)
class ExecutionContext:
    """Environment and working directory a command runs under.

    Contexts are values: scoping a job or a command produces a new context
    instead of mutating ``os.environ`` or the process cwd.
    """

    env: dict[str, str] = field(default_factory=dict)
    cwd: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_process(cls) -> "ExecutionContext":
        return cls(env=dict(os.environ), cwd=Path.cwd())

    def with_environment(self, overrides: Mapping[str, str]) -> "ExecutionContext":
        if not overrides:
            return self
        return dataclasses.replace(self, env={**self.env, **overrides})

    def with_working_directory(self, path: str | Path) -> "ExecutionContext":
        target = Path(path).expanduser()
        if not target.is_absolute():
            target = self.cwd / target
        return dataclasses.replace(self, cwd=target.resolve())


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int
    output: str = ""
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class Executor(Protocol):
    name: str

    async def run(
        self, argv: Sequence[str], context: ExecutionContext
    ) -> CommandOutcome: ...
