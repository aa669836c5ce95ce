from __future__ import annotations

from gocars_batch.commands.batch import BatchCli
from gocars_batch.commands.config import ConfigCli
from gocars_batch.contract import Command


def build_commands() -> dict[str, Command]:
    """Return a fresh registry of the top-level commands, keyed by name."""
    commands: list[Command] = [BatchCli(), ConfigCli()]
    return {command.name: command for command in commands}


__all__ = ["BatchCli", "ConfigCli", "build_commands"]
