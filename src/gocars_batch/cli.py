from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import Mapping, Sequence

from gocars_batch import __version__
from gocars_batch._logging import level_for_flags, setup_logging
from gocars_batch.commands import build_commands
from gocars_batch.contract import CliContext
from gocars_batch.dispatcher import Dispatcher
from gocars_batch.models import ConfigError
from gocars_batch.parsing import ArgumentParser
from gocars_batch.profiles import CliConfig, expand_alias, load_config

_cli_log = logging.getLogger("gocars_batch.cli")


def _prescan_config(argv: Sequence[str]) -> str | None:
    """Find ``--config``/``-c`` before parsing; aliases live in that file."""
    for index, token in enumerate(argv):
        if token.startswith("--config="):
            return token.split("=", 1)[1]
        if token in ("--config", "-c") and index + 1 < len(argv):
            following = argv[index + 1]
            if not following.startswith("-"):
                return following
    return None


def invoke(
    argv: Sequence[str],
    *,
    working_directory: Path | None = None,
    environment: Mapping[str, str] | None = None,
    config: CliConfig | None = None,
) -> int:
    """Parse and dispatch *argv* with an explicit context.

    Used for in-process re-entry by the ``cli`` executor: nothing here
    touches the process cwd or environment.
    """
    commands = build_commands()
    parsed = ArgumentParser(commands).parse(expand_alias(config, argv))
    context = CliContext.from_invocation(
        parsed,
        working_directory=working_directory,
        environment=environment,
        config=config,
    )
    return Dispatcher(commands, version=__version__).dispatch(parsed, context)


def main(argv: Sequence[str] | None = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    setup_logging(
        level=level_for_flags(
            verbose="--verbose" in raw_argv or "-v" in raw_argv,
            debug="--debug" in raw_argv,
        )
    )
    command = raw_argv[0] if raw_argv else "<none>"
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, " ".join(raw_argv))

    exit_code = 1
    try:
        cwd = Path.cwd()
        config_path = _prescan_config(raw_argv)
        if config_path is not None:
            config = load_config((cwd / config_path).resolve())
        else:
            config = load_config(start_dir=cwd)
        exit_code = invoke(raw_argv, working_directory=cwd, config=config)
    except ConfigError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=config error=%s", command, exc
        )
        print(f"[config error] {exc}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except RuntimeError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=runtime error=%s", command, exc
        )
        print(f"[runtime error] {exc}", file=sys.stderr)
        exit_code = 1
    except (OSError, KeyError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        duration_sec = time.perf_counter() - started
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            duration_sec,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
