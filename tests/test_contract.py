from __future__ import annotations

from pathlib import Path

import pytest

from gocars_batch.commands import build_commands
from gocars_batch.contract import (
    ArgumentSpec,
    CliContext,
    Command,
    CommandSpec,
    OptionSpec,
)
from gocars_batch.parsing import ArgumentParser
from gocars_batch.profiles import create_default_config


class _Greet(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="greet",
                description="Say hello",
                arguments=(
                    ArgumentSpec("name", "Who to greet", required=True),
                    ArgumentSpec("times", "Repeat count", type="number", default=1),
                ),
                options=(
                    OptionSpec("loud", "Shout", type="boolean", alias="l"),
                    OptionSpec(
                        "style", "Greeting style", choices=("plain", "fancy"), default="plain"
                    ),
                    OptionSpec("count", "How many", type="number", required=True),
                ),
                examples=("gocars-test greet world --count 2",),
            )
        )

    def execute(self, context: CliContext) -> int:
        for _ in range(int(context.args["times"])):
            self.log(f"hello {context.args['name']}", context)
        return 0


def test_validate_args_reports_missing_required_values() -> None:
    errors = _Greet().validate_args(CliContext())
    assert errors == ["Missing required argument: name", "Missing required option: --count"]


def test_validate_args_reports_type_and_choice_errors() -> None:
    context = CliContext(
        args={"name": "world", "times": "abc"},
        options={"count": "many", "loud": "maybe", "style": "bold"},
    )
    errors = _Greet().validate_args(context)
    assert errors == [
        "Argument times must be a number (got 'abc')",
        "Option --loud must be true or false (got 'maybe')",
        "Option --style must be one of: plain, fancy",
        "Option --count must be a number (got 'many')",
    ]


def test_coerce_fills_defaults_and_converts_types() -> None:
    command = _Greet()
    context = CliContext(
        args={"name": "world", "times": "3"},
        options={"count": 2.0, "loud": "TRUE"},
    )
    assert command.validate_args(context) == []

    coerced = command.coerce(context)

    assert coerced.args == {"name": "world", "times": 3}
    assert coerced.options == {"count": 2, "loud": True, "style": "plain"}
    assert context.options == {"count": 2.0, "loud": "TRUE"}


def test_numbers_given_to_string_options_become_text() -> None:
    run = build_commands()["batch"].spec.subcommand("run")
    assert run is not None
    coerced = run.coerce(CliContext(options={"working-directory": 42, "parallel": True}))
    assert coerced.options["working-directory"] == "42"
    assert coerced.options["executor"] == "process"


def test_subcommands_see_parent_options() -> None:
    batch = build_commands()["batch"]
    run = batch.spec.subcommand("run")
    assert run is not None
    assert run.parent is batch
    assert run.command_path == "batch run"
    names = [option.name for option in run.options_in_scope()]
    assert "parallel" in names
    assert names[-2:] == ["file", "output"]


def test_usage_and_help_text() -> None:
    greet = _Greet()
    assert greet.get_usage() == "gocars-test greet <name> [times] [options]"

    text = greet.get_help()
    assert text.startswith("greet - Say hello")
    assert "Usage: gocars-test greet <name> [times] [options]" in text
    assert "Who to greet (required)" in text
    assert "-l, --loud" in text
    assert "--style <value>" in text
    assert "[choices: plain, fancy]" in text
    assert "[default: plain]" in text
    assert "gocars-test greet world --count 2" in text

    batch = build_commands()["batch"]
    assert batch.get_usage() == "gocars-test batch <subcommand> [options]"
    assert "Subcommands:" in batch.get_help()
    run = batch.spec.subcommand("run")
    assert run is not None
    assert run.get_usage() == "gocars-test batch run [options]"


def test_argument_spec_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        ArgumentSpec("size", type="integer")


def test_context_from_invocation(tmp_path: Path) -> None:
    parsed = ArgumentParser(build_commands()).parse(
        ["batch", "run", "-v", "--debug", "--file", "job.json"]
    )
    config = create_default_config()
    context = CliContext.from_invocation(
        parsed,
        working_directory=tmp_path,
        environment={"CI": "1"},
        config=config,
    )
    assert context.verbose is True
    assert context.debug is True
    assert context.quiet is False
    assert context.environment == {"CI": "1"}
    assert context.config is config
    assert context.config_file is None
    assert context.option("file") == "job.json"
    assert context.option("missing", "fallback") == "fallback"
    assert context.resolve_path("job.json") == tmp_path / "job.json"
    assert context.resolve_path(tmp_path / "abs.json") == tmp_path / "abs.json"

    with_path = CliContext.from_invocation(
        ArgumentParser(build_commands()).parse(["batch", "--config", "custom.yaml"]),
        environment={},
    )
    assert with_path.config_file == "custom.yaml"


def test_quiet_suppresses_normal_output_but_not_errors(
    capsys: pytest.CaptureFixture[str],
) -> None:
    greet = _Greet()
    quiet = CliContext(quiet=True)
    greet.log("hidden", quiet)
    greet.log_success("hidden", quiet)
    greet.log_verbose("hidden", CliContext(quiet=True, verbose=True))
    greet.log_error("shown", quiet)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Error: shown" in captured.err


def test_execute_runs_with_coerced_context(capsys: pytest.CaptureFixture[str]) -> None:
    greet = _Greet()
    context = greet.coerce(CliContext(args={"name": "world", "times": "2"}, options={"count": 1}))
    assert greet.execute(context) == 0
    assert capsys.readouterr().out.splitlines() == ["hello world", "hello world"]
