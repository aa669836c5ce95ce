from __future__ import annotations

import datetime as dt
from typing import Sequence

from rich import box
from rich.table import Table

from gocars_batch._logging import get_logger
from gocars_batch.contract import PROG, CliContext, Command, CommandSpec, OptionSpec
from gocars_batch.execution import run_job
from gocars_batch.executors import (
    CliExecutor,
    ExecutionContext,
    Executor,
    SubprocessExecutor,
)
from gocars_batch.jobs import apply_overrides, find_job_files, lint_conditions, load_job_file
from gocars_batch.models import ConfigError, JobSetupError, JobValidationError
from gocars_batch.profiles import apply_profile, execute_hooks, merge_with_profile
from gocars_batch.report import REPORT_FORMATS, ProgressPrinter, render_result, write_result
from gocars_batch.templates import TEMPLATE_NAMES, generate_template
from gocars_batch.utils import atomic_write_text, document_format, render_document

_log = get_logger("commands.batch")

_SUBCOMMAND_NAMES = ("run", "create", "list", "validate", "status")


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _cli_executor(context: CliContext) -> CliExecutor:
    from gocars_batch.cli import invoke

    def dispatch(argv: Sequence[str], exec_context: ExecutionContext) -> int:
        # job files may spell out the program name; the dispatcher expects a command
        if argv and argv[0] == PROG:
            argv = argv[1:]
        return invoke(
            argv,
            working_directory=exec_context.cwd,
            environment=exec_context.env,
            config=context.config,
        )

    return CliExecutor(dispatch)


class RunSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="run",
                description="Execute a batch job",
                options=(
                    OptionSpec(
                        "parallel",
                        "Override parallel execution setting",
                        type="boolean",
                        alias="p",
                    ),
                    OptionSpec(
                        "continue-on-error",
                        "Continue execution even if commands fail",
                        type="boolean",
                    ),
                    OptionSpec(
                        "timeout",
                        "Override job timeout in milliseconds",
                        type="number",
                        alias="t",
                    ),
                    OptionSpec(
                        "retry-attempts",
                        "Override retry attempts for failed commands",
                        type="number",
                        alias="r",
                    ),
                    OptionSpec(
                        "working-directory",
                        "Override working directory",
                        alias="w",
                    ),
                    OptionSpec("profile", "Config profile to apply"),
                    OptionSpec(
                        "format",
                        "Report format (default: profile outputFormat or console)",
                        choices=REPORT_FORMATS,
                    ),
                    OptionSpec(
                        "executor",
                        "How commands are launched",
                        choices=("process", "cli"),
                        default="process",
                    ),
                    OptionSpec("no-hooks", "Skip config hooks", type="boolean"),
                ),
            )
        )

    def _executor(self, context: CliContext) -> Executor:
        if context.option("executor") == "cli":
            return _cli_executor(context)
        return SubprocessExecutor()

    def _run_hooks(self, hook_type: str, context: CliContext) -> None:
        if context.option("no-hooks") is True or context.config is None:
            return
        failed = execute_hooks(
            context.config,
            hook_type,
            cwd=context.working_directory,
            env=context.environment,
        )
        if failed:
            self.log_warning(f"{failed} {hook_type} hook(s) failed", context)

    def execute(self, context: CliContext) -> int:
        job_file = context.option("file")
        if not job_file:
            self.log_error("Batch job file is required (--file)", context)
            return 1

        try:
            job = load_job_file(context.resolve_path(str(job_file)))
        except JobValidationError as exc:
            self.log_error(str(exc), context)
            return 1

        fmt = context.option("format")
        max_concurrency: int | None = None
        profile_name = context.option("profile")
        if profile_name:
            if context.config is None:
                raise ConfigError(
                    f"--profile {profile_name} needs a config file; "
                    "run 'gocars-test config init' to create one"
                )
            job, profile = apply_profile(job, context.config, str(profile_name))
            if profile.parallel is not None and profile.parallel > 1:
                max_concurrency = profile.parallel
            fmt = merge_with_profile(profile, {"outputFormat": fmt}).get("outputFormat")
            self.log_verbose(f"Profile: {profile.name}", context)
        if fmt == "html":
            self.log_warning("HTML reports are not supported; using console output", context)
            fmt = "console"
        fmt = fmt or "console"

        try:
            job = apply_overrides(
                job,
                parallel=context.option("parallel"),
                continue_on_error=context.option("continue-on-error"),
                timeout=context.option("timeout"),
                retry_attempts=context.option("retry-attempts"),
                working_directory=context.option("working-directory"),
            )
        except JobValidationError as exc:
            self.log_error(str(exc), context)
            return 1

        console_output = fmt == "console"
        if console_output:
            self.log(f"Loading batch job: {job.name}", context)
        self.log_verbose(f"Job ID: {job.id}", context)
        self.log_verbose(f"Commands: {len(job.commands)}", context)

        self._run_hooks("preTest", context)
        base = ExecutionContext(
            env=dict(context.environment), cwd=context.working_directory
        )
        printer = ProgressPrinter() if console_output and not context.quiet else None
        try:
            result = run_job(
                job,
                self._executor(context),
                context=base,
                progress_callback=printer,
                max_concurrency=max_concurrency,
            )
        except JobSetupError as exc:
            self.log_error(f"Failed to execute batch job: {exc}", context)
            return 1

        if not (console_output and context.quiet):
            render_result(result, fmt)

        output = context.option("output")
        if output:
            target = write_result(
                result,
                context.resolve_path(str(output)),
                fmt="junit" if fmt == "junit" else "json",
            )
            if console_output:
                self.log(f"Results saved to: {target}", context)

        self._run_hooks("postTest", context)
        self._run_hooks("onSuccess" if result.success else "onFailure", context)
        return 0 if result.success else 1


class CreateSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="create",
                description="Create a new batch job file",
                options=(
                    OptionSpec(
                        "template",
                        "Template to use for the batch job",
                        choices=TEMPLATE_NAMES,
                        default="basic",
                        alias="t",
                    ),
                    OptionSpec(
                        "output-file",
                        "Output file path (default: ./batch-job.json or .yaml)",
                        alias="o",
                    ),
                    OptionSpec(
                        "format",
                        "Output format (default: taken from the file extension)",
                        choices=("json", "yaml"),
                        alias="f",
                    ),
                    OptionSpec("force", "Overwrite an existing file", type="boolean"),
                ),
            )
        )

    def execute(self, context: CliContext) -> int:
        template = str(context.option("template", "basic"))
        fmt = context.option("format")
        output_file = context.option("output-file")
        if output_file is None:
            output_file = f"./batch-job.{'yaml' if fmt == 'yaml' else 'json'}"
        target = context.resolve_path(str(output_file))

        try:
            suffix_format = document_format(target)
        except ValueError:
            self.log_error(
                f"Output file must end in .json, .yaml or .yml: {output_file}", context
            )
            return 1
        if fmt is None:
            fmt = suffix_format
        elif fmt != suffix_format:
            self.log_error(
                f"--format {fmt} does not match the extension of {output_file}", context
            )
            return 1

        if target.exists() and context.option("force") is not True:
            self.log_error(f"File already exists: {output_file}", context)
            self.log("Use a different output file or pass --force to overwrite it", context)
            return 1

        job = generate_template(template)
        atomic_write_text(target, render_document(job.to_json(), fmt))
        _log.info("job_created path=%s template=%s format=%s", target, template, fmt)

        self.log_success(f"Batch job created: {output_file}", context)
        self.log(f"Template: {template}", context)
        self.log(f"Format: {fmt}", context)
        self.log(f"Commands: {len(job.commands)}", context)
        return 0


class ListSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="list",
                description="List available batch job files",
                options=(
                    OptionSpec(
                        "directory",
                        "Directory to search for batch job files",
                        default=".",
                        alias="d",
                    ),
                    OptionSpec(
                        "recursive",
                        "Search recursively in subdirectories",
                        type="boolean",
                        default=False,
                        alias="r",
                    ),
                ),
            )
        )

    def execute(self, context: CliContext) -> int:
        directory = context.resolve_path(str(context.option("directory", ".")))
        job_files = find_job_files(directory, recursive=context.option("recursive") is True)
        if not job_files:
            self.log("No batch job files found", context)
            return 0

        table = Table(title=f"Batch Jobs ({len(job_files)})", box=box.SIMPLE)
        table.add_column("File", style="bold")
        table.add_column("Name")
        table.add_column("ID")
        table.add_column("Commands", justify="right")
        table.add_column("Parallel")
        table.add_column("Modified")
        for path in job_files:
            shown = str(path.relative_to(directory))
            modified = dt.datetime.fromtimestamp(path.stat().st_mtime).strftime(
                "%Y-%m-%d %H:%M"
            )
            try:
                job = load_job_file(path)
            except JobValidationError as exc:
                table.add_row(shown, f"invalid ({len(exc.errors)} errors)", "", "", "", modified)
                continue
            table.add_row(
                shown,
                job.name,
                job.id,
                str(len(job.commands)),
                _yes_no(job.parallel),
                modified,
            )
        self.render(table, context)
        return 0


class ValidateSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(name="validate", description="Validate a batch job file")
        )

    def execute(self, context: CliContext) -> int:
        job_file = context.option("file")
        if not job_file:
            self.log_error("Batch job file is required (--file)", context)
            return 1
        try:
            job = load_job_file(context.resolve_path(str(job_file)))
        except JobValidationError as exc:
            self.log_error(str(exc), context)
            return 1

        self.log_success("Batch job file is valid", context)
        self.log(f"Job: {job.name} ({job.id})", context)
        self.log(f"Commands: {len(job.commands)}", context)
        self.log(f"Parallel execution: {_yes_no(job.parallel)}", context)
        self.log(f"Continue on error: {_yes_no(job.continue_on_error)}", context)
        if job.timeout:
            self.log(f"Timeout: {job.timeout}ms", context)
        if job.retry_attempts:
            self.log(f"Retry attempts: {job.retry_attempts}", context)
        for position, command in enumerate(job.commands, start=1):
            self.log_verbose(f"  {position}. {command.name}: {' '.join(command.argv)}", context)
        for warning in lint_conditions(job):
            self.log_warning(warning, context)
        return 0


class StatusSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(name="status", description="Show status of batch jobs")
        )

    def execute(self, context: CliContext) -> int:
        self.log("No batch jobs are tracked: job state is not kept between runs.", context)
        self.log("Use 'batch run --output FILE' to keep a record of a run.", context)
        return 0


class BatchCli(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="batch",
                description="Execute batch jobs and automation scripts",
                usage="gocars-test batch <subcommand> [options]",
                options=(
                    OptionSpec("file", "Batch job file path", alias="f"),
                    OptionSpec("output", "Output file for batch results", alias="o"),
                ),
                subcommands=(
                    RunSubcommand(),
                    CreateSubcommand(),
                    ListSubcommand(),
                    ValidateSubcommand(),
                    StatusSubcommand(),
                ),
                examples=(
                    "gocars-test batch run --file ./batch-job.json",
                    "gocars-test batch create --template ci",
                    "gocars-test batch list",
                    "gocars-test batch validate --file ./batch-job.yaml",
                ),
            )
        )

    def execute(self, context: CliContext) -> int:
        self.log_error(
            f"Batch command requires a subcommand: {', '.join(_SUBCOMMAND_NAMES)}", context
        )
        self.log(self.get_help(), context)
        return 1


__all__ = ["BatchCli"]
