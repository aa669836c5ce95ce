from __future__ import annotations

from rich import box
from rich.table import Table

from gocars_batch._logging import get_logger
from gocars_batch.contract import CliContext, Command, CommandSpec, OptionSpec
from gocars_batch.profiles import (
    DEFAULT_CONFIG_FILE,
    create_default_config,
    get_profile,
    list_aliases,
    list_profiles,
    save_config,
)
from gocars_batch.utils import render_document

_log = get_logger("commands.config")

_NO_CONFIG = "No config file found. Run 'gocars-test config init' to create one."


def _blank(value: object) -> str:
    return "" if value is None else str(value)


class InitSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="init",
                description="Write a default config file",
                options=(
                    OptionSpec(
                        "output-file",
                        "Config file path (.json, .yaml or .yml)",
                        default=DEFAULT_CONFIG_FILE,
                        alias="o",
                    ),
                    OptionSpec("force", "Overwrite an existing file", type="boolean"),
                ),
            )
        )

    def execute(self, context: CliContext) -> int:
        output_file = str(context.option("output-file", DEFAULT_CONFIG_FILE))
        target = context.resolve_path(output_file)
        if target.exists() and context.option("force") is not True:
            self.log_error(f"File already exists: {output_file}", context)
            self.log("Pass --force to overwrite it", context)
            return 1
        config = create_default_config()
        save_config(config, target)
        _log.info("config_created path=%s", target)
        self.log_success(f"Config file created: {output_file}", context)
        self.log(f"Profiles: {', '.join(config.profiles)}", context)
        self.log(f"Aliases: {', '.join(config.aliases)}", context)
        return 0


class ShowSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="show",
                description="Print the active config, or one profile merged over defaults",
                options=(OptionSpec("profile", "Profile to show", alias="p"),),
            )
        )

    def execute(self, context: CliContext) -> int:
        config = context.config
        if config is None:
            self.log_error(_NO_CONFIG, context)
            return 1
        profile_name = context.option("profile")
        if profile_name:
            payload = get_profile(config, str(profile_name)).to_json()
        else:
            payload = config.to_json()
        self.log_verbose(f"Config file: {config.path}", context)
        self.log(render_document(payload, "json").rstrip("\n"), context)
        return 0


class ProfilesSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(name="profiles", description="List configured profiles")
        )

    def execute(self, context: CliContext) -> int:
        config = context.config
        if config is None:
            self.log_error(_NO_CONFIG, context)
            return 1
        profiles = list_profiles(config)
        if not profiles:
            self.log("No profiles defined", context)
            return 0
        table = Table(title="Profiles", box=box.SIMPLE)
        table.add_column("Name", style="bold")
        table.add_column("Description")
        table.add_column("Environment")
        table.add_column("Parallel", justify="right")
        table.add_column("Timeout (ms)", justify="right")
        table.add_column("Retries", justify="right")
        table.add_column("Output")
        for profile in profiles:
            table.add_row(
                profile.name,
                _blank(profile.description),
                _blank(profile.environment),
                _blank(profile.parallel),
                _blank(profile.timeout),
                _blank(profile.retry_attempts),
                _blank(profile.output_format),
            )
        self.render(table, context)
        return 0


class AliasesSubcommand(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(name="aliases", description="List configured command aliases")
        )

    def execute(self, context: CliContext) -> int:
        config = context.config
        if config is None:
            self.log_error(_NO_CONFIG, context)
            return 1
        aliases = list_aliases(config)
        if not aliases:
            self.log("No aliases defined", context)
            return 0
        table = Table(title="Aliases", box=box.SIMPLE)
        table.add_column("Alias", style="bold")
        table.add_column("Expands To")
        for alias in aliases:
            table.add_row(alias.name, " ".join(alias.argv))
        self.render(table, context)
        return 0


class ConfigCli(Command):
    def __init__(self) -> None:
        super().__init__(
            CommandSpec(
                name="config",
                description="Manage config files, profiles and aliases",
                subcommands=(
                    InitSubcommand(),
                    ShowSubcommand(),
                    ProfilesSubcommand(),
                    AliasesSubcommand(),
                ),
                examples=(
                    "gocars-test config init",
                    "gocars-test config show --profile ci",
                    "gocars-test config profiles",
                ),
            )
        )

    def execute(self, context: CliContext) -> int:
        self.log_error("Config command requires a subcommand", context)
        self.log(self.get_help(), context)
        return 1
