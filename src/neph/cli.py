"""Neph CLI - Main entry point."""

import sys
from pathlib import Path
from typing import Any, Optional

import click

from neph import __version__
from neph.commands import CommandContext, execute
from neph.config import DEFAULT_CONFIG_DIR, load_settings
from neph.errors import NephError
from neph.logging import configure_logging
from neph.models import Command, ExitCode
from neph.output import OutputFormatter
from neph.remote.connect import open_connection


class NephGroup(click.Group):
    """Click group that reports usage errors with neph's exit code."""

    def make_context(self, info_name: Optional[str], args: list[str], parent=None, **extra: Any):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            e.exit_code = ExitCode.CLI_BAD_ARGUMENTS
            raise

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = ExitCode.CLI_BAD_ARGUMENTS
            raise


def run_command(ctx: click.Context, command: Command, **kwargs: Any) -> None:
    """Execute a command and exit with its status."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        settings = load_settings(ctx.obj["config_dir"])
        context = CommandContext(
            settings=settings,
            formatter=formatter,
            connector=ctx.obj.get("connector", open_connection),
        )
        status = execute(command, context, **kwargs)
    except NephError as e:
        formatter.print_error(e.message, e.hint)
        sys.exit(int(e.exit_code))

    if status != ExitCode.SUCCESS:
        sys.exit(status)


@click.group(cls=NephGroup)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    envvar="NEPH_CONFIG_DIR",
    help=f"Configuration directory (default: {DEFAULT_CONFIG_DIR})",
)
@click.option("--verbose", "-v", count=True, help="Increase logging verbosity")
@click.option("--quiet", "-q", count=True, help="Decrease logging verbosity")
@click.version_option(version=__version__, prog_name="neph")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    config_dir: Optional[str],
    verbose: int,
    quiet: int,
) -> None:
    """Neph - install, configure and run scripts on remote hosts.

    Uses passwordless SSH as a privileged service user. Every command takes
    a host, which may be 'localhost'.
    """
    configure_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["formatter"] = OutputFormatter(json_output)
    ctx.obj["config_dir"] = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR


@cli.command("exec", context_settings={"ignore_unknown_options": True})
@click.argument("host")
@click.argument("script")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def exec_script(ctx: click.Context, host: str, script: str, args: tuple[str, ...]) -> None:
    """Execute a script from the scripts directory on HOST."""
    run_command(ctx, Command.EXEC, host=host, script=script, args=args)


@cli.command("apply")
@click.argument("host")
@click.argument("config_file", metavar="CONFIGFILE")
@click.argument("block_file", metavar="DTBFILE")
@click.pass_context
def apply_block(ctx: click.Context, host: str, config_file: str, block_file: str) -> None:
    """Apply a delimited text block to a config file on HOST."""
    run_command(
        ctx, Command.APPLY, host=host, config_file=config_file, block_file=block_file
    )


@cli.command("examine")
@click.argument("host")
@click.argument("config_file", metavar="CONFIGFILE")
@click.pass_context
def examine_block(ctx: click.Context, host: str, config_file: str) -> None:
    """Print the delimited text block of a config file on HOST."""
    run_command(ctx, Command.EXAMINE, host=host, config_file=config_file)


# --- Info Commands ---

@cli.group("info", cls=NephGroup)
def info() -> None:
    """List configs, scripts or hosts known to a host."""


@info.command("configs")
@click.argument("host", default="localhost")
@click.pass_context
def info_configs(ctx: click.Context, host: str) -> None:
    """List configuration files."""
    run_command(ctx, Command.INFO_CONFIGS, host=host)


@info.command("scripts")
@click.argument("host", default="localhost")
@click.pass_context
def info_scripts(ctx: click.Context, host: str) -> None:
    """List scripts."""
    run_command(ctx, Command.INFO_SCRIPTS, host=host)


@info.command("hosts")
@click.argument("host", default="localhost")
@click.pass_context
def info_hosts(ctx: click.Context, host: str) -> None:
    """List configured hostnames and addresses."""
    run_command(ctx, Command.INFO_HOSTS, host=host)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
