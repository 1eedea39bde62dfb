"""Handlers for neph commands.

Each ``Command`` maps to exactly one handler. Handlers return the exit status
of the command and raise ``NephError`` for failures.
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from neph.config import HostRegistry, NephSettings
from neph.delimited_block import ENCODING, ENCODING_ERRORS, DelimitedBlockStore
from neph.dispatcher import ScriptDispatcher
from neph.errors import FileMissing, FilesystemError, LogicError, NotInitialized
from neph.models import Command, ExitCode, TargetKind
from neph.output import OutputFormatter
from neph.remote.connect import open_connection
from neph.remote.runner import RemoteCommandRunner
from neph.remote.session import SecureSession

logger = logging.getLogger(__name__)

# Exit status of a shell that cannot find the command it was asked to run
COMMAND_NOT_FOUND = 127


@dataclass
class CommandContext:
    """Everything a command handler needs."""

    settings: NephSettings
    formatter: OutputFormatter = field(default_factory=OutputFormatter)
    connector: Callable[[str, NephSettings], SecureSession] = open_connection
    registry: Optional[HostRegistry] = None
    block_store: Optional[DelimitedBlockStore] = None

    def __post_init__(self) -> None:
        if self.registry is None:
            self.registry = HostRegistry(self.settings.config_path)
        if self.block_store is None:
            self.block_store = DelimitedBlockStore(self.settings.product)

    @property
    def dispatcher(self) -> ScriptDispatcher:
        return ScriptDispatcher(
            settings=self.settings,
            registry=self.registry,
            console=self.formatter.console,
            connector=self.connector,
        )


def forward_to_remote(context: CommandContext, host: str, address: str, args: list[str]) -> int:
    """Run a neph command on a remote host and return its exit status.

    Args:
        context: Command context.
        host: Host name as given by the user.
        address: Address to connect to.
        args: neph command line arguments for the remote side.

    Raises:
        NotInitialized: If neph is not installed on the remote host.
    """
    executable = context.settings.remote_executable
    command_line = " ".join([executable, *(shlex.quote(arg) for arg in args)])
    console = context.formatter.console

    with context.connector(address, context.settings) as session:
        runner = RemoteCommandRunner(session)
        console.print(f"--- Begin remote neph command on {host} ---", markup=False)
        try:
            output, status = runner.run(command_line)
            if output:
                console.out(output, end="", highlight=False)
        finally:
            console.print(f"--- End remote neph command on {host} ---", markup=False)

    if status == COMMAND_NOT_FOUND:
        raise NotInitialized(
            f"'{command_line}' can't be executed on {host}",
            hint=f"Set up the remote host first with 'neph init {host}'",
        )
    if status != ExitCode.SUCCESS:
        context.formatter.print_warning(f"neph on {host} exited with status {status}")
    return status


def command_exec(context: CommandContext, host: str, script: str, args: tuple[str, ...] = ()) -> int:
    """Handle ``neph exec host script [args...]``."""
    return context.dispatcher.dispatch(host, script, list(args))


def command_apply(context: CommandContext, host: str, config_file: str, block_file: str) -> int:
    """Handle ``neph apply host configfile dtbfile``."""
    kind, address = context.dispatcher.classify(host)
    if kind == TargetKind.REMOTE:
        return forward_to_remote(
            context, host, address, ["apply", "localhost", config_file, block_file]
        )

    block_path = Path(block_file)
    if not block_path.is_file():
        raise FileMissing(f"no such file {block_path}")
    try:
        block_text = block_path.read_text(encoding=ENCODING, errors=ENCODING_ERRORS)
    except OSError as e:
        raise FilesystemError(f"unable to read {block_path}: {e}") from e

    context.block_store.replace(config_file, block_text)
    context.formatter.print_success(f"Applied {block_file} to {config_file}")
    return ExitCode.SUCCESS


def command_examine(context: CommandContext, host: str, config_file: str) -> int:
    """Handle ``neph examine host configfile``."""
    kind, address = context.dispatcher.classify(host)
    if kind == TargetKind.REMOTE:
        return forward_to_remote(context, host, address, ["examine", "localhost", config_file])

    block_text = context.block_store.read(config_file)
    context.formatter.print_block(config_file, block_text)
    return ExitCode.SUCCESS


def command_info_configs(context: CommandContext, host: str = "localhost") -> int:
    """Handle ``neph info configs [host]``."""
    return _info_listing(context, host, "configs", context.settings.config_path)


def command_info_scripts(context: CommandContext, host: str = "localhost") -> int:
    """Handle ``neph info scripts [host]``."""
    return _info_listing(context, host, "scripts", context.settings.scripts_path)


def command_info_hosts(context: CommandContext, host: str = "localhost") -> int:
    """Handle ``neph info hosts [host]``."""
    kind, address = context.dispatcher.classify(host)
    if kind == TargetKind.REMOTE:
        return forward_to_remote(context, host, address, ["info", "hosts"])

    context.formatter.print_hosts(context.registry.all())
    return ExitCode.SUCCESS


def _info_listing(context: CommandContext, host: str, subcommand: str, directory: Path) -> int:
    kind, address = context.dispatcher.classify(host)
    if kind == TargetKind.REMOTE:
        return forward_to_remote(context, host, address, ["info", subcommand])

    context.formatter.print_paths(walk_dir(directory))
    return ExitCode.SUCCESS


def walk_dir(directory: Path) -> list[str]:
    """List the non-hidden files below a directory, depth first.

    Raises:
        FilesystemError: If a directory can't be listed.
    """
    try:
        entries = sorted(Path(directory).iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise FilesystemError(f"unable to list info for {directory}: {e}") from e

    paths = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            paths.extend(walk_dir(entry))
        else:
            paths.append(str(entry))
    return paths


COMMAND_HANDLERS: dict[Command, Callable[..., int]] = {
    Command.EXEC: command_exec,
    Command.APPLY: command_apply,
    Command.EXAMINE: command_examine,
    Command.INFO_CONFIGS: command_info_configs,
    Command.INFO_SCRIPTS: command_info_scripts,
    Command.INFO_HOSTS: command_info_hosts,
}

_unhandled = [c.value for c in Command if c not in COMMAND_HANDLERS]
if _unhandled:
    raise LogicError(f"no handler for command(s): {', '.join(_unhandled)}")


def execute(command: Command, context: CommandContext, **kwargs) -> int:
    """Run a command through its handler.

    Returns:
        The command's exit status.
    """
    logger.debug("Executing %s with %s", command.value, kwargs)
    return int(COMMAND_HANDLERS[command](context, **kwargs))
