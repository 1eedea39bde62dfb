"""Run neph scripts on the local machine or on a remote host."""

import ipaddress
import logging
import posixpath
import re
import shlex
import socket
import subprocess
from pathlib import PurePosixPath
from typing import Callable, Optional, Sequence

from rich.console import Console

from neph.config import HostRegistry, NephSettings
from neph.errors import (
    BadArguments,
    FilesystemError,
    LogicError,
    OperationTimeout,
    ScriptMissing,
    ScriptNotExecutable,
)
from neph.models import ExitCode, TargetKind
from neph.remote.connect import open_connection
from neph.remote.runner import RemoteCommandRunner
from neph.remote.session import SecureSession

logger = logging.getLogger(__name__)

LOCAL_NAMES = ("localhost",)
SCRIPT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.+/-]+$")


def is_localhost(target: str) -> bool:
    """Check whether a target names this machine."""
    if target in LOCAL_NAMES:
        return True
    try:
        if ipaddress.ip_address(target).is_loopback:
            return True
    except ValueError:
        pass
    return target == socket.gethostname()


def is_remotehost(target: str) -> bool:
    """Check whether a target resolves, and only to non-loopback addresses."""
    try:
        infos = socket.getaddrinfo(target, None)
    except (socket.gaierror, UnicodeError):
        return False

    addresses = {info[4][0] for info in infos}
    if not addresses:
        return False
    for address in addresses:
        # strip an IPv6 zone index such as fe80::1%eth0
        if ipaddress.ip_address(address.split("%", 1)[0]).is_loopback:
            return False
    return True


def exit_status_of(returncode: int) -> int:
    """Map a subprocess return code to a shell-style exit status."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class ScriptDispatcher:
    """Runs a script from the scripts directory on the target host."""

    def __init__(
        self,
        settings: Optional[NephSettings] = None,
        registry: Optional[HostRegistry] = None,
        console: Optional[Console] = None,
        connector: Callable[[str, NephSettings], SecureSession] = open_connection,
    ):
        """Initialize the dispatcher.

        Args:
            settings: Scripts directory, timeouts and SSH settings.
            registry: Hostname registry consulted before DNS.
            console: Where script output is printed.
            connector: Opens a connected SecureSession for an address.
        """
        self.settings = settings or NephSettings()
        self.registry = registry or HostRegistry(self.settings.config_path)
        self.console = console or Console()
        self._connector = connector

    def classify(self, target: str) -> tuple[TargetKind, str]:
        """Decide where a target is.

        Args:
            target: localhost, a configured hostname, a DNS name or an address.

        Returns:
            The target kind and the address to use.

        Raises:
            LogicError: If the target is neither local nor a resolvable remote.
        """
        if is_localhost(target):
            return TargetKind.LOCAL, target

        address = self.registry.get(target) or target
        if is_localhost(address):
            return TargetKind.LOCAL, address
        if is_remotehost(address):
            return TargetKind.REMOTE, address

        raise LogicError(f"'{target}' is neither the local host nor a reachable remote host")

    def dispatch(self, target: str, script_name: str, args: Sequence[str] = ()) -> int:
        """Run a script on the target host.

        Args:
            target: Host to run on.
            script_name: Name of a file in the scripts directory.
            args: Extra arguments for the script.

        Returns:
            The script's exit status.

        Raises:
            NephError: When the script could not be run at all.
        """
        self._validate_name(script_name)
        kind, address = self.classify(target)
        if kind == TargetKind.LOCAL:
            return self.run_local(script_name, args)
        return self.run_remote(address, script_name, args)

    def run_local(self, script_name: str, args: Sequence[str] = ()) -> int:
        """Run a script from the local scripts directory."""
        script_path = self.settings.scripts_path / script_name
        if not script_path.is_file():
            raise ScriptMissing(f"local script {script_path} does not exist")

        timeout = self.settings.command_timeout
        self.console.print(f"\n--- Begin script {script_name} ---", markup=False)
        try:
            result = subprocess.run(
                [str(script_path), *args],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except PermissionError as e:
            raise ScriptNotExecutable(
                f"local script {script_path} is not executable",
                hint=f"Try 'chmod +x {script_path}'",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise OperationTimeout(
                f"script {script_path} timed out after {timeout:g} seconds"
            ) from e
        except OSError as e:
            raise FilesystemError(f"unable to run {script_path}: {e}") from e
        else:
            self._print_output(result.stdout)
        finally:
            self.console.print(f"--- End script {script_name} ---", markup=False)

        status = exit_status_of(result.returncode)
        if status != ExitCode.SUCCESS:
            logger.warning("Script %s exited with status %d", script_path, status)
            if result.stderr:
                logger.warning(result.stderr.rstrip())
        return status

    def run_remote(self, address: str, script_name: str, args: Sequence[str] = ()) -> int:
        """Run a script from the remote host's scripts directory.

        Existence is checked before permission, and permission before
        execution.
        """
        script_path = posixpath.join(self.settings.scripts_dir, script_name)
        command = " ".join([script_path, *(shlex.quote(arg) for arg in args)])

        with self._connector(address, self.settings) as session:
            runner = RemoteCommandRunner(session)

            if not runner.exists(script_path):
                raise ScriptMissing(f"remote script {script_path} does not exist on {address}")
            if not runner.is_executable(script_path):
                raise ScriptNotExecutable(
                    f"remote script {script_path} on {address} is not executable",
                    hint=f"Try 'chmod +x {script_path}'",
                )

            self.console.print(f"\n--- Begin remote script {script_name} ---", markup=False)
            try:
                output, status = runner.run(command)
                self._print_output(output)
            finally:
                self.console.print(f"--- End remote script {script_name} ---", markup=False)

        if status != ExitCode.SUCCESS:
            logger.warning("Remote script %s on %s exited with status %d", script_path, address, status)
        return status

    def _print_output(self, output: Optional[str]) -> None:
        if output:
            self.console.out(output, end="", highlight=False)

    @staticmethod
    def _validate_name(script_name: str) -> None:
        path = PurePosixPath(script_name)
        if (
            not script_name
            or not SCRIPT_NAME_PATTERN.match(script_name)
            or path.is_absolute()
            or ".." in path.parts
        ):
            raise BadArguments(f"invalid script name '{script_name}'")
