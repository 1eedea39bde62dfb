"""Host key lookup via ssh-keyscan.

The remote host can be asked for its public host key without authenticating.
The key obtained this way is pinned and the SSH connection that follows must
present exactly that key.
"""

import base64
import binascii
import logging
import shutil
import subprocess
from typing import Optional

import paramiko
from paramiko.hostkeys import HostKeyEntry, InvalidHostKey

from neph.config import NephSettings
from neph.errors import LocalToolUnavailable, OperationTimeout, RemoteKeyUnobtainable

logger = logging.getLogger(__name__)

SSHD_CONFIG_HINT = (
    "check the remote host's configuration at /etc/ssh/sshd_config and make sure "
    "the entry 'HostKey /etc/ssh/ssh_host_{key_type}_key' references an OPENSSH PRIVATE KEY"
)


class HostKeyResolver:
    """Obtains a remote host's public key for pinning."""

    def __init__(self, settings: Optional[NephSettings] = None):
        """Initialize the resolver.

        Args:
            settings: Key type, keyscan tool, install command and timeout.
        """
        self.settings = settings or NephSettings()

    def resolve(self, address: str, port: Optional[int] = None) -> paramiko.PKey:
        """Obtain and parse the host key of a remote host.

        Args:
            address: Hostname or IP address.
            port: SSH port (default: the configured port).

        Returns:
            The host's public key.

        Raises:
            LocalToolUnavailable: If ssh-keyscan is missing and can't be installed.
            RemoteKeyUnobtainable: If the host gives no usable key.
            OperationTimeout: If the lookup exceeds its deadline.
        """
        port = port or self.settings.port
        tool = self.find_or_install()
        entry = self._scan(tool, address, port)
        return self.parse_entry(entry, address)

    def find_or_install(self) -> str:
        """Get the path of the keyscan tool, installing it once if needed.

        Returns:
            Path to the executable.

        Raises:
            LocalToolUnavailable: If it is not found and was not installed.
        """
        tool = self.settings.keyscan_tool
        tool_path = shutil.which(tool)
        if tool_path:
            return tool_path

        package = self.settings.keyscan_package
        install = list(self.settings.install_command) + [package]
        logger.warning("%s not found, attempting to install %s", tool, package)
        try:
            result = subprocess.run(install, capture_output=True, text=True)
        except OSError as e:
            raise LocalToolUnavailable(
                f"{tool} not found and installation of {package} failed: {e}"
            ) from e

        if result.stdout:
            logger.info(result.stdout.rstrip())
        if result.returncode != 0:
            raise LocalToolUnavailable(
                f"{tool} not found and installation of {package} failed "
                f"(exit code {result.returncode}): {result.stderr.strip()}"
            )

        tool_path = shutil.which(tool)
        if not tool_path:
            raise LocalToolUnavailable(f"{tool} not found after installing {package}")
        return tool_path

    def _scan(self, tool: str, address: str, port: int) -> str:
        timeout = self.settings.keyscan_timeout
        cmd = [
            tool,
            "-T", str(int(timeout)),
            "-p", str(port),
            "-t", self.settings.host_key_type,
            address,
        ]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                # ssh-keyscan applies -T per connection attempt
                timeout=timeout * 2,
            )
        except subprocess.TimeoutExpired as e:
            raise OperationTimeout(
                f"{tool} did not answer for {address} within {timeout * 2:g} seconds"
            ) from e
        except OSError as e:
            raise LocalToolUnavailable(f"unable to run {tool}: {e}") from e

        if result.returncode != 0:
            raise self._unobtainable(
                f"{tool} was not able to obtain a {self.settings.host_key_type} "
                f"public host key from {address}: {result.stderr.strip()}"
            )
        return result.stdout

    def parse_entry(self, text: str, address: str = "") -> paramiko.PKey:
        """Parse keyscan output of the form ``<host> <key-type> <base64-key>``.

        Args:
            text: Output of the keyscan tool.
            address: Host the output came from, for messages.

        Returns:
            The parsed key.

        Raises:
            RemoteKeyUnobtainable: If there is no record or it is unusable.
        """
        lines = [
            line.strip()
            for line in text.splitlines()
            if line.strip() and not line.lstrip().startswith("#")
        ]
        if not lines:
            raise self._unobtainable(f"no host key returned by {address or 'keyscan'}")

        line = lines[0]
        fields = line.split()
        if len(fields) < 3:
            raise self._unobtainable(f"failed to parse host key entry {line!r}")

        try:
            key_bytes = base64.b64decode(fields[2], validate=True)
        except (binascii.Error, ValueError) as e:
            raise self._unobtainable(f"failed to decode host key entry {line!r}: {e}") from e
        if not key_bytes:
            raise self._unobtainable(f"empty host key in entry {line!r}")

        try:
            entry = HostKeyEntry.from_line(" ".join(fields[:3]))
        except (InvalidHostKey, paramiko.SSHException, ValueError, TypeError) as e:
            raise self._unobtainable(f"failed to parse host key entry {line!r}: {e}") from e
        if entry is None or entry.key is None:
            raise self._unobtainable(f"unsupported host key entry {line!r}")

        logger.info("Pinned %s host key for %s", entry.key.get_name(), address or fields[0])
        return entry.key

    def _unobtainable(self, message: str) -> RemoteKeyUnobtainable:
        return RemoteKeyUnobtainable(
            message, hint=SSHD_CONFIG_HINT.format(key_type=self.settings.host_key_type)
        )
