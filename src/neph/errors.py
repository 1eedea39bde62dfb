"""Exceptions raised by neph.

Each exception carries the process exit code it maps to, so the CLI can
report the first failure and exit with the matching code.
"""

from typing import Optional

from neph.models import ExitCode


class NephError(Exception):
    """Base class for all neph failures."""

    exit_code: ExitCode = ExitCode.NEPH_LOGIC_ERROR

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class FilesystemError(NephError):
    """A local file could not be read, written or renamed."""

    exit_code = ExitCode.FS_FAILURE


class LocalToolUnavailable(NephError):
    """A required local utility is missing and could not be installed."""

    exit_code = ExitCode.SSH_LOCAL_CONFIGURATION_FAILURE


class CredentialUnavailable(NephError):
    """The local private key cannot be read or parsed."""

    exit_code = ExitCode.SSH_LOCAL_CONFIGURATION_FAILURE


class RemoteKeyUnobtainable(NephError):
    """The remote host did not hand out a usable public host key."""

    exit_code = ExitCode.SSH_REMOTE_CONFIGURATION_FAILURE


class ConnectionFailed(NephError):
    """The SSH connection could not be established."""

    exit_code = ExitCode.SSH_CONNECTION_FAILURE


class SessionFailed(NephError):
    """A command channel failed independently of the remote process."""

    exit_code = ExitCode.SSH_SESSION_FAILURE


class NotInitialized(NephError):
    """The neph executable is not installed on the remote host."""

    exit_code = ExitCode.NEPH_NOT_INITIALIZED


class ConfigMissing(NephError):
    """A configuration file, or an entry in one, does not exist."""

    exit_code = ExitCode.NEPH_CONFIG_MISSING


class FileMissing(ConfigMissing):
    """The file to examine or patch does not exist."""


class ConfigInvalid(NephError):
    """A configuration file exists but cannot be used."""

    exit_code = ExitCode.NEPH_CONFIG_INVALID


class ScriptMissing(NephError):
    """The requested script does not exist."""

    exit_code = ExitCode.NEPH_SCRIPT_MISSING


class ScriptNotExecutable(NephError):
    """The requested script exists but lacks execute permission."""

    exit_code = ExitCode.NEPH_SCRIPT_NOT_EXECUTABLE


class LogicError(NephError):
    """Something that should not be possible happened."""

    exit_code = ExitCode.NEPH_LOGIC_ERROR


class BadArguments(NephError):
    """Command line arguments were rejected."""

    exit_code = ExitCode.CLI_BAD_ARGUMENTS


class OperationTimeout(NephError):
    """A blocking operation did not complete before its deadline."""

    exit_code = ExitCode.OPERATION_TIMEOUT
