"""Neph data models."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    import paramiko


class ExitCode(IntEnum):
    """Process exit codes surfaced by the neph CLI."""

    SUCCESS = 0
    FS_FAILURE = 1                        # also the usual failure code of a script
    SSH_LOCAL_CONFIGURATION_FAILURE = 2
    SSH_REMOTE_CONFIGURATION_FAILURE = 3
    SSH_CONNECTION_FAILURE = 4
    SSH_SESSION_FAILURE = 5
    NEPH_NOT_INITIALIZED = 6
    NEPH_CONFIG_MISSING = 7
    NEPH_CONFIG_INVALID = 8
    NEPH_SCRIPT_MISSING = 9
    NEPH_SCRIPT_NOT_EXECUTABLE = 10
    NEPH_LOGIC_ERROR = 11
    CLI_BAD_ARGUMENTS = 12
    OPERATION_TIMEOUT = 13


class Command(Enum):
    """Commands understood by the neph CLI."""

    EXEC = "exec"
    APPLY = "apply"
    EXAMINE = "examine"
    INFO_CONFIGS = "info configs"
    INFO_SCRIPTS = "info scripts"
    INFO_HOSTS = "info hosts"


class TargetKind(Enum):
    """Where a command should run."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class RemoteHost:
    """A managed host for the duration of one command invocation."""

    address: str
    port: int = 22
    host_key: Optional["paramiko.PKey"] = None

    @property
    def endpoint(self) -> str:
        """Return ``address:port`` for messages."""
        return f"{self.address}:{self.port}"

    @property
    def is_pinned(self) -> bool:
        """Check whether a host key has been pinned."""
        return self.host_key is not None


@dataclass(frozen=True)
class Credential:
    """Private key material used to authenticate as the service identity."""

    identity: str
    key: "paramiko.PKey" = field(repr=False)
    source: str = ""


@dataclass(frozen=True)
class CleanExit:
    """The remote process ran and reported an exit status."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class SessionFault:
    """The channel failed before the remote process reported an exit status."""

    cause: str


@dataclass(frozen=True)
class TimedOut:
    """The command did not finish before its deadline."""

    timeout: float
    stdout: str = ""


CommandOutcome = Union[CleanExit, SessionFault, TimedOut]
