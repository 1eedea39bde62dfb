"""Single-command execution over an open SecureSession."""

import logging
import socket
import time
from typing import Optional

import paramiko

from neph.errors import OperationTimeout, SessionFailed
from neph.models import CleanExit, CommandOutcome, SessionFault, TimedOut
from neph.remote.session import SecureSession

logger = logging.getLogger(__name__)

READ_SIZE = 65536
POLL_INTERVAL = 0.1


class RemoteCommandRunner:
    """Runs one command per channel and reports how it ended."""

    def __init__(self, session: SecureSession, timeout: Optional[float] = None):
        """Initialize the runner.

        Args:
            session: A connected session.
            timeout: Deadline for each command in seconds
                (default: the session's command_timeout setting).
        """
        self.session = session
        self.timeout = timeout if timeout is not None else session.settings.command_timeout

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandOutcome:
        """Run a command line verbatim on a fresh channel.

        The command is not quoted or escaped here.

        Args:
            command: Command line to run.
            timeout: Override the runner's deadline.

        Returns:
            CleanExit when the remote process reported an exit status,
            SessionFault when the channel failed first, TimedOut when the
            deadline passed.
        """
        timeout = timeout if timeout is not None else self.timeout
        try:
            channel = self.session.open_channel()
        except SessionFailed as e:
            return SessionFault(cause=e.message)
        except OperationTimeout:
            return TimedOut(timeout=timeout)

        try:
            return self._run_on_channel(channel, command, timeout)
        finally:
            channel.close()
            logger.debug("Closed channel for %r", command)

    def run(self, command: str, timeout: Optional[float] = None) -> tuple[str, int]:
        """Run a command line and return its output and exit status.

        A non-zero remote exit status is returned unchanged.

        Raises:
            SessionFailed: If the channel failed before an exit status arrived.
            OperationTimeout: If the command outlived its deadline.
        """
        outcome = self.execute(command, timeout=timeout)
        if isinstance(outcome, CleanExit):
            return outcome.stdout, outcome.exit_code
        if isinstance(outcome, TimedOut):
            raise OperationTimeout(
                f"'{command}' on {self.session.host.endpoint} timed out "
                f"after {outcome.timeout:g} seconds"
            )
        raise SessionFailed(
            f"failed to run '{command}' on {self.session.host.endpoint}: {outcome.cause}"
        )

    def exists(self, path: str) -> bool:
        """Check that a regular file exists on the remote host."""
        return self._probe(f"test -f {path}")

    def is_executable(self, path: str) -> bool:
        """Check that a remote file has execute permission."""
        return self._probe(f"test -x {path}")

    def _probe(self, command: str) -> bool:
        # A non-zero status from test(1) is an answer, not a failure
        _, exit_code = self.run(command)
        return exit_code == 0

    def _run_on_channel(
        self, channel: paramiko.Channel, command: str, timeout: float
    ) -> CommandOutcome:
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        deadline = time.monotonic() + timeout

        try:
            channel.exec_command(command)
            channel.shutdown_write()

            while True:
                if time.monotonic() >= deadline:
                    logger.warning("'%s' timed out after %s seconds", command, timeout)
                    return TimedOut(timeout=timeout, stdout=_decode(stdout_chunks))
                if channel.recv_ready():
                    stdout_chunks.append(channel.recv(READ_SIZE))
                    continue
                if channel.recv_stderr_ready():
                    stderr_chunks.append(channel.recv_stderr(READ_SIZE))
                    continue
                if channel.exit_status_ready():
                    break
                if channel.closed or not self.session.is_connected():
                    return SessionFault(
                        cause="channel closed before the command reported an exit status"
                    )
                channel.status_event.wait(POLL_INTERVAL)

            while channel.recv_ready():
                stdout_chunks.append(channel.recv(READ_SIZE))
            exit_code = channel.recv_exit_status()
        except socket.timeout:
            return TimedOut(timeout=timeout, stdout=_decode(stdout_chunks))
        except (paramiko.SSHException, EOFError, OSError) as e:
            return SessionFault(cause=str(e) or type(e).__name__)

        if exit_code < 0:
            # paramiko reports -1 when no exit-status message was received
            return SessionFault(cause="remote process ended without an exit status")

        logger.debug("'%s' exited with status %d", command, exit_code)
        return CleanExit(
            exit_code=exit_code,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
        )


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")
