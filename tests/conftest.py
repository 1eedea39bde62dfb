"""Shared fixtures and SSH fakes."""

import threading
from typing import Callable, Optional

import paramiko
import pytest

from neph.config import NephSettings
from neph.errors import SessionFailed
from neph.models import RemoteHost
from neph.remote.credential import CredentialLoader

Responder = Callable[[str], tuple[int, bytes]]


class FakeChannel:
    """Stands in for paramiko.Channel running a single command."""

    def __init__(
        self,
        responder: Optional[Responder] = None,
        drop: bool = False,
        hang: bool = False,
        exec_error: Optional[Exception] = None,
        exit_status: Optional[int] = None,
    ):
        self.responder = responder or (lambda command: (0, b""))
        self.drop = drop
        self.hang = hang
        self.exec_error = exec_error
        self.forced_exit_status = exit_status
        self.command: Optional[str] = None
        self.closed = False
        self.status_event = threading.Event()
        self._stdout: list[bytes] = []
        self._stderr: list[bytes] = []
        self._exit_status: Optional[int] = None

    def get_id(self) -> int:
        return 0

    def exec_command(self, command: str) -> None:
        if self.command is not None:
            raise AssertionError("a channel must run only one command")
        if self.exec_error is not None:
            raise self.exec_error
        self.command = command
        if self.drop:
            self.closed = True
            return
        if self.hang:
            return
        status, output = self.responder(command)
        if output:
            self._stdout.append(output)
        self._exit_status = status if self.forced_exit_status is None else self.forced_exit_status

    def shutdown_write(self) -> None:
        pass

    def recv_ready(self) -> bool:
        return bool(self._stdout)

    def recv(self, size: int) -> bytes:
        return self._stdout.pop(0)

    def recv_stderr_ready(self) -> bool:
        return bool(self._stderr)

    def recv_stderr(self, size: int) -> bytes:
        return self._stderr.pop(0)

    def exit_status_ready(self) -> bool:
        return self._exit_status is not None

    def recv_exit_status(self) -> int:
        return self._exit_status

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for a connected SecureSession."""

    def __init__(
        self,
        responder: Optional[Responder] = None,
        settings: Optional[NephSettings] = None,
        channel_factory: Optional[Callable[[Responder], FakeChannel]] = None,
        refuse_channels: bool = False,
    ):
        self.responder = responder or (lambda command: (0, b""))
        self.settings = settings or NephSettings()
        self.host = RemoteHost(address="10.1.2.3")
        self.channel_factory = channel_factory or FakeChannel
        self.refuse_channels = refuse_channels
        self.channels: list[FakeChannel] = []
        self.closed = False
        self.close_calls = 0

    @property
    def commands(self) -> list[str]:
        return [c.command for c in self.channels if c.command is not None]

    def open_channel(self) -> FakeChannel:
        if self.closed or self.refuse_channels:
            raise SessionFailed("administratively prohibited")
        channel = self.channel_factory(self.responder)
        self.channels.append(channel)
        return channel

    def is_connected(self) -> bool:
        return not self.closed

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def scripted(responses: dict[str, tuple[int, bytes]]) -> Responder:
    """Build a responder answering by command prefix."""

    def respond(command: str) -> tuple[int, bytes]:
        for prefix, response in responses.items():
            if command.startswith(prefix):
                return response
        return 127, b""

    return respond


@pytest.fixture(scope="session")
def rsa_key():
    """An RSA key pair."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    """A second, unrelated RSA key pair."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(autouse=True)
def clear_credentials():
    """Keep loaded credentials from leaking between tests."""
    CredentialLoader.clear()
    yield
    CredentialLoader.clear()
