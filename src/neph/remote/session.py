"""Authenticated SSH connection pinned to a known host key."""

import logging
import socket
from enum import Enum
from typing import Callable, Optional

import paramiko

from neph.config import NephSettings
from neph.errors import ConnectionFailed, LogicError, OperationTimeout, SessionFailed
from neph.models import Credential, RemoteHost

logger = logging.getLogger(__name__)

# keyscan reports RSA keys as ssh-rsa; the handshake may sign with SHA-2
RSA_ALGORITHMS = ("rsa-sha2-512", "rsa-sha2-256", "ssh-rsa")


class SessionState(Enum):
    """Lifecycle of a SecureSession."""

    UNKEYED = "unkeyed"
    KEYED = "keyed"
    CONNECTED = "connected"
    CLOSED = "closed"


def host_key_algorithms(key: paramiko.PKey) -> list[str]:
    """Get the handshake algorithms that can present the given key."""
    name = key.get_name()
    if name == "ssh-rsa":
        return list(RSA_ALGORITHMS)
    return [name]


def keys_match(pinned: paramiko.PKey, presented: Optional[paramiko.PKey]) -> bool:
    """Check that the presented host key is exactly the pinned one."""
    if presented is None:
        return False
    return (
        pinned.get_name() == presented.get_name()
        and pinned.asbytes() == presented.asbytes()
    )


class SecureSession:
    """One SSH connection to one host, authenticated with one credential.

    Use it as a context manager so the connection is closed on every path::

        with SecureSession(host, credential, settings) as session:
            channel = session.open_channel()
    """

    def __init__(
        self,
        host: RemoteHost,
        credential: Credential,
        settings: Optional[NephSettings] = None,
        socket_factory: Callable[..., socket.socket] = socket.create_connection,
        transport_factory: Callable[[socket.socket], paramiko.Transport] = paramiko.Transport,
    ):
        """Initialize the session.

        Args:
            host: Target host; its key must be pinned before connecting.
            credential: Private key used for public key authentication.
            settings: Port, service user and timeouts.
            socket_factory: Opens the TCP connection.
            transport_factory: Wraps the socket in an SSH transport.
        """
        self.host = host
        self.credential = credential
        self.settings = settings or NephSettings()
        self._socket_factory = socket_factory
        self._transport_factory = transport_factory
        self._transport: Optional[paramiko.Transport] = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if self._transport is not None:
            return SessionState.CONNECTED
        if self.host.is_pinned:
            return SessionState.KEYED
        return SessionState.UNKEYED

    @property
    def transport(self) -> paramiko.Transport:
        if self._transport is None:
            raise SessionFailed(f"not connected to {self.host.endpoint}")
        return self._transport

    def is_connected(self) -> bool:
        """Check if the SSH transport is still usable."""
        if self.state != SessionState.CONNECTED:
            return False
        try:
            return self.transport.is_active()
        except Exception:
            return False

    def connect(self) -> "SecureSession":
        """Dial the host, verify its key and authenticate.

        Returns:
            This session, now connected.

        Raises:
            ConnectionFailed: On dial, handshake, host key or auth failure.
            OperationTimeout: If the dial or handshake exceeds its deadline.
            LogicError: If the session is not in the KEYED state.
        """
        if self.state != SessionState.KEYED:
            raise LogicError(
                f"cannot connect to {self.host.endpoint} from state {self.state.value}"
            )

        pinned = self.host.host_key
        timeout = self.settings.connect_timeout
        endpoint = self.host.endpoint

        try:
            sock = self._socket_factory((self.host.address, self.host.port), timeout=timeout)
        except socket.timeout as e:
            raise OperationTimeout(f"timed out dialing {endpoint} after {timeout:g} seconds") from e
        except OSError as e:
            raise ConnectionFailed(f"failed to dial {endpoint}: {e}") from e

        transport = None
        try:
            transport = self._transport_factory(sock)
            transport.banner_timeout = timeout
            transport.auth_timeout = timeout
            transport.get_security_options().key_types = host_key_algorithms(pinned)
            transport.start_client(timeout=timeout)

            presented = transport.get_remote_server_key()
            if not keys_match(pinned, presented):
                raise ConnectionFailed(
                    f"host key mismatch for {endpoint}: expected {pinned.get_name()} "
                    f"{pinned.get_base64()[:16]}..., refusing connection"
                )

            transport.auth_publickey(self.settings.service_user, self.credential.key)
            if not transport.is_authenticated():
                raise ConnectionFailed(
                    f"authentication as {self.settings.service_user} to {endpoint} failed"
                )
        except ConnectionFailed:
            self._abort(transport, sock)
            raise
        except socket.timeout as e:
            self._abort(transport, sock)
            raise OperationTimeout(f"timed out connecting to {endpoint}") from e
        except paramiko.AuthenticationException as e:
            self._abort(transport, sock)
            raise ConnectionFailed(
                f"authentication as {self.settings.service_user} to {endpoint} failed: {e}"
            ) from e
        except (paramiko.SSHException, EOFError, OSError, ValueError) as e:
            self._abort(transport, sock)
            raise ConnectionFailed(f"failed to connect to {endpoint}: {e}") from e

        self._transport = transport
        logger.info("Connected to %s as %s", endpoint, self.settings.service_user)
        return self

    def open_channel(self) -> paramiko.Channel:
        """Open a new channel for a single command.

        Raises:
            SessionFailed: If not connected or the host refuses the channel.
            OperationTimeout: If the host does not answer in time.
        """
        if self.state != SessionState.CONNECTED:
            raise SessionFailed(f"no open connection to {self.host.endpoint}")
        timeout = self.settings.connect_timeout
        try:
            channel = self.transport.open_session(timeout=timeout)
        except socket.timeout as e:
            raise OperationTimeout(f"timed out opening a session on {self.host.endpoint}") from e
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise SessionFailed(f"failed to create session on {self.host.endpoint}: {e}") from e
        logger.debug("Opened channel %s on %s", channel.get_id(), self.host.endpoint)
        return channel

    def close(self) -> None:
        """Close the connection. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        if self._transport is not None:
            try:
                self._transport.close()
            finally:
                self._transport = None
                logger.debug("Closed connection to %s", self.host.endpoint)

    @staticmethod
    def _abort(transport: Optional[paramiko.Transport], sock: socket.socket) -> None:
        if transport is not None:
            try:
                transport.close()
            except Exception:
                pass
        try:
            sock.close()
        except OSError:
            pass

    def __enter__(self) -> "SecureSession":
        """Context manager entry; connects if still KEYED."""
        if self.state == SessionState.KEYED:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
