"""SSH pipeline: host key pinning, authenticated sessions, remote commands."""

from neph.remote.connect import open_connection
from neph.remote.credential import CredentialLoader
from neph.remote.hostkey import HostKeyResolver
from neph.remote.runner import RemoteCommandRunner
from neph.remote.session import SecureSession, SessionState

__all__ = [
    "open_connection",
    "CredentialLoader",
    "HostKeyResolver",
    "RemoteCommandRunner",
    "SecureSession",
    "SessionState",
]
