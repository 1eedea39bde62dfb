"""Open a pinned, authenticated connection to a remote host."""

import logging
from typing import Optional

from neph.config import NephSettings
from neph.models import RemoteHost
from neph.remote.credential import CredentialLoader
from neph.remote.hostkey import HostKeyResolver
from neph.remote.session import SecureSession

logger = logging.getLogger(__name__)


def open_connection(
    address: str,
    settings: Optional[NephSettings] = None,
    resolver: Optional[HostKeyResolver] = None,
) -> SecureSession:
    """Resolve the host key, load the credential and connect.

    The caller owns the returned session and must close it, preferably with
    ``with open_connection(...) as session:``.

    Args:
        address: Hostname or IP address of the remote host.
        settings: Port, identity, key path and timeouts.
        resolver: Host key resolver (default: one built from settings).

    Returns:
        A connected SecureSession.

    Raises:
        NephError: The first failure along the way.
    """
    settings = settings or NephSettings()
    resolver = resolver or HostKeyResolver(settings)

    host = RemoteHost(address=address, port=settings.port)
    host.host_key = resolver.resolve(address, host.port)
    credential = CredentialLoader.load(settings)

    logger.debug("Dialing %s", host.endpoint)
    return SecureSession(host, credential, settings).connect()
