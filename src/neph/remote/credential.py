"""Loading of the service identity's private key."""

import logging
from pathlib import Path
from typing import Optional

import paramiko

from neph.config import NephSettings
from neph.errors import CredentialUnavailable
from neph.models import Credential

logger = logging.getLogger(__name__)

# Tried in order, like paramiko's SSHClient does for key_filename
KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.ECDSAKey,
    paramiko.Ed25519Key,
)


class CredentialLoader:
    """Loads the private key once per process and hands out the cached copy."""

    _cache: dict[tuple[str, str], Credential] = {}

    @classmethod
    def load(cls, settings: Optional[NephSettings] = None) -> Credential:
        """Get the credential for the configured identity and key path.

        Args:
            settings: Identity name and private key path.

        Returns:
            The loaded credential.

        Raises:
            CredentialUnavailable: If the key can't be read or parsed.
        """
        settings = settings or NephSettings()
        cache_key = (settings.service_user, settings.private_key_path)
        if cache_key not in cls._cache:
            cls._cache[cache_key] = Credential(
                identity=settings.service_user,
                key=cls._read_key(Path(settings.private_key_path)),
                source=settings.private_key_path,
            )
        return cls._cache[cache_key]

    @classmethod
    def clear(cls) -> None:
        """Forget all loaded credentials."""
        cls._cache.clear()

    @staticmethod
    def _read_key(key_path: Path) -> paramiko.PKey:
        if not key_path.is_file():
            raise CredentialUnavailable(f"unable to read private key {key_path}: no such file")

        errors = []
        for key_class in KEY_CLASSES:
            try:
                key = key_class.from_private_key_file(str(key_path))
            except OSError as e:
                raise CredentialUnavailable(f"unable to read private key {key_path}: {e}") from e
            except (paramiko.SSHException, ValueError) as e:
                errors.append(f"{key_class.__name__}: {e}")
                continue
            logger.debug("Loaded %s private key from %s", key.get_name(), key_path)
            return key

        raise CredentialUnavailable(
            f"unable to parse private key {key_path}: {'; '.join(errors)}"
        )
