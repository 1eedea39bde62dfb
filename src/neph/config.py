"""Neph configuration: runtime settings and the hostnames registry."""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from neph.errors import ConfigInvalid, ConfigMissing

DEFAULT_CONFIG_DIR = Path("/etc/neph/conf")
SETTINGS_FILE = "neph.yaml"
HOSTNAMES_FILE = "hostnames.yaml"


@dataclass
class NephSettings:
    """Settings shared by the remote pipeline and the local commands."""

    service_user: str = "root"
    private_key_path: str = "/root/.ssh/neph-rsa-private-key"
    port: int = 22
    host_key_type: str = "rsa"
    keyscan_tool: str = "ssh-keyscan"
    keyscan_package: str = "openssh-clients"
    install_command: list[str] = field(default_factory=lambda: ["dnf", "install", "-y"])
    scripts_dir: str = "/var/neph/scripts"
    config_dir: str = str(DEFAULT_CONFIG_DIR)
    product: str = "NEPH"
    remote_executable: str = "neph"
    keyscan_timeout: float = 10
    connect_timeout: float = 30
    command_timeout: float = 3600

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.service_user:
            raise ValueError("service_user is required")
        if not self.product:
            raise ValueError("product is required")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        for name in ("keyscan_timeout", "connect_timeout", "command_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def scripts_path(self) -> Path:
        return Path(self.scripts_dir)

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NephSettings":
        """Create settings from dictionary.

        Raises:
            ValueError: On unknown keys, wrongly typed or invalid values.
        """
        known = {f.name: f for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"unknown setting(s): {', '.join(unknown)}")

        for key, value in data.items():
            expected = _FIELD_TYPES[key]
            if isinstance(value, bool) or not isinstance(value, expected):
                raise ValueError(f"setting '{key}' has the wrong type")
            if key == "install_command" and not all(isinstance(v, str) for v in value):
                raise ValueError("setting 'install_command' must be a list of strings")

        return cls(**data)


_FIELD_TYPES: dict[str, Union[type, tuple[type, ...]]] = {
    "service_user": str,
    "private_key_path": str,
    "port": int,
    "host_key_type": str,
    "keyscan_tool": str,
    "keyscan_package": str,
    "install_command": list,
    "scripts_dir": str,
    "config_dir": str,
    "product": str,
    "remote_executable": str,
    "keyscan_timeout": (int, float),
    "connect_timeout": (int, float),
    "command_timeout": (int, float),
}


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"unable to parse {path}: {e}") from e
    except OSError as e:
        raise ConfigMissing(f"unable to read {path}: {e}") from e


def load_settings(config_dir: Optional[Path] = None) -> NephSettings:
    """Load settings from ``neph.yaml`` in the configuration directory.

    A missing file yields the defaults. Any value in the file overrides the
    matching default.

    Args:
        config_dir: Directory holding neph configuration files.

    Returns:
        The settings.

    Raises:
        ConfigInvalid: If the file is malformed or holds bad values.
    """
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    settings_file = config_dir / SETTINGS_FILE

    data: dict[str, Any] = {}
    if settings_file.exists():
        loaded = _read_yaml(settings_file)
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigInvalid(f"{settings_file} must contain a mapping")
        data = dict(loaded or {})

    data.setdefault("config_dir", str(config_dir))

    try:
        return NephSettings.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigInvalid(f"invalid settings in {settings_file}: {e}") from e


class HostRegistry:
    """Hostname to address mapping read from ``hostnames.yaml``.

    The file looks like::

        hostnames:
          nk024: 165.227.3.8
          nk025: 165.227.11.3
    """

    def __init__(self, config_dir: Path):
        """Initialize the registry.

        Args:
            config_dir: Directory holding the hostnames file.
        """
        self.hostnames_file = Path(config_dir) / HOSTNAMES_FILE
        self._hosts: Optional[dict[str, str]] = None

    @property
    def exists(self) -> bool:
        return self.hostnames_file.exists()

    def all(self) -> dict[str, str]:
        """Get every configured hostname and its address.

        Raises:
            ConfigMissing: If the hostnames file does not exist.
            ConfigInvalid: If it lacks a ``hostnames`` mapping.
        """
        if self._hosts is None:
            self._hosts = self._load()
        return dict(self._hosts)

    def get(self, name: str) -> Optional[str]:
        """Get the address of a hostname, or None when it is not configured.

        A missing hostnames file is not an error here.
        """
        if not self.exists:
            return None
        try:
            return self.lookup(name)
        except ConfigMissing:
            return None

    def lookup(self, name: str) -> str:
        """Get the address of a hostname.

        Raises:
            ConfigMissing: If the file or the hostname is missing.
        """
        hosts = self.all()
        if name not in hosts:
            raise ConfigMissing(f"hostname '{name}' not listed in {self.hostnames_file}")
        return hosts[name]

    def _load(self) -> dict[str, str]:
        if not self.exists:
            raise ConfigMissing(
                f"unable to read hostnames configuration from {self.hostnames_file}"
            )

        data = _read_yaml(self.hostnames_file)
        if not isinstance(data, dict) or not isinstance(data.get("hostnames"), dict):
            raise ConfigInvalid(
                f"{self.hostnames_file} is missing the 'hostnames' section"
            )

        return {
            str(name): str(address)
            for name, address in data["hostnames"].items()
            if address is not None
        }
