"""Driver configuration management.

Configuration is loaded from a single YAML file:
- store_dir: Directory holding immutable store paths
- state_dir: Directory holding store metadata (registered path info)
- profile: Default profile path (a symlink to the current generation)
- system: Platform used when expanding flake attribute paths
- nix_command / build_command: External commands for evaluation and builds
- registry_url / registry: Flake registry sources for indirect references

Resolution order for the config file:
1. $PROFILE_DRIVER_CONFIG environment variable
2. $XDG_CONFIG_HOME/profile-driver/config.yaml (~/.config if unset)
3. /etc/profile-driver/config.yaml
4. Built-in defaults

Environment overrides (PROFILE_DRIVER_STORE_DIR, PROFILE_DRIVER_PROFILE)
are applied on top of the file.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


DEFAULT_REGISTRY_URL = 'https://channels.nixos.org/flake-registry.json'


@dataclass
class DriverConfig:
    """Resolved driver configuration.

    Attributes:
        store_dir: Store directory (paths are direct children of it)
        state_dir: Metadata directory for registered path info
        profile: Default profile symlink
        system: Platform for attribute path expansion (e.g. x86_64-linux)
        nix_command: Command prefix for evaluation (nix eval / flake metadata)
        build_command: Command prefix for building derivation outputs
        registry_url: Global flake registry location
        registry: User registry entries (flake id -> flake ref), take precedence
        command_timeout: Seconds allowed for each external command
        config_file: File the values were read from (None for defaults)
    """
    store_dir: Path = Path('/nix/store')
    state_dir: Path = Path('/nix/var/profile-driver')
    profile: Path = field(default_factory=lambda: Path.home() / '.nix-profile')
    system: str = 'x86_64-linux'
    nix_command: list[str] = field(default_factory=lambda: ['nix'])
    build_command: list[str] = field(default_factory=lambda: ['nix-store', '--realise'])
    registry_url: str = DEFAULT_REGISTRY_URL
    registry: dict[str, str] = field(default_factory=dict)
    command_timeout: int = 600
    config_file: Optional[Path] = None

    def __post_init__(self):
        for name in ('store_dir', 'state_dir', 'profile'):
            value = getattr(self, name)
            if isinstance(value, str):
                value = Path(value)
            setattr(self, name, value.expanduser())
        if isinstance(self.nix_command, str):
            self.nix_command = self.nix_command.split()
        if isinstance(self.build_command, str):
            self.build_command = self.build_command.split()

    @classmethod
    def from_dict(cls, data: dict, config_file: Optional[Path] = None) -> 'DriverConfig':
        """Create DriverConfig from dictionary.

        Raises:
            ConfigError: On unknown keys or wrongly typed values
        """
        known = {f.name for f in fields(cls)} - {'config_file'}
        unknown = sorted(set(data) - known)
        if unknown:
            where = f" in {config_file}" if config_file else ''
            raise ConfigError(f"Unknown config key(s){where}: {', '.join(unknown)}")

        registry = data.get('registry', {})
        if not isinstance(registry, dict):
            raise ConfigError("'registry' must be a mapping of flake id to flake reference")
        timeout = data.get('command_timeout', 600)
        if not isinstance(timeout, int) or timeout <= 0:
            raise ConfigError(f"'command_timeout' must be a positive integer, got {timeout!r}")

        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        kwargs['registry'] = {str(k): str(v) for k, v in registry.items()}
        return cls(config_file=config_file, **kwargs)

    def to_dict(self) -> dict:
        """Convert to dictionary (for YAML display)."""
        return {
            'store_dir': str(self.store_dir),
            'state_dir': str(self.state_dir),
            'profile': str(self.profile),
            'system': self.system,
            'nix_command': list(self.nix_command),
            'build_command': list(self.build_command),
            'registry_url': self.registry_url,
            'registry': dict(self.registry),
            'command_timeout': self.command_timeout,
        }


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a YAML object (dict)")
    return data


def discover_config_file() -> Optional[Path]:
    """Discover the config file.

    Resolution order:
    1. $PROFILE_DRIVER_CONFIG environment variable
    2. $XDG_CONFIG_HOME/profile-driver/config.yaml
    3. /etc/profile-driver/config.yaml

    Returns:
        Path to config file, or None when only defaults apply

    Raises:
        ConfigError: If $PROFILE_DRIVER_CONFIG points at a missing file
    """
    # 1. Environment variable (highest priority)
    if env_path := os.environ.get('PROFILE_DRIVER_CONFIG'):
        path = Path(env_path)
        if path.is_file():
            return path
        raise ConfigError(f"PROFILE_DRIVER_CONFIG={env_path} does not exist")

    # 2. Per-user config
    xdg_home = Path(os.environ.get('XDG_CONFIG_HOME') or Path.home() / '.config')
    user_path = xdg_home / 'profile-driver' / 'config.yaml'
    if user_path.is_file():
        return user_path

    # 3. System-wide config
    system_path = Path('/etc/profile-driver/config.yaml')
    if system_path.is_file():
        return system_path

    return None


def load_config(path: Optional[Path] = None) -> DriverConfig:
    """Load driver configuration.

    Args:
        path: Explicit config file. Auto-discovered if not provided.

    Returns:
        DriverConfig with environment overrides applied
    """
    if path is None:
        path = discover_config_file()

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        config = DriverConfig.from_dict(_parse_yaml(path), config_file=path)
    else:
        config = DriverConfig()

    if store_dir := os.environ.get('PROFILE_DRIVER_STORE_DIR'):
        config.store_dir = Path(store_dir).expanduser()
    if profile := os.environ.get('PROFILE_DRIVER_PROFILE'):
        config.profile = Path(profile).expanduser()

    return config
