"""Fleet configuration management.

Configuration is loaded from a YAML file plus an optional sibling secrets file:
- config.yaml: operator defaults (inventory path, timeouts, provider region)
- secrets.yaml: provider credentials

Resolution order for the config file:
1. FLEET_CONFIG environment variable
2. ./fleet-config.yaml (current working directory)
3. ~/.config/fleet/config.yaml

A missing config file is not an error; built-in defaults apply.
Environment variables override secrets from the file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY = 'fleet.yml'
LOCAL_CONFIG_NAME = 'fleet-config.yaml'

# Environment overrides for secret lookups, keyed by dotted secrets path
SECRET_ENV_VARS = {
    'providers.digitalocean.token': ('DIGITALOCEAN_API_TOKEN', 'DO_API_TOKEN'),
    'providers.aws.access_key_id': ('AWS_ACCESS_KEY_ID',),
    'providers.aws.secret_access_key': ('AWS_SECRET_ACCESS_KEY',),
}


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


@dataclass
class FleetConfig:
    """Operator configuration for fleet commands."""
    config_file: Optional[Path] = None
    inventory_path: Path = field(default_factory=lambda: Path.cwd() / DEFAULT_INVENTORY)
    ssh_connect_timeout: float = 10.0
    command_timeout: float = 300.0
    ready_timeout: float = 300.0
    ssh_wait_timeout: float = 120.0
    poll_interval: float = 5.0
    aws_region: str = ''

    _secrets: dict = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        if isinstance(self.config_file, str):
            self.config_file = Path(self.config_file)
        if isinstance(self.inventory_path, str):
            self.inventory_path = Path(self.inventory_path)

        if self.config_file and self.config_file.exists():
            self._load_from_yaml()

        if env_inventory := os.environ.get('FLEET_INVENTORY'):
            self.inventory_path = Path(env_inventory)
        if env_region := os.environ.get('AWS_DEFAULT_REGION'):
            self.aws_region = self.aws_region or env_region

    def _load_from_yaml(self):
        """Load defaults and sibling secrets."""
        data = _parse_yaml(self.config_file)
        defaults = data.get('defaults') or {}
        if not isinstance(defaults, dict):
            raise ConfigError("E501", f"'defaults' must be a mapping in {self.config_file}")

        if inventory := defaults.get('inventory_path'):
            path = Path(inventory).expanduser()
            # Relative inventory paths are relative to the config file
            self.inventory_path = path if path.is_absolute() else self.config_file.parent / path

        for name in ('ssh_connect_timeout', 'command_timeout', 'ready_timeout',
                     'ssh_wait_timeout', 'poll_interval'):
            if name in defaults:
                try:
                    setattr(self, name, float(defaults[name]))
                except (TypeError, ValueError) as e:
                    raise ConfigError("E501", f"Invalid value for {name}: {defaults[name]!r}") from e

        if region := defaults.get('aws_region'):
            self.aws_region = str(region)

        self._secrets = _load_secrets(self.config_file.parent)

    def get_secret(self, key: str, required: bool = True) -> str:
        """Look up a secret by dotted path.

        Environment variables listed in SECRET_ENV_VARS take precedence over
        secrets.yaml.

        Raises:
            ConfigError: If required and the secret is not set anywhere
        """
        for env_var in SECRET_ENV_VARS.get(key, ()):
            if value := os.environ.get(env_var):
                return value

        node = self._secrets
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                node = None
                break
            node = node[part]

        if node:
            return str(node)
        if required:
            env_hint = ' or '.join(SECRET_ENV_VARS.get(key, ()))
            hint = f" (set {env_hint})" if env_hint else ''
            raise ConfigError("E502", f"Secret not configured: {key}{hint}")
        return ''


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError("E500", f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError("E500", f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("E500", f"Expected a mapping in {path}")
    return data


def _load_secrets(config_dir: Path) -> dict:
    """Load secrets.yaml next to the config file, if present."""
    secrets_file = config_dir / 'secrets.yaml'
    if not secrets_file.exists():
        return {}
    logger.debug(f"Loading secrets from {secrets_file}")
    return _parse_yaml(secrets_file)


def discover_config_path() -> Optional[Path]:
    """Find the config file.

    Resolution order:
    1. FLEET_CONFIG environment variable
    2. ./fleet-config.yaml
    3. ~/.config/fleet/config.yaml

    Returns:
        Path to the first existing candidate, or None
    """
    if env_path := os.environ.get('FLEET_CONFIG'):
        path = Path(env_path).expanduser()
        if not path.exists():
            raise ConfigError("E500", f"FLEET_CONFIG points to missing file: {path}")
        return path

    for candidate in (Path.cwd() / LOCAL_CONFIG_NAME,
                      Path.home() / '.config' / 'fleet' / 'config.yaml'):
        if candidate.exists():
            return candidate
    return None


def load_config(config_file: Optional[Path] = None) -> FleetConfig:
    """Load fleet configuration from an explicit path or by discovery."""
    path = config_file or discover_config_path()
    if path:
        logger.debug(f"Using config file {path}")
    return FleetConfig(config_file=path)
