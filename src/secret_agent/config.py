"""Configuration for secret-agent."""

import os
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .errors import ConfigError

# Environment toggles
ENV_PASSPHRASE = "SECRET_AGENT_PASSPHRASE"
ENV_USE_FILE = "SECRET_AGENT_USE_FILE"
ENV_VAULT_PATH = "SECRET_AGENT_VAULT_PATH"
ENV_CONFIG_FILE = "SECRET_AGENT_CONFIG"

_FALSE_VALUES = {"", "0", "false", "no", "off"}


def get_data_dir() -> Path:
    """Get the per-user data directory (vault and key file live here)."""
    return Path.home() / ".secret-agent"


def get_config_dir() -> Path:
    """Get config directory following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "secret-agent"


def get_config_file() -> Path:
    env_file = os.environ.get(ENV_CONFIG_FILE)
    if env_file:
        return Path(env_file).expanduser()
    return get_config_dir() / "config.yaml"


def load_config(config_file: Optional[Path] = None) -> dict:
    """
    Load the optional YAML config file.

    Recognized keys: vault_path, use_file, log_level. A missing file is an
    empty config; anything that isn't a YAML mapping is an error.
    """
    config_file = config_file or get_config_file()

    if not config_file.exists():
        return {}

    try:
        with open(config_file) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_file}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {config_file}")
    return data


def get_vault_path(config: Optional[dict] = None) -> Path:
    """Get vault database path."""
    # Check environment variable first
    env_path = os.environ.get(ENV_VAULT_PATH)
    if env_path:
        return Path(env_path).expanduser()

    config = load_config() if config is None else config
    if config.get("vault_path"):
        return Path(str(config["vault_path"])).expanduser()

    return get_data_dir() / "vault.db"


def get_master_key_file() -> Path:
    """Fixed location of the file-based master key."""
    return get_data_dir() / "master.key"


def is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in _FALSE_VALUES


def use_file_storage(config: Optional[dict] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Whether the key file should be used instead of the OS keychain."""
    environ = os.environ if environ is None else environ
    env_value = environ.get(ENV_USE_FILE)
    if env_value is not None:
        return is_truthy(env_value)

    config = load_config() if config is None else config
    return bool(config.get("use_file", False))


def get_log_level(config: Optional[dict] = None) -> str:
    config = load_config() if config is None else config
    return str(config.get("log_level", "WARNING")).upper()
