"""Configuration loader for env-sync."""
import os
import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import yaml

from .models import EnvSyncError
from .preferences import get_preference

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = "env-sync.yml"
SUPPORTED_DRIVERS = ("1password", "aws", "bitwarden", "gcp")

DEFAULT_CONFIG: Dict[str, Any] = {
    "default": "1password",
    "providers": {
        "1password": {"vault": "Private"},
        "aws": {"region": "us-east-1"},
        "bitwarden": {},
        "gcp": {},
    },
    "environments": {
        "local": ".env",
        "development": ".env",
        "staging": ".env.staging",
        "production": ".env.production",
        "testing": ".env.testing",
    },
    "backup": {
        "max_backups": 5,
        "directory": None,
    },
    "required_variables": ["APP_KEY", "DB_CONNECTION"],
}

# env var -> (provider, setting)
ENV_OVERRIDES = {
    "ONEPASSWORD_VAULT": ("1password", "vault"),
    "AWS_DEFAULT_REGION": ("aws", "region"),
    "BITWARDEN_ORG_ID": ("bitwarden", "organizationId"),
    "GCP_PROJECT": ("gcp", "project"),
}


class ConfigError(EnvSyncError):
    """Configuration error exception."""
    pass


def default_config_path() -> Path:
    return Path.home() / ".config" / "env-sync" / "config.yml"


def _get_config_path() -> Optional[str]:
    """
    Resolve the config file path.

    Priority order:
    1. User preference (stored in ~/.config/env-sync/preferences.json)
    2. env-sync.yml in the current working directory
    3. ~/.config/env-sync/config.yml

    Returns:
        Absolute path to the config file, or None when no file exists
        (built-in defaults are used in that case)
    """
    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.debug(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    project_config = Path.cwd() / PROJECT_CONFIG_NAME
    if project_config.exists():
        logger.debug(f"Using project config: {project_config}")
        return str(project_config)

    default_config = default_config_path()
    if default_config.exists():
        logger.debug(f"Using default config location: {default_config}")
        return str(default_config)

    return None


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate(config: Dict[str, Any], source: str) -> None:
    providers = config.get("providers")
    if not isinstance(providers, dict):
        raise ConfigError(f"'providers' must be a mapping in {source}")

    for name, settings in providers.items():
        if settings is None:
            providers[name] = {}
            continue
        if not isinstance(settings, dict):
            raise ConfigError(f"Settings for provider '{name}' must be a mapping in {source}")
        driver = settings.get("driver", name)
        if driver not in SUPPORTED_DRIVERS:
            raise ConfigError(
                f"Unsupported driver '{driver}' for provider '{name}' in {source}\n"
                f"Supported drivers: {', '.join(SUPPORTED_DRIVERS)}"
            )

    backup = config.get("backup")
    if not isinstance(backup, dict):
        raise ConfigError(f"'backup' must be a mapping in {source}")
    max_backups = backup.get("max_backups")
    if max_backups is not None and (not isinstance(max_backups, int) or max_backups < 1):
        raise ConfigError(f"'backup.max_backups' must be a positive integer in {source}")

    if not isinstance(config.get("required_variables"), list):
        raise ConfigError(f"'required_variables' must be a list in {source}")


def load_config() -> Dict[str, Any]:
    """
    Load configuration from YAML and apply environment variable overrides.

    Returns:
        Dict with keys: default, providers, environments, backup, required_variables

    Raises:
        ConfigError: If the config file cannot be read, parsed or validated
    """
    # Resolved on every call so preference changes apply without a restart
    config_path = _get_config_path()
    config = copy.deepcopy(DEFAULT_CONFIG)
    source = "built-in defaults"

    if config_path:
        source = config_path
        try:
            with open(config_path, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read config file at {config_path}: {e}")

        if file_config is None:
            logger.warning(f"Config file at {config_path} is empty, using defaults")
        elif not isinstance(file_config, dict):
            raise ConfigError(f"Config file at {config_path} must contain a YAML mapping")
        else:
            config = _merge(config, file_config)

    default_provider = os.getenv("ENV_SYNC_PROVIDER")
    if default_provider:
        config["default"] = default_provider

    for env_var, (provider, setting) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value and isinstance(config.get("providers"), dict) and provider in config["providers"]:
            settings = config["providers"][provider] or {}
            settings[setting] = value
            config["providers"][provider] = settings

    _validate(config, source)

    logger.debug(f"Configuration loaded from {source}")
    return config


def get_provider_settings(name: str, config: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Return the settings block for a configured provider, or None."""
    config = config if config is not None else load_config()
    return config.get("providers", {}).get(name)
