"""Configuration loading utilities."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from autoservice.config.schema import Config
from autoservice.errors import ServiceError

CONFIG_ENV_VAR = "AUTOSERVICE_CONFIG"


class ConfigError(ServiceError):
    """The config file exists but cannot be used."""


def get_config_path() -> Path:
    """Get the configuration file path."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".autoservice" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()
    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return Config()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read config from {path}: {e}") from e

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Save configuration to file. Returns the path written."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.model_dump(), f, indent=2)
    return path
