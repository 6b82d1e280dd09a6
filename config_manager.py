"""
Configuration management module for budget-watch.

This module handles loading configuration values from a YAML
file, merging them over the built-in defaults section by section.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'database': {
        'connection_string': None,
        'data_dir': 'data',
        'path': 'budget_watch.db',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
    'email_alerts': {
        'enabled': False,
    },
    'email': {
        'smtp_host': 'localhost',
        'smtp_port': 587,
        'username': None,
        'password': None,
        'use_tls': True,
        'from_address': 'noreply@budget-watch.local',
        'app_url': 'http://localhost:4200',
        'timeout': 30,
    },
    'alerts': {
        'timezone': 'UTC',
        'delay_seconds': 1.0,
    },
    'reports': {
        'temp_dir': 'data/tmp',
        'default_format': 'excel',
    },
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay a loaded config on top of a copy of the defaults, one section deep."""
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file (default: config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values

    Raises:
        ConfigError: If the file exists but cannot be read or parsed
    """
    path = Path(config_path or CONFIG_FILE)
    if not path.exists():
        logger.info("Config file %s not found; using defaults", path)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to load configuration: {e}",
            details={"config_path": str(path)},
            original_error=e
        ) from e

    if not isinstance(loaded, dict):
        raise ConfigError(
            "Configuration root must be a mapping",
            details={"config_path": str(path)}
        )

    logger.info("Configuration loaded from %s", path)
    return _merge_defaults(loaded)


def get_section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    """
    Return a config section merged over its defaults.

    Args:
        config: Loaded configuration (may be None)
        name: Section name, e.g. 'email' or 'alerts'

    Returns:
        Section dictionary
    """
    section = copy.deepcopy(DEFAULT_CONFIG.get(name, {}))
    section.update((config or {}).get(name) or {})
    return section
