# vehicle_backup/config/loader.py
"""
Configuration Loading Logic.

This module bridges raw YAML files on disk and the strictly typed Pydantic
models defined in `config_models.py`.

Responsibilities:
    1.  File I/O: Locating and reading the configuration file.
    2.  Parsing: Converting YAML text into Python dictionaries.
    3.  Validation: Instantiating the `BackupConfig` model to enforce types.
    4.  Error Handling: Logging low-level I/O or parsing errors with context
        before raising.

The configuration file is optional for the command line program. Its path is
taken from the `VEHICLE_BACKUP_CONFIG` environment variable; when that is
unset, `resolve_config()` returns the defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any, Final

import yaml

from vehicle_backup.config.config_models import BackupConfig

logger: logging.Logger = logging.getLogger(__name__)

CONFIG_PATH_ENV_VAR: Final[str] = 'VEHICLE_BACKUP_CONFIG'


def load_config(config_path: Path | str) -> BackupConfig:
    """Load and validate backup configuration from a YAML file.

    An empty YAML document is accepted and yields the default configuration.

    Args:
        config_path: Path to the YAML configuration file (relative or absolute).

    Returns:
        Validated BackupConfig instance.

    Raises:
        FileNotFoundError: If config file does not exist at the specified path.
        yaml.YAMLError: If YAML file is malformed or cannot be parsed.
        ValueError: If configuration fails Pydantic validation.

    Example:
        >>> config = load_config('config/vehicle_backup.yaml')
        >>> config.polling.interval_seconds
        10.0
    """
    config_path = Path(config_path)

    logger.info('Loading backup configuration from: %s', config_path)

    if not config_path.exists():
        error_message: str = f'Configuration file not found: {config_path}'
        logger.error(error_message)
        raise FileNotFoundError(error_message)

    try:
        with Path.open(config_path, encoding='utf-8') as config_file:
            raw_config_data: Any = yaml.safe_load(config_file)
    except yaml.YAMLError as error:
        error_message = f'Failed to parse YAML configuration: {error}'
        logger.error(error_message)
        raise yaml.YAMLError(error_message) from error

    if raw_config_data is None:
        raw_config_data = {}

    if not isinstance(raw_config_data, dict):
        error_message = (
            'Configuration root must be a mapping, '
            f'got {type(raw_config_data).__name__}'
        )
        logger.error(error_message)
        raise ValueError(error_message)

    try:
        validated_config = BackupConfig(**raw_config_data)
    except ValueError as error:
        error_message = f'Configuration validation failed: {error}'
        logger.error(error_message)
        raise ValueError(error_message) from error

    logger.info('Configuration loaded and validated successfully')
    return validated_config


def resolve_config() -> BackupConfig:
    """Return the configuration named by the environment, or the defaults.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError: As for load_config(),
            when the environment variable names a bad file.
    """
    env_path: str | None = os.environ.get(CONFIG_PATH_ENV_VAR)

    if not env_path:
        logger.debug('%s not set, using default configuration', CONFIG_PATH_ENV_VAR)
        return BackupConfig()

    return load_config(env_path)
