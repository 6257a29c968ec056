"""
Configuration Package for the vehicle backup poller.

Exposes the configuration models and the loader functions.
"""

from vehicle_backup.config.config_models import (
    BackupConfig,
    ConnectionConfig,
    LoggingConfig,
    PollingConfig,
    StorageConfig,
)
from vehicle_backup.config.loader import (
    CONFIG_PATH_ENV_VAR,
    load_config,
    resolve_config,
)

__all__: list[str] = [
    'CONFIG_PATH_ENV_VAR',
    'BackupConfig',
    'ConnectionConfig',
    'LoggingConfig',
    'PollingConfig',
    'StorageConfig',
    'load_config',
    'resolve_config',
]
